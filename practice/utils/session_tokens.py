# /practice/utils/session_tokens.py
"""
Signed, self-contained session tokens.

A token is ``base64(payload) + "." + hex(HMAC-SHA256(secret, payload))`` where
the payload is the compact JSON form of ``{id, username, role, exp}`` and
``exp`` is an absolute expiry in epoch milliseconds. Verification needs only
the process-wide signing secret; there is no server-side session store, so a
token stays valid until it expires or the secret is rotated.
"""
import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass, asdict
from datetime import timedelta

from flask import current_app

DEFAULT_LIFETIME = timedelta(hours=24)


@dataclass(frozen=True)
class SessionIdentity:
    id: int
    username: str
    role: str
    exp: int

    def to_dict(self):
        return asdict(self)


def _now_ms(now=None) -> int:
    if now is None:
        return int(time.time() * 1000)
    if hasattr(now, 'timestamp'):
        return int(now.timestamp() * 1000)
    return int(now)


def _resolve_secret(secret=None) -> bytes:
    if secret is None:
        secret = current_app.config.get('SESSION_TOKEN_SECRET')
    if not secret:
        raise RuntimeError("Session token secret is not configured.")
    if isinstance(secret, str):
        secret = secret.encode('utf-8')
    return secret


def _sign(payload: bytes, secret: bytes) -> str:
    return hmac.new(secret, payload, hashlib.sha256).hexdigest()


def create_session_token(identity, secret=None, now=None, lifetime=None) -> str:
    """Creates a signed session token for ``identity``.

    ``identity`` is a mapping (or object) with ``id``, ``username`` and ``role``.
    """
    if isinstance(identity, dict):
        user_id = identity.get('id')
        username = identity.get('username')
        role = identity.get('role')
    else:
        user_id = getattr(identity, 'id', None)
        username = getattr(identity, 'username', None)
        role = getattr(identity, 'role', None)

    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise ValueError("Session identity requires an integer id")
    if not username or not isinstance(username, str):
        raise ValueError("Session identity requires a username")
    if not role or not isinstance(role, str):
        raise ValueError("Session identity requires a role")

    if lifetime is None:
        try:
            lifetime = current_app.config.get('SESSION_TOKEN_LIFETIME', DEFAULT_LIFETIME)
        except RuntimeError:
            lifetime = DEFAULT_LIFETIME

    payload = {
        'id': user_id,
        'username': username,
        'role': role,
        'exp': _now_ms(now) + int(lifetime.total_seconds() * 1000),
    }
    payload_bytes = json.dumps(payload, separators=(',', ':')).encode('utf-8')
    signature = _sign(payload_bytes, _resolve_secret(secret))

    return f"{base64.b64encode(payload_bytes).decode('ascii')}.{signature}"


def verify_session_token(token, secret=None, now=None):
    """Returns the SessionIdentity carried by ``token``, or None if it is invalid or expired."""
    if not token or not isinstance(token, str):
        return None

    payload_b64, sep, signature = token.partition('.')
    if not sep or not payload_b64 or not signature:
        return None

    try:
        payload_bytes = base64.b64decode(payload_b64, validate=True)
    except (binascii.Error, ValueError):
        return None

    # Reject non-canonical encodings so that every token has exactly one spelling
    if base64.b64encode(payload_bytes).decode('ascii') != payload_b64:
        return None

    expected = _sign(payload_bytes, _resolve_secret(secret))
    if not hmac.compare_digest(signature.encode('ascii', 'replace'), expected.encode('ascii')):
        return None

    try:
        payload = json.loads(payload_bytes.decode('utf-8'))
    except ValueError:
        return None

    if not isinstance(payload, dict):
        return None

    user_id = payload.get('id')
    username = payload.get('username')
    role = payload.get('role')
    exp = payload.get('exp')
    if (not isinstance(user_id, int) or isinstance(user_id, bool)
            or not isinstance(username, str) or not isinstance(role, str)
            or not isinstance(exp, (int, float)) or isinstance(exp, bool)):
        return None

    if _now_ms(now) >= exp:
        return None

    return SessionIdentity(id=user_id, username=username, role=role, exp=int(exp))


def generate_csrf_token() -> str:
    """Random token for the double-submit CSRF cookie."""
    return secrets.token_hex(32)
