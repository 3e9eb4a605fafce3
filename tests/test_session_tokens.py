"""Signed session token tests."""

import base64
import hashlib
import hmac
import json
import time
from datetime import timedelta

import pytest

from practice.utils.session_tokens import (
    SessionIdentity,
    create_session_token,
    generate_csrf_token,
    verify_session_token,
)

SECRET = 'unit-test-secret'
IDENTITY = {'id': 7, 'username': 'dr.grey', 'role': 'therapist'}


def _forge(payload, secret=SECRET):
    raw = json.dumps(payload, separators=(',', ':')).encode('utf-8')
    signature = hmac.new(secret.encode('utf-8'), raw, hashlib.sha256).hexdigest()
    return f"{base64.b64encode(raw).decode('ascii')}.{signature}"


def test_round_trip_returns_identity():
    token = create_session_token(IDENTITY, secret=SECRET)
    identity = verify_session_token(token, secret=SECRET)

    assert isinstance(identity, SessionIdentity)
    assert (identity.id, identity.username, identity.role) == (7, 'dr.grey', 'therapist')
    assert identity.exp > time.time() * 1000


def test_token_format_is_base64_payload_and_hex_signature():
    token = create_session_token(IDENTITY, secret=SECRET, now=1_000_000)
    payload_b64, signature = token.split('.')

    payload = json.loads(base64.b64decode(payload_b64))
    assert list(payload) == ['id', 'username', 'role', 'exp']
    assert payload['exp'] == 1_000_000 + 24 * 60 * 60 * 1000
    assert len(signature) == 64
    int(signature, 16)


def test_tokens_issued_at_different_times_differ_and_both_verify():
    now = int(time.time() * 1000)
    first = create_session_token(IDENTITY, secret=SECRET, now=now)
    second = create_session_token(IDENTITY, secret=SECRET, now=now + 1000)

    assert first != second
    assert verify_session_token(first, secret=SECRET) is not None
    assert verify_session_token(second, secret=SECRET) is not None


def test_any_single_character_change_invalidates_token():
    token = create_session_token(IDENTITY, secret=SECRET)

    for position, char in enumerate(token):
        if char == '.':
            continue
        replacement = 'A' if char != 'A' else 'B'
        tampered = token[:position] + replacement + token[position + 1:]
        assert verify_session_token(tampered, secret=SECRET) is None, position


def test_wrong_secret_is_rejected():
    token = create_session_token(IDENTITY, secret=SECRET)
    assert verify_session_token(token, secret='another-secret') is None


def test_expired_token_with_valid_signature_is_rejected():
    issued = int(time.time() * 1000) - 25 * 60 * 60 * 1000
    token = create_session_token(IDENTITY, secret=SECRET, now=issued)

    assert verify_session_token(token, secret=SECRET) is None


def test_token_is_rejected_at_its_expiry_instant():
    token = create_session_token(IDENTITY, secret=SECRET, now=0, lifetime=timedelta(seconds=10))

    assert verify_session_token(token, secret=SECRET, now=9_999) is not None
    assert verify_session_token(token, secret=SECRET, now=10_000) is None


@pytest.mark.parametrize('token', [
    None,
    '',
    'no-separator',
    '.deadbeef',
    'eyJpZCI6MX0=.',
    '!!!not-base64!!!.deadbeef',
])
def test_malformed_tokens_are_invalid(token):
    assert verify_session_token(token, secret=SECRET) is None


def test_signed_payload_with_wrong_shape_is_invalid():
    future = int(time.time() * 1000) + 60_000
    assert verify_session_token(_forge({'id': 1, 'username': 'x', 'exp': future}), secret=SECRET) is None
    assert verify_session_token(_forge({'id': '1', 'username': 'x', 'role': 'admin', 'exp': future}), secret=SECRET) is None
    assert verify_session_token(_forge([1, 'x', 'admin', future]), secret=SECRET) is None


def test_forged_token_with_correct_secret_verifies():
    future = int(time.time() * 1000) + 60_000
    identity = verify_session_token(
        _forge({'id': 3, 'username': 'admin', 'role': 'admin', 'exp': future}), secret=SECRET
    )
    assert identity == SessionIdentity(id=3, username='admin', role='admin', exp=future)


@pytest.mark.parametrize('identity', [
    {'username': 'x', 'role': 'admin'},
    {'id': 1, 'username': '', 'role': 'admin'},
    {'id': 1, 'username': 'x', 'role': ''},
    {'id': True, 'username': 'x', 'role': 'admin'},
])
def test_create_requires_complete_identity(identity):
    with pytest.raises(ValueError):
        create_session_token(identity, secret=SECRET)


def test_secret_and_lifetime_default_to_app_config(app):
    app.config['SESSION_TOKEN_LIFETIME'] = timedelta(minutes=5)
    token = create_session_token(IDENTITY, now=0)

    identity = verify_session_token(token, now=1000)
    assert identity is not None
    assert identity.exp == 5 * 60 * 1000
    assert verify_session_token(token, secret=SECRET, now=1000) is None


def test_csrf_tokens_are_random():
    assert generate_csrf_token() != generate_csrf_token()
    assert len(generate_csrf_token()) == 64
