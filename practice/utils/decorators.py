import hmac
import logging
from functools import wraps
from flask import request, current_app, jsonify, make_response, g
from practice.utils.session_tokens import verify_session_token
from practice.utils.request_info import get_request_info
from practice.utils.audit_logger import audit_logger, AuditValidationError

logger = logging.getLogger('practice.auth')

SAFE_METHODS = ('GET', 'HEAD', 'OPTIONS')


def _session_identity():
    token = request.cookies.get(current_app.config['SESSION_TOKEN_COOKIE_NAME'])
    if not token:
        return None, False
    return verify_session_token(token), True


def require_auth(f):
    """Rejects the request unless it carries a valid session cookie."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        identity, present = _session_identity()
        if not present:
            return jsonify({'error': 'Authentication required'}), 401
        if identity is None:
            logger.info("Rejected invalid or expired session token for %s %s", request.method, request.path)
            return jsonify({'error': 'Invalid or expired session'}), 401

        g.current_user = identity
        return f(*args, **kwargs)
    return decorated_function


def optional_auth(f):
    """Attaches the session identity when one is present and valid."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        identity, _ = _session_identity()
        g.current_user = identity
        return f(*args, **kwargs)
    return decorated_function


def csrf_token_valid():
    """Double-submit check: the header token must match the cookie token."""
    if request.method in SAFE_METHODS:
        return True
    header_token = request.headers.get(current_app.config['CSRF_HEADER_NAME'])
    cookie_token = request.cookies.get(current_app.config['CSRF_COOKIE_NAME'])
    if not header_token or not cookie_token:
        return False
    return hmac.compare_digest(header_token.encode('utf-8'), cookie_token.encode('utf-8'))


def csrf_protection(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not csrf_token_valid():
            return jsonify({'error': 'Invalid CSRF token'}), 403
        return f(*args, **kwargs)
    return decorated_function


def init_csrf(app):
    """Runs the CSRF check on every request except the configured public paths."""
    @app.before_request
    def check_csrf_token():
        if request.path in current_app.config.get('CSRF_EXEMPT_PATHS', []):
            return None
        if not csrf_token_valid():
            logger.warning("CSRF check failed for %s %s", request.method, request.path)
            return jsonify({'error': 'Invalid CSRF token'}), 403
        return None


def require_role(*roles):
    """Allows only the given roles; every refusal is recorded for review."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = g.get('current_user')
            if user is None:
                return jsonify({'error': 'Authentication required'}), 401

            if user.role not in roles:
                info = get_request_info()
                audit_logger.log_unauthorized_access(
                    user.id, user.username,
                    resource_type=request.blueprint or 'endpoint',
                    resource_id=request.path,
                    ip_address=info['ip_address'],
                    user_agent=info['user_agent'],
                    details={'method': request.method, 'role': user.role, 'required_roles': list(roles)},
                )
                return jsonify({'error': 'Permission denied'}), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def _result_for_status(status_code):
    if status_code < 400:
        return 'success'
    if status_code in (401, 403):
        return 'blocked'
    return 'failure'


def audit_access(action, resource_type, hipaa_relevant=False, risk_level='low',
                 client_id_arg=None, resource_id_arg=None):
    """Logs access to a route for HIPAA compliance once its outcome is known.

    Only authenticated requests are recorded; the route must also use
    ``require_auth`` or ``optional_auth``.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                response = make_response(f(*args, **kwargs))
            except Exception as e:
                _record_access(action, resource_type, hipaa_relevant, risk_level,
                               client_id_arg, resource_id_arg, kwargs, 'failure',
                               {'error': type(e).__name__})
                raise

            _record_access(action, resource_type, hipaa_relevant, risk_level,
                           client_id_arg, resource_id_arg, kwargs,
                           _result_for_status(response.status_code),
                           {'status': response.status_code})
            return response
        return decorated_function
    return decorator


def _first_view_arg(view_args, *names):
    for name in names:
        value = view_args.get(name)
        if value is not None:
            return value
    return None


def _as_client_id(value):
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return None


def _record_access(action, resource_type, hipaa_relevant, risk_level,
                   client_id_arg, resource_id_arg, view_args, result, extra):
    user = g.get('current_user')
    if user is None:
        return

    client_id = _as_client_id(view_args.get(client_id_arg)) if client_id_arg else None
    if resource_id_arg:
        resource_id = view_args.get(resource_id_arg)
    else:
        resource_id = _first_view_arg(view_args, 'id', 'client_id', 'session_id')

    info = get_request_info()
    details = {'method': request.method, 'url': request.path}
    details.update(extra)
    try:
        audit_logger.log_action(
            user_id=user.id, username=user.username, action=action, result=result,
            resource_type=resource_type, resource_id=resource_id if resource_id is not None else 'unknown',
            client_id=client_id,
            ip_address=info['ip_address'], user_agent=info['user_agent'],
            hipaa_relevant=hipaa_relevant, risk_level=risk_level, details=details,
        )
    except AuditValidationError as e:
        logger.error("Audit entry for %s on %s rejected: %s", action, request.path, e)
