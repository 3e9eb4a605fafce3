import hashlib
from datetime import datetime
from flask import request, jsonify, make_response, current_app, g
from practice.extensions import db
from practice.models.user_models import User
from practice.utils.audit_logger import audit_logger
from practice.utils.request_info import get_request_info
from practice.utils.session_tokens import create_session_token, generate_csrf_token


def session_key(token: str) -> str:
    """Identifier stored for a session; the raw token is never persisted."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _cookie_options(http_only):
    return {
        'httponly': http_only,
        'secure': current_app.config['AUTH_COOKIE_SECURE'],
        'samesite': current_app.config['AUTH_COOKIE_SAMESITE'],
        'path': '/',
    }


def _reject_login(username, user, info, status, error, result, reason):
    # Pre-authentication events carry no user id in the audit trail
    audit_logger.log_auth_event(
        None, username, 'login_failed', info['ip_address'], info['user_agent'],
        result, details={'reason': reason}
    )
    audit_logger.record_login_attempt(
        username, info['ip_address'], info['user_agent'], False,
        user_id=user.id if user else None, failure_reason=reason
    )
    return jsonify({'error': error}), status


def login_user():
    """Verifies credentials and issues the session and CSRF cookies."""
    data = request.get_json(silent=True)
    if not data or not data.get('username') or not data.get('password'):
        return jsonify({'error': 'Username and password required'}), 400

    username = data['username']
    password = data['password']
    info = get_request_info()

    user = User.query.filter_by(username=username).first()
    if not user or not user.check_password(password):
        return _reject_login(username, user, info, 401, 'Invalid credentials', 'failure', 'invalid_credentials')
    if not user.is_active:
        return _reject_login(username, user, info, 403, 'Account deactivated', 'blocked', 'account_inactive')

    user.last_login = datetime.utcnow()
    db.session.commit()

    lifetime = current_app.config['SESSION_TOKEN_LIFETIME']
    token = create_session_token(user)
    csrf_token = generate_csrf_token()

    try:
        audit_logger.create_session(
            user.id, session_key(token), info['ip_address'], info['user_agent'],
            datetime.utcnow() + lifetime
        )
    except Exception:
        return jsonify({'error': 'Unable to start session'}), 500

    audit_logger.record_login_attempt(username, info['ip_address'], info['user_agent'], True, user_id=user.id)
    audit_logger.log_auth_event(user.id, username, 'login', info['ip_address'], info['user_agent'], 'success')

    response = make_response(jsonify({
        'user': {'id': user.id, 'username': user.username, 'role': user.role},
        'csrf_token': csrf_token,
    }), 200)
    max_age = int(lifetime.total_seconds())
    response.set_cookie(current_app.config['SESSION_TOKEN_COOKIE_NAME'], token,
                        max_age=max_age, **_cookie_options(http_only=True))
    response.set_cookie(current_app.config['CSRF_COOKIE_NAME'], csrf_token,
                        max_age=max_age, **_cookie_options(http_only=False))
    return response


def logout_user():
    """Clears both cookies using the attributes they were set with."""
    user = g.get('current_user')
    if user is not None:
        info = get_request_info()
        audit_logger.log_auth_event(user.id, user.username, 'logout',
                                    info['ip_address'], info['user_agent'], 'success')

    response = make_response(jsonify({'success': True}), 200)
    response.delete_cookie(current_app.config['SESSION_TOKEN_COOKIE_NAME'], **_cookie_options(http_only=True))
    response.delete_cookie(current_app.config['CSRF_COOKIE_NAME'], **_cookie_options(http_only=False))
    return response


def get_current_user():
    user = g.current_user
    token = request.cookies.get(current_app.config['SESSION_TOKEN_COOKIE_NAME'])
    audit_logger.touch_session(session_key(token))
    return jsonify({'id': user.id, 'username': user.username, 'role': user.role}), 200
