# /practice/api/routes.py
from . import api_bp
from practice.extensions import limiter
from practice.utils.decorators import require_auth, optional_auth, require_role
from .controllers import auth_controller, audit_controller


# --- Authentication Endpoints ---
@api_bp.route('/auth/login', methods=['POST'])
@limiter.limit("10 per minute")
def login():
    return auth_controller.login_user()

@api_bp.route('/auth/logout', methods=['POST'])
@optional_auth
def logout():
    return auth_controller.logout_user()

@api_bp.route('/auth/me', methods=['GET'])
@require_auth
def get_current_user_route():
    return auth_controller.get_current_user()


# --- Compliance Endpoints ---
@api_bp.route('/audit/report', methods=['GET'])
@require_auth
@require_role('admin')
def get_audit_report_route():
    return audit_controller.get_audit_report()
