from practice.models.user_models import User
from practice.models.system_models import AuditLog, LoginAttempt, UserSession

__all__ = ['User', 'AuditLog', 'LoginAttempt', 'UserSession']
