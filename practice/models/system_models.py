# /practice/models/system_models.py
import json
from datetime import datetime
from sqlalchemy import event
from practice.extensions import db


class AuditTrailImmutableError(RuntimeError):
    """Raised when code attempts to modify or delete a written audit entry."""


class AuditLog(db.Model):
    """HIPAA-required audit logging. Rows are append-only."""
    __tablename__ = 'audit_logs'
    __table_args__ = (
        db.Index('ix_audit_logs_timestamp', 'timestamp'),
        db.Index('ix_audit_logs_user_id', 'user_id'),
        db.Index('ix_audit_logs_client_id', 'client_id'),
        db.Index('ix_audit_logs_risk_level', 'risk_level'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    username = db.Column(db.String(255), nullable=False)
    action = db.Column(db.String(100), nullable=False)
    result = db.Column(db.String(20), nullable=False)
    resource_type = db.Column(db.String(100), nullable=False)
    resource_id = db.Column(db.String(255), nullable=False)
    client_id = db.Column(db.Integer, nullable=True)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(512))
    hipaa_relevant = db.Column(db.Boolean, default=False, nullable=False)
    risk_level = db.Column(db.String(20), nullable=False, default='low')
    details = db.Column(db.Text)
    access_reason = db.Column(db.String(255))
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        try:
            details = json.loads(self.details) if self.details else {}
        except ValueError:
            details = {'raw': self.details}
        return {
            'id': self.id,
            'user_id': self.user_id,
            'username': self.username,
            'action': self.action,
            'result': self.result,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'client_id': self.client_id,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'hipaa_relevant': self.hipaa_relevant,
            'risk_level': self.risk_level,
            'details': details,
            'access_reason': self.access_reason,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
        }


@event.listens_for(AuditLog, 'before_update')
def _reject_audit_update(mapper, connection, target):
    raise AuditTrailImmutableError(f"Audit log entry {target.id} cannot be modified")


@event.listens_for(AuditLog, 'before_delete')
def _reject_audit_delete(mapper, connection, target):
    raise AuditTrailImmutableError(f"Audit log entry {target.id} cannot be deleted")


class LoginAttempt(db.Model):
    """Every login attempt, kept for brute-force monitoring."""
    __tablename__ = 'login_attempts'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(255), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    ip_address = db.Column(db.String(45), index=True)
    user_agent = db.Column(db.String(512))
    success = db.Column(db.Boolean, default=False, nullable=False)
    failure_reason = db.Column(db.String(255))
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class UserSession(db.Model):
    """Active-session bookkeeping for signed cookie sessions."""
    __tablename__ = 'user_sessions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    session_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(512))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    last_activity = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'session_id': self.session_id,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'last_activity': self.last_activity.isoformat() if self.last_activity else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'is_active': self.is_active,
        }
