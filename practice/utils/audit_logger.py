# /practice/utils/audit_logger.py
"""
HIPAA audit trail.

Every security- or privacy-relevant action is written as an append-only
``AuditLog`` row. Recording is never allowed to fail the request that triggered
it: persistence errors are absorbed, the entry is appended to a local JSON-lines
spool for later replay, and exactly one operational error is logged per dropped
write. Malformed input is different: it raises ``AuditValidationError`` before
anything is persisted so the caller can decide how to proceed.
"""
import glob
import json
import logging
import os
import time
import uuid
from datetime import date, datetime, timezone

from sqlalchemy.orm import Session

from practice.extensions import db
from practice.models.system_models import AuditLog, LoginAttempt, UserSession

logger = logging.getLogger('practice.audit')
hipaa_log = logging.getLogger('HIPAA_AUDIT')

RESULTS = ('success', 'failure', 'blocked')
RISK_LEVELS = ('low', 'medium', 'high', 'critical')

# Resource types that always carry PHI
PHI_RESOURCE_TYPES = frozenset(['client', 'session', 'document', 'assessment', 'export'])
ALWAYS_CRITICAL_ACTIONS = frozenset(['data_exported', 'unauthorized_access'])

CLIENT_ACTIONS = (
    'client_viewed', 'client_created', 'client_updated', 'client_deleted',
    'client_status_changed', 'client_assigned', 'client_transferred',
)
SESSION_ACTIONS = (
    'session_viewed', 'session_created', 'session_updated', 'session_deleted',
    'session_cancelled', 'session_rescheduled', 'session_completed', 'session_no_show',
)
DOCUMENT_ACTIONS = (
    'document_viewed', 'document_uploaded', 'document_downloaded',
    'document_deleted', 'document_shared', 'document_modified',
)
ASSESSMENT_ACTIONS = (
    'assessment_viewed', 'assessment_created', 'assessment_updated', 'assessment_completed',
)
AUTH_ACTIONS = ('login', 'logout', 'login_failed', 'password_changed', 'account_locked')


class AuditValidationError(ValueError):
    """Raised synchronously when an audit entry is missing required data."""


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _serialize_details(details):
    if details is None:
        details = {}
    if not isinstance(details, dict):
        raise AuditValidationError("Audit details must be a mapping")
    try:
        return json.dumps(details, default=_json_default, sort_keys=True)
    except (TypeError, ValueError) as e:
        raise AuditValidationError(f"Audit details are not JSON serializable: {e}")


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def _as_naive_utc(value):
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _fit_columns(model, values):
    """Truncates string values to their column widths so the INSERT cannot overflow."""
    for column in model.__table__.columns:
        length = getattr(column.type, 'length', None)
        value = values.get(column.name)
        if length and isinstance(value, str) and len(value) > length:
            values[column.name] = value[:length]
    return values


class SqlAlchemyAuditStore:
    """
    Persistence collaborator backed by the Flask-SQLAlchemy engine.

    Every write runs in its own short session, so the caller's ``db.session``
    is never flushed, committed or rolled back by the audit path.
    """

    def __init__(self, database):
        self.db = database

    def _add(self, obj):
        with Session(self.db.engine, expire_on_commit=False) as session, session.begin():
            session.add(obj)
        return obj

    def insert_audit_entry(self, values):
        return self._add(AuditLog(**_fit_columns(AuditLog, dict(values))))

    def insert_login_attempt(self, values):
        return self._add(LoginAttempt(**_fit_columns(LoginAttempt, dict(values))))

    def insert_user_session(self, values):
        return self._add(UserSession(**_fit_columns(UserSession, dict(values))))

    def touch_user_session(self, session_id, now):
        sessions = UserSession.__table__
        with self.db.engine.begin() as connection:
            result = connection.execute(
                sessions.update()
                .where(sessions.c.session_id == session_id, sessions.c.is_active.is_(True))
                .values(last_activity=now)
            )
        return result.rowcount > 0

    def query_audit_entries(self, start, end, user_id=None, client_id=None,
                            hipaa_only=False, risk_level=None):
        query = AuditLog.query.filter(AuditLog.timestamp >= start, AuditLog.timestamp <= end)
        if user_id is not None:
            query = query.filter(AuditLog.user_id == user_id)
        if client_id is not None:
            query = query.filter(AuditLog.client_id == client_id)
        if hipaa_only:
            query = query.filter(AuditLog.hipaa_relevant.is_(True))
        if risk_level is not None:
            query = query.filter(AuditLog.risk_level == risk_level)
        return query.order_by(AuditLog.timestamp.asc(), AuditLog.id.asc()).all()


class AuditLogger:
    """
    Records audit entries through a persistence store.

    Constructed once at import time and bound to the app with ``init_app``. A
    store and spool path may be passed explicitly to use another backend.
    """

    def __init__(self, store=None, spool_path=None, app=None):
        self.store = store
        self.spool_path = spool_path
        if app:
            self.init_app(app)

    def init_app(self, app):
        if self.store is None:
            self.store = SqlAlchemyAuditStore(db)
        spool_path = app.config.get('AUDIT_SPOOL_PATH')
        if spool_path:
            self.spool_path = spool_path
        app.extensions['audit_logger'] = self

    # --- Core write path ---

    def log_action(self, *, user_id, username, action, result, resource_type, resource_id,
                   ip_address, user_agent, hipaa_relevant=False, risk_level='low',
                   client_id=None, details=None, access_reason=None):
        """Log any user action for HIPAA compliance. Returns False if the write was spooled."""
        values = self._build_entry(
            user_id=user_id, username=username, action=action, result=result,
            resource_type=resource_type, resource_id=resource_id,
            ip_address=ip_address, user_agent=user_agent,
            hipaa_relevant=hipaa_relevant, risk_level=risk_level,
            client_id=client_id, details=details, access_reason=access_reason,
        )

        if self.store is None:
            raise RuntimeError("AuditLogger has not been initialized with an app or store.")

        try:
            self.store.insert_audit_entry(values)
        except Exception as e:
            spooled, spool_error = self._spool(values)
            outcome = f"spooled to {self.spool_path}" if spooled else f"NOT spooled ({spool_error})"
            logger.error(
                "CRITICAL: Audit log failed to record action=%s resource=%s/%s user_id=%s: %s; entry %s",
                values['action'], values['resource_type'], values['resource_id'],
                values['user_id'], e, outcome
            )
            return False

        hipaa_log.info(
            "Action='%s', Resource='%s/%s', UserID='%s', Result='%s', Risk='%s', HIPAA='%s'",
            values['action'], values['resource_type'], values['resource_id'],
            values['user_id'], values['result'], values['risk_level'], values['hipaa_relevant']
        )
        return True

    def _build_entry(self, *, user_id, username, action, result, resource_type, resource_id,
                     ip_address, user_agent, hipaa_relevant, risk_level, client_id,
                     details, access_reason):
        if user_id is not None and not _is_int(user_id):
            raise AuditValidationError("user_id must be an integer or None")
        if not username or not isinstance(username, str):
            raise AuditValidationError("username is required")
        if not action or not isinstance(action, str):
            raise AuditValidationError("action is required")
        if result not in RESULTS:
            raise AuditValidationError(f"result must be one of {', '.join(RESULTS)}")
        if not resource_type or not isinstance(resource_type, str):
            raise AuditValidationError("resource_type is required")
        if resource_id is None or str(resource_id) == '':
            raise AuditValidationError("resource_id is required")
        if risk_level not in RISK_LEVELS:
            raise AuditValidationError(f"risk_level must be one of {', '.join(RISK_LEVELS)}")
        if client_id is not None and not _is_int(client_id):
            raise AuditValidationError("client_id must be an integer or None")

        if resource_type in PHI_RESOURCE_TYPES:
            hipaa_relevant = True
        if action in ALWAYS_CRITICAL_ACTIONS:
            risk_level = 'critical'

        return _fit_columns(AuditLog, {
            'user_id': user_id,
            'username': username,
            'action': action,
            'result': result,
            'resource_type': resource_type,
            'resource_id': str(resource_id),
            'client_id': client_id,
            'ip_address': ip_address or 'unknown',
            'user_agent': user_agent or 'Unknown',
            'hipaa_relevant': bool(hipaa_relevant),
            'risk_level': risk_level,
            'details': _serialize_details(details),
            'access_reason': access_reason,
            'timestamp': datetime.utcnow(),
        })

    # --- Spool ---

    def _spool(self, values):
        if not self.spool_path:
            return False, 'no spool path configured'
        try:
            directory = os.path.dirname(self.spool_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.spool_path, 'a', encoding='utf-8') as spool:
                spool.write(json.dumps(values, default=_json_default) + '\n')
        except OSError as e:
            return False, str(e)
        return True, None

    def replay_spool(self):
        """
        Re-persists spooled entries. Returns (replayed, remaining).

        The live spool is moved to a private work file first, so entries that
        fail while the replay runs are appended to a fresh spool instead of
        being overwritten. Entries that still fail go back onto the live spool.
        """
        if not self.spool_path:
            return 0, 0

        if os.path.exists(self.spool_path):
            os.replace(self.spool_path, f"{self.spool_path}.replaying.{uuid.uuid4().hex}")

        # Includes work files left behind by an interrupted replay
        work_paths = sorted(glob.glob(glob.escape(self.spool_path) + '.replaying.*'))
        lines = []
        for work_path in work_paths:
            with open(work_path, encoding='utf-8') as spool:
                lines.extend(line for line in spool.read().splitlines() if line.strip())

        replayed = 0
        remaining = []
        for line in lines:
            try:
                values = json.loads(line)
                values['timestamp'] = datetime.fromisoformat(values['timestamp'])
            except (ValueError, KeyError, TypeError) as e:
                logger.error("Unreadable audit spool line kept for manual review: %s", e)
                remaining.append(line)
                continue
            try:
                self.store.insert_audit_entry(_fit_columns(AuditLog, values))
            except Exception as e:
                logger.error("Audit spool replay failed for action=%s: %s", values.get('action'), e)
                remaining.append(line)
                continue
            replayed += 1

        if remaining:
            with open(self.spool_path, 'a', encoding='utf-8') as spool:
                for line in remaining:
                    spool.write(line + '\n')
        for work_path in work_paths:
            os.remove(work_path)

        return replayed, len(remaining)

    # --- Category helpers ---

    @staticmethod
    def _check_action(action, allowed, category):
        if action not in allowed:
            raise AuditValidationError(f"'{action}' is not a valid {category} action")

    @staticmethod
    def _require_user_id(user_id):
        if not _is_int(user_id):
            raise AuditValidationError("user_id is required for this audit event")

    def log_client_access(self, user_id, username, client_id, action, ip_address, user_agent,
                          details=None, result='success'):
        """Log client data access (PHI access tracking)."""
        self._require_user_id(user_id)
        self._check_action(action, CLIENT_ACTIONS, 'client')
        if not _is_int(client_id):
            raise AuditValidationError("client_id is required")
        return self.log_action(
            user_id=user_id, username=username, action=action, result=result,
            resource_type='client', resource_id=str(client_id), client_id=client_id,
            ip_address=ip_address, user_agent=user_agent,
            hipaa_relevant=True, risk_level='medium',
            details=details, access_reason='Clinical care and treatment',
        )

    def log_session_access(self, user_id, username, session_id, client_id, action,
                           ip_address, user_agent, details=None, result='success'):
        """Log therapy session data access."""
        self._require_user_id(user_id)
        self._check_action(action, SESSION_ACTIONS, 'session')
        return self.log_action(
            user_id=user_id, username=username, action=action, result=result,
            resource_type='session', resource_id=session_id, client_id=client_id,
            ip_address=ip_address, user_agent=user_agent,
            hipaa_relevant=True, risk_level='medium',
            details=details, access_reason='Clinical documentation and care',
        )

    def log_document_access(self, user_id, username, document_id, client_id, action,
                            ip_address, user_agent, details=None, result='success'):
        """Log document access. Documents are always high risk."""
        self._require_user_id(user_id)
        self._check_action(action, DOCUMENT_ACTIONS, 'document')
        return self.log_action(
            user_id=user_id, username=username, action=action, result=result,
            resource_type='document', resource_id=document_id, client_id=client_id,
            ip_address=ip_address, user_agent=user_agent,
            hipaa_relevant=True, risk_level='high',
            details=details, access_reason='Clinical documentation review',
        )

    def log_assessment_access(self, user_id, username, assessment_id, client_id, action,
                              ip_address, user_agent, details=None, result='success'):
        self._require_user_id(user_id)
        self._check_action(action, ASSESSMENT_ACTIONS, 'assessment')
        return self.log_action(
            user_id=user_id, username=username, action=action, result=result,
            resource_type='assessment', resource_id=assessment_id, client_id=client_id,
            ip_address=ip_address, user_agent=user_agent,
            hipaa_relevant=True, risk_level='medium',
            details=details, access_reason='Clinical assessment and care',
        )

    def log_auth_event(self, user_id, username, action, ip_address, user_agent, result, details=None):
        """Log authentication events. user_id may be None before authentication."""
        self._check_action(action, AUTH_ACTIONS, 'authentication')
        return self.log_action(
            user_id=user_id, username=username, action=action, result=result,
            resource_type='authentication', resource_id=username,
            ip_address=ip_address, user_agent=user_agent,
            hipaa_relevant=False, risk_level='high' if result == 'failure' else 'low',
            details=details,
        )

    def log_unauthorized_access(self, user_id, username, resource_type, resource_id,
                                ip_address, user_agent, details=None, client_id=None):
        """Log a blocked access attempt. These entries feed the manual review queue."""
        blocked = dict(details or {})
        blocked.update({
            'blocked_at': datetime.utcnow().isoformat(),
            'requires_review': True,
        })
        return self.log_action(
            user_id=user_id, username=username, action='unauthorized_access', result='blocked',
            resource_type=resource_type, resource_id=resource_id, client_id=client_id,
            ip_address=ip_address, user_agent=user_agent,
            hipaa_relevant=True, risk_level='critical',
            details=blocked,
        )

    def log_data_export(self, user_id, username, export_type, client_ids, ip_address,
                        user_agent, details=None):
        """Log a data export. PHI leaving the system is always critical."""
        self._require_user_id(user_id)
        if not export_type or not isinstance(export_type, str):
            raise AuditValidationError("export_type is required")
        if isinstance(client_ids, (str, bytes)):
            raise AuditValidationError("client_ids must be a list of integer client ids")
        try:
            client_ids = list(client_ids)
        except TypeError:
            raise AuditValidationError("client_ids must be a list of integer client ids")
        if not all(_is_int(client_id) for client_id in client_ids):
            raise AuditValidationError("client_ids must be a list of integer client ids")

        export_details = dict(details or {})
        export_details.update({
            'export_type': export_type,
            'client_count': len(client_ids),
            'client_ids': client_ids,
            'export_timestamp': datetime.utcnow().isoformat(),
        })
        return self.log_action(
            user_id=user_id, username=username, action='data_exported', result='success',
            resource_type='export', resource_id=f"{export_type}_{int(time.time() * 1000)}",
            ip_address=ip_address, user_agent=user_agent,
            hipaa_relevant=True, risk_level='critical',
            details=export_details, access_reason='Authorized data export for clinical purposes',
        )

    # --- Login attempts and sessions ---

    def record_login_attempt(self, username, ip_address, user_agent, success,
                             user_id=None, failure_reason=None):
        """Record a login attempt for brute-force monitoring. Never raises on storage errors."""
        values = {
            'username': username or 'unknown',
            'user_id': user_id,
            'ip_address': ip_address,
            'user_agent': user_agent,
            'success': bool(success),
            'failure_reason': failure_reason,
            'timestamp': datetime.utcnow(),
        }
        try:
            self.store.insert_login_attempt(values)
        except Exception as e:
            logger.error("Failed to record login attempt for username=%s: %s", values['username'], e)
            return False
        return True

    def create_session(self, user_id, session_id, ip_address, user_agent, expires_at):
        """Create active-session tracking. Storage errors are logged and re-raised."""
        now = datetime.utcnow()
        values = {
            'user_id': user_id,
            'session_id': session_id,
            'ip_address': ip_address,
            'user_agent': user_agent,
            'created_at': now,
            'last_activity': now,
            'expires_at': expires_at,
            'is_active': True,
        }
        try:
            return self.store.insert_user_session(values)
        except Exception as e:
            logger.error("Failed to create user session for user_id=%s: %s", user_id, e)
            raise

    def touch_session(self, session_id, now=None):
        """Refresh last_activity on an active session. Returns False if nothing was updated."""
        try:
            return bool(self.store.touch_user_session(session_id, now or datetime.utcnow()))
        except Exception as e:
            logger.error("Failed to refresh session activity: %s", e)
            return False

    # --- Reporting ---

    def get_audit_report(self, start, end, user_id=None, client_id=None,
                         hipaa_only=False, risk_level=None):
        """Audit entries with start <= timestamp <= end, narrowed by any given filter."""
        if not isinstance(start, datetime) or not isinstance(end, datetime):
            raise AuditValidationError("start and end must be datetimes")
        start, end = _as_naive_utc(start), _as_naive_utc(end)
        if start > end:
            raise AuditValidationError("start must not be after end")
        if risk_level is not None and risk_level not in RISK_LEVELS:
            raise AuditValidationError(f"risk_level must be one of {', '.join(RISK_LEVELS)}")
        if user_id is not None and not _is_int(user_id):
            raise AuditValidationError("user_id must be an integer")
        if client_id is not None and not _is_int(client_id):
            raise AuditValidationError("client_id must be an integer")

        return self.store.query_audit_entries(
            start, end, user_id=user_id, client_id=client_id,
            hipaa_only=hipaa_only, risk_level=risk_level,
        )


# Create a single, uninitialized instance to be imported by other modules.
audit_logger = AuditLogger()
