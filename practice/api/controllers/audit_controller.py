from datetime import datetime, timedelta
from flask import request, jsonify, g
from practice.utils.audit_logger import audit_logger, AuditValidationError
from practice.utils.request_info import get_request_info

DEFAULT_REPORT_WINDOW = timedelta(days=30)


def _parse_datetime(name, default):
    value = request.args.get(name)
    if not value:
        return default
    return datetime.fromisoformat(value)


def _parse_int(name):
    value = request.args.get(name)
    if value in (None, ''):
        return None
    return int(value)


def get_audit_report():
    """Compliance report over the audit trail, filtered by the query string."""
    try:
        end = _parse_datetime('end', datetime.utcnow())
        start = _parse_datetime('start', end - DEFAULT_REPORT_WINDOW)
        user_id = _parse_int('user_id')
        client_id = _parse_int('client_id')
    except ValueError:
        return jsonify({'error': 'Invalid report parameters'}), 400

    hipaa_only = request.args.get('hipaa_only', 'false').lower() in ['true', '1', 't']
    risk_level = request.args.get('risk_level') or None

    try:
        entries = audit_logger.get_audit_report(
            start, end, user_id=user_id, client_id=client_id,
            hipaa_only=hipaa_only, risk_level=risk_level
        )
    except AuditValidationError as e:
        return jsonify({'error': str(e)}), 400

    user = g.current_user
    info = get_request_info()
    audit_logger.log_action(
        user_id=user.id, username=user.username, action='audit_report_viewed', result='success',
        resource_type='audit_log', resource_id=f"{start.isoformat()}/{end.isoformat()}",
        ip_address=info['ip_address'], user_agent=info['user_agent'],
        hipaa_relevant=True, risk_level='high',
        details={'filters': {'user_id': user_id, 'client_id': client_id,
                             'hipaa_only': hipaa_only, 'risk_level': risk_level},
                 'entry_count': len(entries)},
        access_reason='Compliance review',
    )

    return jsonify({
        'start': start.isoformat(),
        'end': end.isoformat(),
        'count': len(entries),
        'entries': [entry.to_dict() for entry in entries],
    }), 200
