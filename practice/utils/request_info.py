# /practice/utils/request_info.py
from flask import request


def get_request_info():
    """Client IP address and user agent for audit entries.

    ``remote_addr`` is the socket peer unless the app trusts a configured number
    of proxy hops (``PROXY_FIX_X_FOR``), in which case ProxyFix has already
    resolved it from ``X-Forwarded-For``.
    """
    return {
        'ip_address': request.remote_addr or '127.0.0.1',
        'user_agent': request.headers.get('User-Agent') or 'Unknown',
    }
