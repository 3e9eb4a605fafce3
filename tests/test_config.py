"""Startup configuration: signing secret resolution and security headers."""

import logging

import pytest
from flask import jsonify

from config import ConfigurationError
from practice import create_app
from practice.utils.request_info import get_request_info


def test_production_refuses_to_start_without_secret(tmp_path):
    with pytest.raises(ConfigurationError):
        create_app('production', {
            'SESSION_TOKEN_SECRET': None,
            'AUDIT_SPOOL_PATH': str(tmp_path / 'spool.jsonl'),
            'LOG_DIR': str(tmp_path),
        })


def test_testing_generates_ephemeral_secret_with_warning(tmp_path, caplog):
    caplog.set_level(logging.WARNING)

    app = create_app('testing', {
        'SESSION_TOKEN_SECRET': None,
        'AUDIT_SPOOL_PATH': str(tmp_path / 'spool.jsonl'),
        'LOG_DIR': str(tmp_path),
    })

    assert len(app.config['SESSION_TOKEN_SECRET']) == 64
    assert 'JWT_SECRET is missing' in caplog.text
    assert any(r.levelno == logging.CRITICAL for r in caplog.records)


def test_configured_secret_is_kept(app):
    assert app.config['SESSION_TOKEN_SECRET'] == 'test-signing-secret'


def test_responses_carry_security_headers(client):
    resp = client.get('/api/auth/me')
    assert resp.headers['X-Content-Type-Options'] == 'nosniff'
    assert resp.headers['X-Frame-Options'] == 'DENY'
    assert 'no-store' in resp.headers['Cache-Control']


def test_unknown_route_returns_json_404(client):
    resp = client.get('/api/nowhere')
    assert resp.status_code == 404
    assert resp.get_json() == {'error': 'Resource not found'}


def test_trusted_proxy_hops_resolve_the_client_address(tmp_path):
    app = create_app('testing', {
        'SESSION_TOKEN_SECRET': 'proxy-secret',
        'AUDIT_SPOOL_PATH': str(tmp_path / 'spool.jsonl'),
        'LOG_DIR': str(tmp_path),
        'PROXY_FIX_X_FOR': 1,
    })

    @app.route('/test/request-info')
    def request_info():
        return jsonify(get_request_info())

    resp = app.test_client().get('/test/request-info', headers={'X-Forwarded-For': '6.6.6.6, 203.0.113.7'},
                                 environ_base={'REMOTE_ADDR': '10.0.0.9'})
    assert resp.get_json()['ip_address'] == '203.0.113.7'
