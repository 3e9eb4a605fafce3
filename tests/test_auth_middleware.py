"""require_auth, optional_auth and CSRF double-submit tests."""

import time

import pytest
from flask import g, jsonify

from practice.utils.decorators import csrf_protection, optional_auth, require_auth
from practice.utils.session_tokens import create_session_token

from conftest import TEST_SECRET

IDENTITY = {'id': 42, 'username': 'dr.yang', 'role': 'therapist'}


@pytest.fixture()
def guarded_client(app):
    """Test client for an app with a few extra routes using the decorators."""

    @app.route('/test/protected')
    @require_auth
    def protected():
        return jsonify(g.current_user.to_dict())

    @app.route('/test/optional')
    @optional_auth
    def optional():
        user = g.current_user
        return jsonify({'user': user.username if user else None})

    @app.route('/test/mutate', methods=['GET', 'POST', 'PUT', 'DELETE'])
    def mutate():
        return jsonify({'ok': True})

    @app.route('/api/portal/activate', methods=['POST'])
    def portal_activate():
        return jsonify({'activated': True})

    return app.test_client()


def test_require_auth_without_cookie_is_401(guarded_client):
    resp = guarded_client.get('/test/protected')
    assert resp.status_code == 401
    assert resp.get_json() == {'error': 'Authentication required'}


def test_require_auth_with_garbage_cookie_is_401(guarded_client):
    guarded_client.set_cookie('sessionToken', 'garbage')
    resp = guarded_client.get('/test/protected')
    assert resp.status_code == 401
    assert resp.get_json() == {'error': 'Invalid or expired session'}


def test_require_auth_with_expired_token_is_401(guarded_client):
    issued = int(time.time() * 1000) - 25 * 60 * 60 * 1000
    guarded_client.set_cookie('sessionToken', create_session_token(IDENTITY, secret=TEST_SECRET, now=issued))

    resp = guarded_client.get('/test/protected')
    assert resp.status_code == 401
    assert resp.get_json() == {'error': 'Invalid or expired session'}


def test_require_auth_with_valid_token_attaches_identity(guarded_client):
    guarded_client.set_cookie('sessionToken', create_session_token(IDENTITY, secret=TEST_SECRET))

    resp = guarded_client.get('/test/protected')
    assert resp.status_code == 200
    body = resp.get_json()
    assert (body['id'], body['username'], body['role']) == (42, 'dr.yang', 'therapist')


def test_optional_auth_proceeds_anonymously(guarded_client):
    assert guarded_client.get('/test/optional').get_json() == {'user': None}

    guarded_client.set_cookie('sessionToken', 'tampered')
    assert guarded_client.get('/test/optional').get_json() == {'user': None}


def test_optional_auth_attaches_valid_identity(guarded_client):
    guarded_client.set_cookie('sessionToken', create_session_token(IDENTITY, secret=TEST_SECRET))
    assert guarded_client.get('/test/optional').get_json() == {'user': 'dr.yang'}


@pytest.mark.parametrize('method', ['GET', 'HEAD', 'OPTIONS'])
def test_csrf_allows_safe_methods_without_tokens(guarded_client, method):
    resp = guarded_client.open('/test/mutate', method=method)
    assert resp.status_code == 200


@pytest.mark.parametrize('method', ['POST', 'PUT', 'DELETE'])
def test_csrf_rejects_mutation_without_tokens(guarded_client, method):
    resp = guarded_client.open('/test/mutate', method=method)
    assert resp.status_code == 403
    assert resp.get_json() == {'error': 'Invalid CSRF token'}


def test_csrf_rejects_mismatched_tokens(guarded_client):
    guarded_client.set_cookie('csrfToken', 'cookie-token')
    resp = guarded_client.post('/test/mutate', headers={'X-CSRF-Token': 'header-token'})
    assert resp.status_code == 403


def test_csrf_rejects_header_without_cookie(guarded_client):
    resp = guarded_client.post('/test/mutate', headers={'X-CSRF-Token': 'header-token'})
    assert resp.status_code == 403


def test_csrf_allows_matching_tokens(guarded_client):
    guarded_client.set_cookie('csrfToken', 'same-token')
    resp = guarded_client.post('/test/mutate', headers={'X-CSRF-Token': 'same-token'})
    assert resp.status_code == 200
    assert resp.get_json() == {'ok': True}


def test_csrf_exempt_paths_skip_the_check(guarded_client):
    resp = guarded_client.post('/api/portal/activate')
    assert resp.status_code == 200

    # Login is exempt too: it fails on missing credentials, not on CSRF
    resp = guarded_client.post('/api/auth/login', json={})
    assert resp.status_code == 400


def test_csrf_protection_decorator(app):
    app.config['CSRF_EXEMPT_PATHS'] = ['/test/decorated']

    @app.route('/test/decorated', methods=['POST'])
    @csrf_protection
    def decorated():
        return jsonify({'ok': True})

    client = app.test_client()
    assert client.post('/test/decorated').status_code == 403

    client.set_cookie('csrfToken', 'abc')
    assert client.post('/test/decorated', headers={'X-CSRF-Token': 'abc'}).status_code == 200
