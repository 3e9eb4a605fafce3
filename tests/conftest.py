import pytest

from practice import create_app
from practice.extensions import db
from practice.models.user_models import User

TEST_SECRET = 'test-signing-secret'
TEST_PASSWORD = 'Correct-Horse-42'


class RecordingStore:
    """In-memory persistence collaborator that keeps what it is given."""

    def __init__(self):
        self.audit_entries = []
        self.login_attempts = []
        self.sessions = []

    def insert_audit_entry(self, values):
        self.audit_entries.append(values)
        return values

    def insert_login_attempt(self, values):
        self.login_attempts.append(values)
        return values

    def insert_user_session(self, values):
        self.sessions.append(values)
        return values

    def touch_user_session(self, session_id, now):
        return None

    def query_audit_entries(self, start, end, **filters):
        return [e for e in self.audit_entries if start <= e['timestamp'] <= end]


class FailingStore:
    """Persistence collaborator whose every write fails."""

    def __init__(self):
        self.calls = 0

    def _fail(self, *args, **kwargs):
        self.calls += 1
        raise RuntimeError('database unavailable')

    insert_audit_entry = _fail
    insert_login_attempt = _fail
    insert_user_session = _fail
    touch_user_session = _fail
    query_audit_entries = _fail


@pytest.fixture()
def app(tmp_path):
    """Return an application bound to an in-memory database."""

    app = create_app('testing', {
        'SESSION_TOKEN_SECRET': TEST_SECRET,
        'AUDIT_SPOOL_PATH': str(tmp_path / 'audit_spool.jsonl'),
        'LOG_DIR': str(tmp_path),
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_user(app):
    """Factory for persisted users."""

    def _make(username='therapist1', role='therapist', password=TEST_PASSWORD, is_active=True):
        user = User(
            username=username,
            full_name=username.title(),
            email=f'{username}@example.com',
            role=role,
            is_active=is_active,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture()
def login(client):
    """Log the test client in and return the response."""

    def _login(username, password=TEST_PASSWORD):
        return client.post('/api/auth/login', json={'username': username, 'password': password})

    return _login
