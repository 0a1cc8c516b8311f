"""
Pytest fixtures for backend tests.

Provides the application with an in-memory database, a per-test table wipe,
users of every role, and identity header helpers.
"""

import pytest
from app import create_app
from app.extensions import db
from app.models import User
from app.permissions import ROLE_ADMIN, ROLE_ACCOUNTANT, ROLE_CREATOR, ROLE_STUDENT


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ATOMIC_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def make_user(session, uid: str, role: str, display_name: str | None = None, xp: int = 0) -> User:
    user = User(
        id=uid,
        display_name=display_name or uid.title(),
        email=f"{uid}@example.com",
        role=role,
        xp=xp,
        streak=0,
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def admin(db_session):
    return make_user(db_session, "admin", ROLE_ADMIN, "Alice Admin")


@pytest.fixture(scope='function')
def accountant(db_session):
    return make_user(db_session, "accountant", ROLE_ACCOUNTANT, "Ari Accountant")


@pytest.fixture(scope='function')
def creator(db_session):
    return make_user(db_session, "creator", ROLE_CREATOR, "Cam Creator")


@pytest.fixture(scope='function')
def student(db_session):
    return make_user(db_session, "student", ROLE_STUDENT, "Sam Student")


def auth_headers(uid: str) -> dict:
    """Helper to assert an identity the way the upstream provider does."""
    return {'X-Auth-User': uid}
