import pytest
from fastapi.testclient import TestClient
from passlib.hash import argon2
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import Base
from models import User, AuditLog

PASSWORD = "correct horse battery staple"
PASSWORD_HASH = argon2.hash(PASSWORD)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def SessionTest(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(SessionTest):
    with SessionTest() as session:
        yield session


@pytest.fixture
def make_user(db):
    def _make(email, role="user", name=None):
        user = User(email=email, name=name or email.split("@")[0].title(), role=role, password_hash=PASSWORD_HASH)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def plain_user(make_user):
    return make_user("pat@example.org", "user", "Pat")


@pytest.fixture
def authorized_user(make_user):
    return make_user("dana@example.org", "authorized", "Dana")


@pytest.fixture
def admin(make_user):
    return make_user("root@example.org", "admin", "Root")


@pytest.fixture
def audit_count(db):
    def _count():
        return db.query(AuditLog).count()
    return _count


@pytest.fixture
def client(SessionTest):
    from app import app, get_db

    def override_get_db():
        session = SessionTest()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
