import itertools
import os
from typing import Generator

# Keep the import-time table creation in main.py off the working directory
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from donation_hub import models
from donation_hub.auth import create_access_token, hash_password
from donation_hub.db import Base, get_db, make_engine
from donation_hub.main import app
from donation_hub.policy import Principal

PASSWORD = "password123"


@pytest.fixture(scope="function")
def db_session() -> Generator:
    # Use in-memory SQLite with a single connection
    engine = make_engine("sqlite://", poolclass=StaticPool)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture(scope="function")
def client(db_session):
    # Override dependency to use the same session
    def override_get_db():
        try:
            yield db_session
        finally:
            pass
    app.dependency_overrides[get_db] = override_get_db
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    counter = itertools.count(1)

    def _make(role: str, name: str | None = None, **fields) -> models.User:
        n = next(counter)
        user = models.User(
            name=name or f"{role.title()} {n}",
            email=f"{role}{n}@example.com",
            password_hash=hash_password(PASSWORD),
            role=role,
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user(models.ADMIN, name="Ada Admin")


@pytest.fixture
def donor(make_user):
    return make_user(models.DONOR, name="Dan Donor")


@pytest.fixture
def foodbank(make_user):
    return make_user(models.FOODBANK, name="Northside Foodbank")


@pytest.fixture
def other_foodbank(make_user):
    return make_user(models.FOODBANK, name="Southside Foodbank")


@pytest.fixture
def recipient(make_user):
    return make_user(models.RECIPIENT, name="Rita Recipient")


@pytest.fixture
def as_principal():
    def _principal(user: models.User) -> Principal:
        return Principal(id=user.id, role=user.role)
    return _principal


@pytest.fixture
def headers():
    def _headers(user: models.User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}
    return _headers
