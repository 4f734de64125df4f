import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("ENFORCE_TRANSITIONS", "true")

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session

from db import build_engine, create_db_and_tables, get_session
from main import app
from models import BorrowRequest, Equipment, RequestStatus, User, UserRole
from routers.auth import create_access_token, hash_password


@pytest.fixture()
def engine():
    test_engine = build_engine("sqlite://", poolclass=StaticPool)
    create_db_and_tables(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture()
def client(session):
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(session):
    counter = {"n": 0}

    def _make(role: UserRole = UserRole.student, password: str = "pw") -> User:
        counter["n"] += 1
        user = User(
            name=f"{role.value.title()} {counter['n']}",
            email=f"{role.value}{counter['n']}@school.edu",
            password_hash=hash_password(password),
            role=role,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture()
def make_equipment(session):
    def _make(name: str = "Projector", category: str = "AV", quantity: int = 1, availability: bool = True) -> Equipment:
        equipment = Equipment(name=name, category=category, quantity=quantity, availability=availability)
        session.add(equipment)
        session.commit()
        session.refresh(equipment)
        return equipment

    return _make


@pytest.fixture()
def make_request(session):
    """Insert a ledger row directly, bypassing admission."""

    def _make(user: User, equipment: Equipment, start: date, end: date, status: RequestStatus = RequestStatus.PENDING) -> BorrowRequest:
        row = BorrowRequest(
            user_id=user.id,
            equipment_id=equipment.id,
            requested_date=start,
            due_date=end,
            status=status,
        )
        session.add(row)
        session.commit()
        session.refresh(row)
        return row

    return _make


@pytest.fixture()
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}

    return _headers
