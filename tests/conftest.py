import os
from datetime import datetime
from typing import Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("LOG_DIR", "./logs")

from common.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from common.database import Base, SessionLocal, engine  # noqa: E402
from common.models import RoleEnum  # noqa: E402
from scheduling.clock import FixedClock, get_clock  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.rooms.app import app as rooms_app  # noqa: E402
from services.rooms.app import room_list_cache  # noqa: E402
from services.users.app import app as users_app  # noqa: E402

# Monday 2030-01-07, 07:00 in the portal's timezone
REFERENCE_NOW = datetime(2030, 1, 7, 7, 0)
PASSWORD = "Passw0rd!"


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    room_list_cache.invalidate()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clock() -> Generator[FixedClock, None, None]:
    fixed = FixedClock(REFERENCE_NOW)
    for service in (users_app, rooms_app, bookings_app):
        service.dependency_overrides[get_clock] = lambda: fixed
    yield fixed
    for service in (users_app, rooms_app, bookings_app):
        service.dependency_overrides.pop(get_clock, None)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def rooms_client() -> Generator[TestClient, None, None]:
    with TestClient(rooms_app) as client:
        yield client


@pytest.fixture()
def bookings_client() -> Generator[TestClient, None, None]:
    with TestClient(bookings_app) as client:
        yield client


def register(users_client, username: str, role: RoleEnum = RoleEnum.FACULTY) -> None:
    response = users_client.post(
        "/users/register",
        json={
            "name": username.title(),
            "username": username,
            "email": f"{username}@example.com",
            "password": PASSWORD,
            "role": role.value,
        },
    )
    assert response.status_code == 201, response.text


def auth_header(users_client, username: str, password: str = PASSWORD) -> dict[str, str]:
    response = users_client.post(
        "/users/login",
        data={"username": username, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers(users_client) -> dict[str, str]:
    register(users_client, "admin", RoleEnum.ADMIN)
    return auth_header(users_client, "admin")


@pytest.fixture()
def faculty_headers(users_client, admin_headers) -> dict[str, str]:
    register(users_client, "tahsin", RoleEnum.FACULTY)
    return auth_header(users_client, "tahsin")


@pytest.fixture()
def student_headers(users_client, admin_headers) -> dict[str, str]:
    register(users_client, "nadia", RoleEnum.STUDENT)
    return auth_header(users_client, "nadia")


@pytest.fixture()
def room_101(rooms_client, admin_headers) -> dict:
    response = rooms_client.post(
        "/rooms",
        json={
            "room_number": "101",
            "name": "Seminar Room",
            "purpose": "Lecture",
            "capacity": 30,
            "location": "Academic Building, Level 1",
            "operating_start": "08:00",
            "operating_end": "20:00",
        },
        headers=admin_headers,
    )
    assert response.status_code == 201, response.text
    return response.json()
