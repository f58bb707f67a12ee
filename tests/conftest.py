import sys
from collections.abc import Callable, Generator
from datetime import datetime
from pathlib import Path
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from propertyhub.config import Base  # noqa: E402
from propertyhub.main import app  # noqa: E402
from propertyhub.api.dependencies import get_db  # noqa: E402
from propertyhub.auth.jwt import get_current_user  # noqa: E402
from propertyhub.core.rate_limit import limiter  # noqa: E402
# Import the full models module so every table registers with Base metadata.
from propertyhub.models import models as _all_models  # noqa: E402,F401
from propertyhub.models.models import Property, PropertyImage, PropertyOwner, Unit, User  # noqa: E402
from propertyhub.services.cache import cache  # noqa: E402
from propertyhub.services.image_support import property_image_support  # noqa: E402
from propertyhub.services.storage import storage_service  # noqa: E402


def _override_get_db(session):
    def _generator():
        try:
            yield session
        finally:
            pass

    return _generator


def _override_user(user):
    def _inner():
        return user

    return _inner


@pytest.fixture
def db_engine(tmp_path) -> Generator[Engine, None, None]:
    db_path = tmp_path / "test.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine: Engine) -> Generator[Session, None, None]:
    """Provide a fresh SQLite database for each test."""
    SessionLocal = sessionmaker(bind=db_engine, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _isolate_shared_state(tmp_path, monkeypatch):
    """The probe, response cache, rate limiter and upload root are process-wide."""
    monkeypatch.setattr(storage_service, "upload_root", tmp_path / "uploads")
    property_image_support.reset()
    cache.clear()
    limiter.reset()
    yield
    property_image_support.reset()
    cache.clear()
    limiter.reset()


@pytest.fixture
def drop_image_table(db_session: Session, db_engine: Engine) -> Callable[[], None]:
    """Simulate a database that never received the property images migration."""

    def _drop() -> None:
        db_session.commit()
        PropertyImage.__table__.drop(bind=db_engine)

    return _drop


@pytest.fixture
def create_user(db_session: Session) -> Callable[..., User]:
    counter = {"value": 0}

    def _create(
        role: str = "PROPERTY_MANAGER",
        email: Optional[str] = None,
        subscription_status: str = "ACTIVE",
        subscription_plan: str = "PROFESSIONAL",
        trial_end_date: Optional[datetime] = None,
        first_name: str = "Test",
        last_name: Optional[str] = None,
    ) -> User:
        counter["value"] += 1
        user = User(
            email=email or f"{role.lower()}{counter['value']}@example.com",
            first_name=first_name,
            last_name=last_name or f"User{counter['value']}",
            role=role,
            subscription_status=subscription_status,
            subscription_plan=subscription_plan,
            trial_end_date=trial_end_date,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _create


@pytest.fixture
def create_property(db_session: Session) -> Callable[..., Property]:
    counter = {"value": 0}

    def _create(manager: User, **overrides) -> Property:
        counter["value"] += 1
        values = {
            "name": f"Property {counter['value']}",
            "address": f"{counter['value']} Main Street",
            "city": "Springfield",
            "country": "USA",
            "property_type": "RESIDENTIAL",
            "status": "ACTIVE",
            "total_units": 0,
        }
        values.update(overrides)
        property_obj = Property(manager_id=manager.id, **values)
        db_session.add(property_obj)
        db_session.commit()
        return property_obj

    return _create


@pytest.fixture
def add_owner(db_session: Session) -> Callable[..., PropertyOwner]:
    def _add(property_obj: Property, owner: User, ownership_percentage: float = 100.0) -> PropertyOwner:
        ownership = PropertyOwner(
            property_id=property_obj.id,
            owner_id=owner.id,
            ownership_percentage=ownership_percentage,
        )
        db_session.add(ownership)
        db_session.commit()
        return ownership

    return _add


@pytest.fixture
def add_unit(db_session: Session) -> Callable[..., Unit]:
    def _add(property_obj: Property, unit_number: str = "101", status: str = "AVAILABLE") -> Unit:
        unit = Unit(property_id=property_obj.id, unit_number=unit_number, status=status)
        db_session.add(unit)
        db_session.commit()
        return unit

    return _add


@pytest.fixture
def client(db_session: Session) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    test_client = TestClient(app)
    try:
        yield test_client
    finally:
        app.dependency_overrides.clear()
        test_client.close()


@pytest.fixture
def login() -> Callable[[User], User]:
    """Authenticate subsequent client requests as ``user``."""

    def _login(user: User) -> User:
        app.dependency_overrides[get_current_user] = _override_user(user)
        return user

    return _login
