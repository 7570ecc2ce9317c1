from datetime import datetime, timedelta, timezone

import pytest

from pos_pairing.core.config import Settings
from pos_pairing.database.engine import create_db_engine, create_session_factory
from pos_pairing.database.session import init_db
from pos_pairing.services.device_auth import DeviceAuthService

START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock the tests move by hand."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path / 'pairing.db'}",
        OPERATOR_API_KEY="operator-key",
        JWT_SECRET="test-signing-secret-with-plenty-of-entropy-0123456789",
        TOKEN_HASH_PEPPER="pepper",
        AUTO_CREATE_TABLES=True,
    )


@pytest.fixture
def engine(test_settings):
    engine = create_db_engine(test_settings.DATABASE_URL)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def service(test_settings, clock):
    return DeviceAuthService.from_settings(test_settings, clock=clock)


@pytest.fixture
def pairing(service):
    return service.pairing


@pytest.fixture
def store(pairing):
    return pairing.store


@pytest.fixture
def registry(service):
    return service.registry


@pytest.fixture
def issuer(service):
    return service.issuer
