import os

os.environ.setdefault('ENV', 'local')
os.environ.setdefault('DATABASE_DSN', 'sqlite+aiosqlite:///./test.db')
os.environ.setdefault('EVENT_BUS_PROVIDER', 'noop')

import uuid  # noqa: E402
from datetime import date, datetime, time, timezone  # noqa: E402

import pytest  # noqa: E402

from app.core.base import Base  # noqa: E402
from app.core.db import build_engine, build_session_factory  # noqa: E402
from app.modules.availability import models as _availability_models  # noqa: E402,F401
from app.modules.appointments import models as _appointment_models  # noqa: E402,F401
from app.modules.events import outbox as _outbox  # noqa: E402,F401
from app.modules.availability.recurrence import DailyRule  # noqa: E402
from app.modules.availability.schemas import BusinessRules, ConfigCreate  # noqa: E402
from app.modules.availability.service import AvailabilityService  # noqa: E402

# far enough ahead of every slot date used in the tests
NOW = datetime(2027, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
async def engine(tmp_path):
    # a file database so concurrent sessions really use separate connections
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'slotbook.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def professional_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_config(session_factory, professional_id):
    """Persist an AvailabilityConfig; defaults to daily 09:00-17:00 UTC, 60 min, no buffer."""

    async def _make(**overrides):
        data = dict(
            title='Consultations',
            recurrence=DailyRule(),
            start_time=time(9, 0),
            end_time=time(17, 0),
            duration_minutes=60,
            timezone='UTC',
            valid_from=date(2027, 1, 1),
            rules=BusinessRules(buffer_minutes=0, max_slots_per_day=8, min_advance_minutes=0, max_advance_days=365),
        )
        data.update(overrides)
        async with session_factory() as s:
            return await AvailabilityService(s).create_config(professional_id, ConfigCreate(**data))

    return _make


@pytest.fixture
def generate(session_factory, now):
    async def _generate(config_id, range_start, range_end, force_regenerate=False):
        async with session_factory() as s:
            return await AvailabilityService(s).generate_slots(config_id, range_start, range_end, force_regenerate, now=now)

    return _generate


@pytest.fixture
def list_slots(session_factory, professional_id):
    async def _list(**filters):
        async with session_factory() as s:
            return await AvailabilityService(s).repo.list_slots(professional_id, **filters)

    return _list
