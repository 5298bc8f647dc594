"""Pytest configuration and fixtures."""

import os

# Force testing environment before the application reads its settings
os.environ["TESTING"] = "true"

from datetime import date  # noqa: E402
from typing import Callable, Dict, List, Optional, Tuple  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from curtailment_mining import models  # noqa: E402,F401
from curtailment_mining.core.database import Base  # noqa: E402
from curtailment_mining.core.deps import get_db  # noqa: E402
from curtailment_mining.main import create_application  # noqa: E402
from curtailment_mining.models import CurtailmentRecord, MiningCalculation  # noqa: E402
from curtailment_mining.services.bmu_mapping import BmuMapping  # noqa: E402
from curtailment_mining.services.elexon_client import ElexonClient  # noqa: E402

# Use SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ELEXON_TEST_URL = "https://elexon.test/bmrs/api/v1"


@pytest.fixture(scope="function")
async def test_engine():
    """Create a test engine for each test function."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Create all tables
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables and dispose engine
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function")
async def test_session(test_engine):
    """Create a test database session."""
    session_factory = async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with session_factory() as session:
        yield session


@pytest.fixture(scope="function")
async def api_client(test_session):
    """Async HTTP client bound to the app, with the database dependency overridden."""
    app = create_application()

    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def bmu_mapping() -> BmuMapping:
    """Three tracked wind farm BM Units."""
    return BmuMapping(
        {
            "T_FARM-1": "Farm One Wind Ltd",
            "T_FARM-2": "Farm Two Wind Ltd",
            "T_FARM-3": None,
        }
    )


def stack_record(
    bm_unit: str,
    volume: float,
    original_price: float = -50.0,
    so_flag: bool = True,
    final_price: Optional[float] = None,
    lead_party_name: Optional[str] = None,
) -> Dict:
    """One settlement stack entry as published by Elexon."""
    record = {
        "id": bm_unit,
        "volume": volume,
        "originalPrice": original_price,
        "finalPrice": original_price if final_price is None else final_price,
        "soFlag": so_flag,
        "cadlFlag": None,
    }
    if lead_party_name is not None:
        record["leadPartyName"] = lead_party_name
    return record


class StackServer:
    """
    In-memory stand-in for the settlement stack endpoints.

    ``stacks`` maps (side, period) to the records returned; anything not
    listed returns an empty stack. ``responses`` queues canned responses per
    (side, period) that are served before falling back to ``stacks``.
    """

    def __init__(self):
        self.stacks: Dict[Tuple[str, int], List[Dict]] = {}
        self.responses: Dict[Tuple[str, int], List[httpx.Response]] = {}
        self.calls: List[Tuple[str, str, int]] = []
        self.headers: List[httpx.Headers] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.rstrip("/").split("/")
        side, settlement_date, period = parts[-3], parts[-2], int(parts[-1])
        self.calls.append((side, settlement_date, period))
        self.headers.append(request.headers)

        queued = self.responses.get((side, period))
        if queued:
            return queued.pop(0)
        return httpx.Response(200, json={"data": self.stacks.get((side, period), [])})

    def calls_for(self, side: str, period: int) -> int:
        return sum(1 for s, _, p in self.calls if s == side and p == period)


@pytest.fixture
def stack_server() -> StackServer:
    return StackServer()


@pytest.fixture
def sleeps() -> List[float]:
    """Delays requested by the retry loop."""
    return []


@pytest.fixture
def make_client(stack_server, sleeps) -> Callable[..., ElexonClient]:
    """Factory for an ElexonClient wired to the in-memory stack server."""

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    def factory(**kwargs) -> ElexonClient:
        options = {
            "base_url": ELEXON_TEST_URL,
            "api_key": "test-key",
            "timeout": 5.0,
            "max_retries": 3,
            "retry_base_delay": 1.0,
            "retry_max_delay": 10.0,
        }
        options.update(kwargs)
        options.setdefault("transport", httpx.MockTransport(stack_server.handler))
        return ElexonClient(sleep=fake_sleep, **options)

    return factory


async def add_curtailment(
    session: AsyncSession,
    settlement_date: date,
    settlement_period: int,
    farm_id: str,
    volume: float,
    original_price: float = 50.0,
) -> CurtailmentRecord:
    """Insert one curtailment record with payment derived from volume and price."""
    record = CurtailmentRecord(
        settlement_date=settlement_date,
        settlement_period=settlement_period,
        farm_id=farm_id,
        lead_party_name=None,
        volume=volume,
        payment=abs(volume) * original_price * -1,
        original_price=original_price,
        final_price=original_price,
        so_flag=True,
    )
    session.add(record)
    await session.flush()
    return record


async def add_calculation(
    session: AsyncSession,
    settlement_date: date,
    settlement_period: int,
    farm_id: str,
    miner_model: str,
    bitcoin_mined: float = 0.001,
    difficulty: float = 1.1e14,
    value_at_mining: Optional[float] = None,
) -> MiningCalculation:
    calc = MiningCalculation(
        settlement_date=settlement_date,
        settlement_period=settlement_period,
        farm_id=farm_id,
        miner_model=miner_model,
        bitcoin_mined=bitcoin_mined,
        difficulty=difficulty,
        value_at_mining=value_at_mining,
    )
    session.add(calc)
    await session.flush()
    return calc
