"""Pytest fixtures for testing"""

import asyncio
import pytest
from datetime import timedelta
from typing import Any, Callable, Dict, Generator, List
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from goal_verifier.api.main import create_app
from goal_verifier.config import Settings
from goal_verifier.domain.exceptions import LedgerError, VendorAPIError
from goal_verifier.domain.models import Goal, HealthDataType
from goal_verifier.infrastructure.database.models import Base
from goal_verifier.infrastructure.database.repositories import GoalStore, PayoutRepository
from goal_verifier.services.orchestrator import VerificationConfig, VerificationOrchestrator
from goal_verifier.services.payouts import PayoutExecutor
from goal_verifier.utils.date_utils import utcnow


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeVendor:
    """In-memory WHOOP stand-in returning raw day payloads"""

    def __init__(self, records: List[Dict[str, Any]] | None = None):
        self.records = records or []
        self.authenticated = True
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: List[int] = []

    def is_authenticated(self) -> bool:
        return self.authenticated

    async def get_all_health_data(self, days: int = 7) -> List[Dict[str, Any]]:
        self.calls.append(days)
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.records)


class FakeLedger:
    """Records submitted claims; can be told to fail or be slow"""

    def __init__(self):
        self.claims: List[Dict[str, Any]] = []
        self.delay = 0.0
        self.failures_remaining = 0
        self.failing_goals: set = set()

    async def submit_claim(self, payload: Dict[str, Any]) -> str:
        await asyncio.sleep(self.delay)
        if self.failures_remaining > 0 or payload["goalId"] in self.failing_goals:
            self.failures_remaining = max(0, self.failures_remaining - 1)
            raise LedgerError("Ledger error after 5 attempts: 503")
        self.claims.append(payload)
        return f"tx_{len(self.claims)}"


def build_sleep_days(scores: List[float | None], start=None) -> List[Dict[str, Any]]:
    """Nested WHOOP-style day payloads, most recent first, one per consecutive day"""
    start = start or utcnow().date()
    return [
        {"date": (start - timedelta(days=offset)).isoformat(), "sleep": {"score": score}}
        for offset, score in enumerate(scores)
    ]


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    """Create test database and hand out its session factory"""
    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(session_factory: sessionmaker) -> GoalStore:
    return GoalStore(session_factory)


@pytest.fixture
def payouts(session_factory: sessionmaker) -> PayoutRepository:
    return PayoutRepository(session_factory)


@pytest.fixture
def make_goal(store: GoalStore) -> Callable[..., Goal]:
    """Factory for a 3-night sleep goal (target 80, reward 25) with overridable fields"""

    def _make_goal(**overrides: Any) -> Goal:
        fields: Dict[str, Any] = {
            "title": "Sleep well",
            "health_data_type": HealthDataType.SLEEP,
            "target_value": 80,
            "reward": 25.0,
            "deadline": utcnow() + timedelta(days=14),
            "sponsor": "sponsor_acme",
            "conditions": ["sleep_score >= 80", "consecutive_nights >= 3"],
        }
        fields.update(overrides)
        return store.create(**fields)

    return _make_goal


@pytest.fixture
def vendor() -> FakeVendor:
    return FakeVendor(build_sleep_days([85, 90, 82, 60, 95]))


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def payout_executor(store: GoalStore, payouts: PayoutRepository, ledger: FakeLedger) -> PayoutExecutor:
    return PayoutExecutor(
        store=store,
        payouts=payouts,
        ledger=ledger,
        timeout_seconds=2.0,
        claim_ttl_seconds=600.0,
        network="emulator",
    )


@pytest.fixture
def orchestrator(store: GoalStore, vendor: FakeVendor, payout_executor: PayoutExecutor) -> VerificationOrchestrator:
    config = VerificationConfig(
        verification_interval_seconds=0.05,
        vendor_fetch_timeout_seconds=1.0,
    )
    return VerificationOrchestrator(store=store, vendor=vendor, payout_executor=payout_executor, config=config)


@pytest.fixture
def make_client() -> Callable[..., TestClient]:
    """Build a test client around a given orchestrator"""

    def _make_client(orchestrator: VerificationOrchestrator, webhook_secret: str | None = None) -> TestClient:
        settings = Settings(
            database_url=TEST_DATABASE_URL,
            database_auto_create=False,
            verification_autostart=False,
            whoop_webhook_secret=webhook_secret,
        )
        return TestClient(create_app(orchestrator=orchestrator, settings=settings))

    return _make_client


@pytest.fixture
def client(make_client: Callable[..., TestClient], orchestrator: VerificationOrchestrator) -> TestClient:
    """Create FastAPI test client with test database and fake collaborators"""
    return make_client(orchestrator)


@pytest.fixture
def sleep_days() -> Callable[..., List[Dict[str, Any]]]:
    return build_sleep_days
