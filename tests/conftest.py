"""Pytest fixtures for MinRisk tests."""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from minrisk.appetite import (
    AppetiteCategory,
    AppetiteLevel,
    BreachDirection,
    Control,
    InMemoryAppetiteStore,
    RiskProfile,
    ToleranceMetric,
)
from minrisk.config.settings import RAFEngineConfig, Settings
from minrisk.db.models import Base

NOW = datetime(2026, 3, 31, 12, 0, tzinfo=UTC)


# =============================================================================
# Structlog Configuration Fixture
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_structlog_after_test():
    """Reset structlog configuration after each test.

    This ensures tests that modify structlog global state
    don't affect other tests.
    """
    yield
    structlog.reset_defaults()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def now() -> datetime:
    """Fixed evaluation instant."""
    return NOW


@pytest.fixture
def org_id() -> UUID:
    return uuid4()


@pytest.fixture
def engine_config() -> RAFEngineConfig:
    """Engine configuration with defaults."""
    return RAFEngineConfig()


@pytest.fixture
def test_settings() -> Settings:
    """Settings for the test environment."""
    return Settings(
        ENVIRONMENT="test",
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        log_level="DEBUG",
    )


@pytest.fixture
def store() -> InMemoryAppetiteStore:
    """Empty in-memory store."""
    return InMemoryAppetiteStore()


def make_tolerance(
    metric_name: str = "complaints",
    *,
    current_value: float | None = 5.0,
    soft_limit: float | None = 10.0,
    hard_limit: float | None = 20.0,
    direction: BreachDirection = BreachDirection.UP,
    measured_at: datetime | None = NOW - timedelta(days=1),
    **kwargs,
) -> ToleranceMetric:
    """Build a tolerance metric measured one day before NOW by default."""
    return ToleranceMetric(
        tolerance_id=kwargs.pop("tolerance_id", uuid4()),
        metric_name=metric_name,
        soft_limit=soft_limit,
        hard_limit=hard_limit,
        breach_direction=direction,
        current_value=current_value,
        last_measurement_date=measured_at,
        **kwargs,
    )


def make_risk(
    organization_id: UUID,
    *,
    likelihood: int = 4,
    impact: int = 5,
    level: AppetiteLevel | None = AppetiteLevel.MODERATE,
    category: AppetiteCategory | None = None,
    residual_score: float | None = None,
) -> RiskProfile:
    """Build a risk linked to a category of the given level."""
    if category is None and level is not None:
        category = AppetiteCategory(
            category_id=uuid4(), appetite_level=level, risk_category="Operational"
        )
    return RiskProfile(
        risk_id=uuid4(),
        organization_id=organization_id,
        title="Customer complaints",
        likelihood_inherent=likelihood,
        impact_inherent=impact,
        appetite_category=category,
        residual_score=residual_score,
    )


def make_control(d: int, i: int, m: int, e: int) -> Control:
    """Build a control from its four DIME sub-scores."""
    return Control(
        control_id=uuid4(),
        name="control",
        design_score=d,
        implementation_score=i,
        monitoring_score=m,
        evaluation_score=e,
    )


@pytest.fixture(name="make_tolerance")
def make_tolerance_fixture():
    """Factory for tolerance metrics."""
    return make_tolerance


@pytest.fixture(name="make_risk")
def make_risk_fixture():
    """Factory for risk profiles."""
    return make_risk


@pytest.fixture(name="make_control")
def make_control_fixture():
    """Factory for DIME-scored controls."""
    return make_control


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """SQLite database file with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'minrisk.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
