"""Test fixtures for psychosocial-automation.

Database-backed tests run against a throwaway SQLite file per test so that
the claim/savepoint behaviour matches a real multi-connection store.
"""

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from psychosocial_automation.adapters.wiring import build_scheduler
from psychosocial_automation.core.models import (
    AssessmentResponse,
    AutomationConfig,
    Base,
    Employee,
    RiskAnalysis,
    Sector,
)
from psychosocial_automation.core.taxonomy import CATEGORY_QUESTIONS, TAXONOMY_VERSION
from psychosocial_automation.database import (
    close_database,
    create_engine,
    create_session_factory,
    init_database,
)
from psychosocial_automation.main import create_app
from psychosocial_automation.settings import Settings

SeedAssessment = Callable[..., Awaitable[uuid.UUID]]


def answers_for(default: float | None = None, **category_values: float) -> dict[str, float]:
    """Build a q1..q25 answer map with one value per category.

    Args:
        default: Value for categories not named explicitly; None leaves them unanswered.
        **category_values: Category name to the answer used for all its questions.

    Returns:
        Answer map keyed by question id.
    """
    answers: dict[str, float] = {}
    for category, question_ids in CATEGORY_QUESTIONS.items():
        value = category_values.get(category, default)
        if value is None:
            continue
        for question_id in question_ids:
            answers[question_id] = value
    return answers


# ---------------------------------------------------------------------------
# Identity fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_answers() -> Callable[..., dict[str, float]]:
    """Answer map builder, see answers_for."""
    return answers_for


@pytest.fixture()
def company_id() -> uuid.UUID:
    """Fixed company UUID for tests."""
    return uuid.UUID("11111111-1111-1111-1111-111111111111")


@pytest.fixture()
def other_company_id() -> uuid.UUID:
    """A second company used for ownership checks."""
    return uuid.UUID("33333333-3333-3333-3333-333333333333")


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def database_url(tmp_path: Path) -> str:
    """SQLite file database private to the test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'psychosocial.db'}"


@pytest.fixture()
def settings(database_url: str) -> Settings:
    """Service settings pointing at the test database, scheduler loop off."""
    return Settings(
        database_url=database_url,
        scheduler_enabled=False,
        scheduler_poll_interval_seconds=0.05,
        log_json=False,
    )


@pytest_asyncio.fixture()
async def engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Engine with the full schema created."""
    test_engine = create_engine(database_url)
    async with test_engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return create_session_factory(engine)


@pytest.fixture()
def seed_assessment(
    session_factory: async_sessionmaker[AsyncSession],
    company_id: uuid.UUID,
) -> SeedAssessment:
    """Factory inserting a sector, an employee, and a completed assessment."""

    async def _seed(
        response_data: Any = None,
        raw_score: float = 0.0,
        sector_type: str | None = None,
        owner_company_id: uuid.UUID | None = None,
    ) -> uuid.UUID:
        owner = owner_company_id or company_id
        async with session_factory() as session:
            sector = Sector(company_id=owner, name="Atendimento", sector_type=sector_type)
            session.add(sector)
            await session.flush()
            employee = Employee(name="Maria Souza", company_id=owner, sector_id=sector.id)
            session.add(employee)
            await session.flush()
            assessment = AssessmentResponse(
                employee_id=employee.id,
                response_data=response_data if response_data is not None else {},
                raw_score=raw_score,
                completed_at=datetime.now(timezone.utc),
            )
            session.add(assessment)
            await session.commit()
            return assessment.id

    return _seed


@pytest.fixture()
def seed_sector_analyses(
    session_factory: async_sessionmaker[AsyncSession],
    company_id: uuid.UUID,
) -> Callable[..., Awaitable[uuid.UUID]]:
    """Factory inserting a sector whose employees each have one analysed assessment.

    One employee is created per exposure level given; each gets a single
    analysis row in the "organizacao_trabalho" category.
    """

    async def _seed(levels: list[str], sector_name: str = "Produção") -> uuid.UUID:
        today = date.today()
        async with session_factory() as session:
            sector = Sector(company_id=company_id, name=sector_name)
            session.add(sector)
            await session.flush()
            for index, level in enumerate(levels):
                employee = Employee(name=f"Funcionário {index + 1}", company_id=company_id, sector_id=sector.id)
                session.add(employee)
                await session.flush()
                assessment = AssessmentResponse(
                    employee_id=employee.id,
                    response_data={},
                    raw_score=0.0,
                    completed_at=datetime.now(timezone.utc),
                )
                session.add(assessment)
                await session.flush()
                session.add(
                    RiskAnalysis(
                        assessment_response_id=assessment.id,
                        company_id=company_id,
                        sector_id=sector.id,
                        category="organizacao_trabalho",
                        raw_score=0.0,
                        weighted_score=0.0,
                        risk_score=0.0,
                        exposure_level=level,
                        confidence_level=100,
                        taxonomy_version=TAXONOMY_VERSION,
                        evaluation_date=today,
                        next_evaluation_date=today,
                    )
                )
            await session.commit()
            return sector.id

    return _seed


@pytest.fixture()
def seed_automation_config(
    session_factory: async_sessionmaker[AsyncSession],
    company_id: uuid.UUID,
) -> Callable[..., Awaitable[None]]:
    """Factory inserting the company's automation switches."""

    async def _seed(**switches: Any) -> None:
        async with session_factory() as session:
            session.add(AutomationConfig(company_id=company_id, **switches))
            await session.commit()

    return _seed


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def app(engine: AsyncEngine, settings: Settings) -> AsyncGenerator[FastAPI, None]:
    """Application wired to the test database.

    ASGITransport does not run the lifespan handler, so the database and the
    scheduler handle are initialised here.
    """
    application = create_app(settings)
    factory = init_database(settings.database_url)
    application.state.scheduler = build_scheduler(settings, factory)
    yield application
    await application.state.scheduler.stop()
    await close_database()


@pytest_asyncio.fixture()
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async test client for the application."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as test_client:
        yield test_client
