"""
Pytest fixtures for the adaptive assessment engine tests.
"""

import json
import os
import uuid
from typing import Any, AsyncGenerator, List, Optional

# Settings are read once at import time; point them at test values first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only-0123456789"
os.environ["OPENAI_API_KEY"] = ""

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from adaptive_assessment.ai.completion import TextCompletionClient
from adaptive_assessment.config import Settings
from adaptive_assessment.kernel.identity.jwt import JWTManager
from adaptive_assessment.kernel.models import (
    AssessmentSession,
    Base,
    GradingMethod,
    Item,
    ItemType,
    SessionMode,
    SessionStatus,
)


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create a fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def file_session_maker(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Sessions on a file-backed database, one connection each, for tests
    where several writers race on the same rows.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        secret_key="test-secret-key-for-testing-only-0123456789",
        openai_api_key="",
        generation_lease_backend="memory",
        generation_retry_backoff_seconds=0.0,
    )


@pytest.fixture
def student_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def instructor_id() -> uuid.UUID:
    return uuid.uuid4()


def _completion_returning(*responses: Any) -> AsyncMock:
    """
    Completion collaborator mock. Each call returns the next response;
    dicts/lists are sent as JSON text and exceptions are raised.
    """
    client = AsyncMock(spec=TextCompletionClient)
    side_effects: List[Any] = []
    for response in responses:
        if isinstance(response, (dict, list)):
            side_effects.append(json.dumps(response))
        else:
            side_effects.append(response)
    client.complete.side_effect = side_effects
    return client


def _make_item(
    item_type: ItemType = ItemType.MCQ,
    question: str = "What is the capital of France?",
    answer: Any = "Paris",
    choices: Optional[List[str]] = None,
    topics: Optional[List[str]] = None,
    difficulty: int = 2,
    grading_method: Optional[GradingMethod] = None,
    explanation: str = "",
) -> Item:
    """Unsaved Item with sensible defaults."""
    defaults = {
        ItemType.MCQ: GradingMethod.EXACT,
        ItemType.FILL_BLANK: GradingMethod.LEVENSHTEIN,
        ItemType.SHORT_ANSWER: GradingMethod.SEMANTIC,
        ItemType.MATCH: GradingMethod.PAIR_MATCH,
        ItemType.REORDER: GradingMethod.SEQUENCE_CHECK,
    }
    if choices is None and item_type == ItemType.MCQ:
        choices = ["Paris", "London", "Berlin", "Madrid"]
    item = Item(
        item_type=item_type,
        question=question,
        choices=choices or [],
        answer=answer,
        grading_method=grading_method or defaults[item_type],
        difficulty=difficulty,
        hints=[],
        skills=[],
        explanation=explanation,
        ai_generated=False,
    )
    item.set_topics(topics if topics is not None else ["geography"])
    return item


async def _add_items(db_session: AsyncSession, *items: Item) -> List[Item]:
    for item in items:
        db_session.add(item)
    await db_session.flush()
    return list(items)


async def _add_session(
    db_session: AsyncSession,
    user_id: uuid.UUID,
    items: List[Item],
    proctored: bool = False,
    allowance: int = 2,
    status: SessionStatus = SessionStatus.ACTIVE,
) -> AssessmentSession:
    assessment_session = AssessmentSession(
        user_id=user_id,
        mode=SessionMode.PROCTORED if proctored else SessionMode.FORMATIVE,
        item_ids=[str(i.id) for i in items],
        current_index=0,
        status=status,
        proctored=proctored,
        tab_switch_allowance=allowance,
        session_metadata={},
    )
    db_session.add(assessment_session)
    await db_session.flush()
    return assessment_session


@pytest.fixture
def jwt_manager() -> JWTManager:
    """Create a JWT manager for tests."""
    return JWTManager(
        secret_key="test-secret-key-for-testing-only-0123456789",
        algorithm="HS256",
        access_token_expire_minutes=30,
    )


@pytest.fixture
def student_headers(student_id: uuid.UUID, jwt_manager: JWTManager) -> dict:
    token, _, _ = jwt_manager.create_access_token(user_id=student_id, role="student")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def instructor_headers(instructor_id: uuid.UUID, jwt_manager: JWTManager) -> dict:
    token, _, _ = jwt_manager.create_access_token(user_id=instructor_id, role="instructor")
    return {"Authorization": f"Bearer {token}"}


# Factories exposed as fixtures so test modules need no imports from here

@pytest.fixture
def completion_returning():
    return _completion_returning


@pytest.fixture
def make_item():
    return _make_item


@pytest.fixture
def add_items(db_session: AsyncSession):
    async def _add(*items: Item) -> List[Item]:
        return await _add_items(db_session, *items)
    return _add


@pytest.fixture
def add_session(db_session: AsyncSession):
    async def _add(user_id: uuid.UUID, items: List[Item], **kwargs: Any) -> AssessmentSession:
        return await _add_session(db_session, user_id, items, **kwargs)
    return _add
