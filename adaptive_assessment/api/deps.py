"""
FastAPI dependencies for authentication, authorization, database sessions
and the engine services.
"""

import uuid
from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from adaptive_assessment.ai.completion import TextCompletionClient, get_completion_client
from adaptive_assessment.config import Settings, get_settings
from adaptive_assessment.database import async_session_maker
from adaptive_assessment.engines.grading import GradingEngine
from adaptive_assessment.engines.item_bank import ItemBankService
from adaptive_assessment.engines.proctoring import ProctorMonitor
from adaptive_assessment.engines.remediation import RemediationService
from adaptive_assessment.engines.selection import (
    DatabaseLeaseStore,
    GenerationQueue,
    InMemoryLeaseStore,
    ItemSelectionCoordinator,
    LeaseStore,
    QuestionGenerator,
)
from adaptive_assessment.kernel.identity.jwt import ActorRole, verify_access_token
from adaptive_assessment.orchestration.session_service import AssessmentSessionService


# Security scheme
security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncSession:
    """Dependency that yields database sessions."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


DbSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]


class Actor(BaseModel):
    """The authenticated caller, as read from the access token."""

    id: uuid.UUID
    role: ActorRole

    @property
    def is_instructor(self) -> bool:
        return self.role in (ActorRole.INSTRUCTOR, ActorRole.ADMIN)


async def get_current_actor(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Actor:
    """Get the authenticated caller or raise 401."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_access_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return Actor(id=uuid.UUID(payload.sub), role=ActorRole(payload.role))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token claims",
            headers={"WWW-Authenticate": "Bearer"},
        )


CurrentActor = Annotated[Actor, Depends(get_current_actor)]


async def require_instructor(actor: CurrentActor) -> Actor:
    """Instructor or admin only."""
    if not actor.is_instructor:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Instructor or admin role required",
        )
    return actor


InstructorActor = Annotated[Actor, Depends(require_instructor)]


# --- process-wide collaborators ---------------------------------------------

@lru_cache
def get_lease_store() -> LeaseStore:
    """Generation dedup store selected by GENERATION_LEASE_BACKEND."""
    settings = get_settings()
    if settings.generation_lease_backend == "memory":
        return InMemoryLeaseStore()
    return DatabaseLeaseStore(async_session_maker)


@lru_cache
def get_generation_queue() -> GenerationQueue:
    settings = get_settings()
    return GenerationQueue(
        async_session_maker,
        get_lease_store(),
        get_completion_client,
        timeout=settings.generation_timeout_seconds,
        max_retries=settings.generation_max_retries,
        backoff_seconds=settings.generation_retry_backoff_seconds,
    )


CompletionClient = Annotated[Optional[TextCompletionClient], Depends(get_completion_client)]
Leases = Annotated[LeaseStore, Depends(get_lease_store)]
Queue = Annotated[GenerationQueue, Depends(get_generation_queue)]


# --- per-request services ---------------------------------------------------

def get_session_service(
    db: DbSession,
    settings: AppSettings,
    leases: Leases,
    queue: Queue,
    client: CompletionClient,
) -> AssessmentSessionService:
    coordinator = ItemSelectionCoordinator(db, settings, leases, queue=queue, completion_client=client)
    return AssessmentSessionService(
        db,
        settings,
        coordinator,
        GradingEngine(client, semantic_timeout=settings.grading_timeout_seconds),
        RemediationService(client, timeout=settings.remediation_timeout_seconds),
    )


def get_proctor_monitor(db: DbSession, settings: AppSettings) -> ProctorMonitor:
    return ProctorMonitor(db, risk_threshold=settings.proctor_risk_threshold)


def get_question_generator(
    db: DbSession,
    settings: AppSettings,
    client: CompletionClient,
) -> QuestionGenerator:
    return QuestionGenerator(
        db,
        client,
        timeout=settings.generation_timeout_seconds,
        assessment_timeout=settings.assessment_generation_timeout_seconds,
    )


def get_item_bank(db: DbSession) -> ItemBankService:
    return ItemBankService(db)


SessionService = Annotated[AssessmentSessionService, Depends(get_session_service)]
Proctor = Annotated[ProctorMonitor, Depends(get_proctor_monitor)]
Generator = Annotated[QuestionGenerator, Depends(get_question_generator)]
ItemBank = Annotated[ItemBankService, Depends(get_item_bank)]
