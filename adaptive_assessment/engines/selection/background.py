"""
Generation Queue - background question generation with observable tickets.

Selection never waits for generation: it submits a job and returns. Each job
runs in its own database session, retries a bounded number of times with a
linear backoff, and releases its dedup lease if it finally fails so the next
selection can try again. On success the lease is left to expire, which
enforces the generation cooldown.
"""

import asyncio
import uuid
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adaptive_assessment.ai.completion import TextCompletionClient
from adaptive_assessment.engines.selection.buckets import generation_levels
from adaptive_assessment.engines.selection.generator import QuestionGenerator
from adaptive_assessment.engines.selection.lease_store import LeaseStore
from adaptive_assessment.kernel.models.base import utc_now
from adaptive_assessment.logging_config import get_logger

logger = get_logger(__name__)


class TicketStatus(str, Enum):
    """Lifecycle of a generation job."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class GenerationTicket(BaseModel):
    """Observable state of one generation job."""

    id: uuid.UUID
    key: str
    topic: str
    buckets: List[int]
    status: TicketStatus = TicketStatus.PENDING
    attempts: int = 0
    error: Optional[str] = None
    batch_id: Optional[uuid.UUID] = None
    item_count: int = 0
    created_at: datetime
    finished_at: Optional[datetime] = None

    @property
    def done(self) -> bool:
        return self.status in (TicketStatus.SUCCEEDED, TicketStatus.FAILED)


class GenerationQueue:
    """
    Runs generation jobs as asyncio tasks.

    Tasks are held in a set until they finish so they cannot be garbage
    collected mid-run; shutdown() cancels whatever is still running.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        lease_store: LeaseStore,
        completion_client_factory: Callable[[], Optional[TextCompletionClient]],
        timeout: float = 8.0,
        max_retries: int = 2,
        backoff_seconds: float = 2.0,
        max_tickets: int = 500,
    ):
        self._session_maker = session_maker
        self._lease_store = lease_store
        self._client_factory = completion_client_factory
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.max_tickets = max_tickets
        self._tickets: Dict[uuid.UUID, GenerationTicket] = {}
        self._events: Dict[uuid.UUID, asyncio.Event] = {}
        self._tasks: Set[asyncio.Task] = set()

    def submit(
        self,
        key: str,
        topic: str,
        buckets: List[int],
        limit: int,
        user_id: Optional[uuid.UUID] = None,
    ) -> GenerationTicket:
        """Schedule generation for `topic`. The caller must already hold the lease for `key`."""
        self._prune()
        ticket = GenerationTicket(
            id=uuid.uuid4(),
            key=key,
            topic=topic,
            buckets=list(buckets),
            created_at=utc_now(),
        )
        self._tickets[ticket.id] = ticket
        self._events[ticket.id] = asyncio.Event()

        task = asyncio.create_task(self._run(ticket, limit, user_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            "Generation job queued",
            extra={"ticket_id": str(ticket.id), "topic": topic, "key": key},
        )
        return ticket

    def status(self, ticket_id: uuid.UUID) -> Optional[GenerationTicket]:
        return self._tickets.get(ticket_id)

    async def wait(self, ticket_id: uuid.UUID, timeout: Optional[float] = None) -> Optional[GenerationTicket]:
        """Wait for a job to finish. Returns the ticket (possibly still running on timeout)."""
        event = self._events.get(ticket_id)
        if event is None:
            return None
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        return self._tickets.get(ticket_id)

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        """Cancel running jobs and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Generation queue stopped", extra={"cancelled": len(tasks)})

    async def _run(self, ticket: GenerationTicket, limit: int, user_id: Optional[uuid.UUID]) -> None:
        levels = generation_levels(ticket.buckets, limit)
        ticket.status = TicketStatus.RUNNING
        try:
            for attempt in range(1, self.max_retries + 2):
                ticket.attempts = attempt
                try:
                    batch_id, count = await self._generate_once(ticket.topic, levels, user_id)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.exception("Generation job error", extra={"ticket_id": str(ticket.id)})
                    batch_id, count = None, 0
                    ticket.error = str(exc)
                else:
                    if count:
                        ticket.status = TicketStatus.SUCCEEDED
                        ticket.batch_id = batch_id
                        ticket.item_count = count
                        ticket.error = None
                        return
                    ticket.error = "No valid items generated"

                if attempt <= self.max_retries:
                    await asyncio.sleep(self.backoff_seconds * attempt)

            ticket.status = TicketStatus.FAILED
            await self._lease_store.release(ticket.key)
            logger.warning(
                "Generation job failed",
                extra={"ticket_id": str(ticket.id), "topic": ticket.topic, "attempts": ticket.attempts},
            )
        except asyncio.CancelledError:
            ticket.status = TicketStatus.FAILED
            ticket.error = "cancelled"
            await self._lease_store.release(ticket.key)
            raise
        finally:
            ticket.finished_at = utc_now()
            self._events[ticket.id].set()

    async def _generate_once(
        self,
        topic: str,
        levels: Dict[str, int],
        user_id: Optional[uuid.UUID],
    ) -> tuple[Optional[uuid.UUID], int]:
        async with self._session_maker() as session:
            generator = QuestionGenerator(
                session,
                self._client_factory(),
                timeout=self.timeout,
            )
            batch = await generator.generate_batch(topic, levels, user_id)
            await session.commit()
            if batch is None:
                return None, 0
            return batch.id, len(batch.items)

    def _prune(self) -> None:
        """Drop the oldest finished tickets beyond max_tickets."""
        if len(self._tickets) < self.max_tickets:
            return
        finished = sorted(
            (t for t in self._tickets.values() if t.done),
            key=lambda t: t.created_at,
        )
        for ticket in finished[: len(self._tickets) - self.max_tickets + 1]:
            self._tickets.pop(ticket.id, None)
            self._events.pop(ticket.id, None)
