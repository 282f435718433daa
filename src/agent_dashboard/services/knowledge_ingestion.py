import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from agent_dashboard.domain.knowledge import KNOWLEDGE_STATUS_COMPLETED, KnowledgeFileRecord
from agent_dashboard.observability.structured_log import log_json
from agent_dashboard.persistence.sqlite_store import SqliteDashboardStore
from agent_dashboard.services.execution_scheduler import ExecutionScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestionProfile:
    name: str
    delay_min_sec: float
    delay_max_sec: float
    chunks_min: int
    chunks_max: int


# Knowledge entries created through the JSON endpoint.
KNOWLEDGE_PROFILE = IngestionProfile("knowledge", 2.0, 5.0, 10, 59)
# Multipart uploads.
UPLOAD_PROFILE = IngestionProfile("upload", 3.0, 7.0, 20, 119)


class KnowledgeIngestion:
    """Flip a ``processing`` knowledge file to ``completed`` after a random delay.

    Nothing is parsed or embedded; only the chunk count is drawn. A file that
    was deleted, or that already left ``processing``, is left untouched.
    """

    def __init__(
        self,
        store: SqliteDashboardStore,
        scheduler: Optional[ExecutionScheduler] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._store = store
        self._scheduler = scheduler or ExecutionScheduler(max_concurrency=16)
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

    async def schedule(self, record: KnowledgeFileRecord, profile: IngestionProfile) -> None:
        delay = self._rng.uniform(profile.delay_min_sec, profile.delay_max_sec)

        async def _work() -> None:
            await self._complete(record, profile, delay)

        await self._scheduler.enqueue(record.knowledge_id, record.owner_id, _work)
        log_json(
            logger,
            "knowledge.processing",
            knowledge_id=record.knowledge_id,
            owner_id=record.owner_id,
            profile=profile.name,
            delay_sec=round(delay, 3),
        )

    async def wait(self, knowledge_id: str) -> str:
        return await self._scheduler.wait(knowledge_id)

    def cancel(self, knowledge_id: str) -> bool:
        return self._scheduler.cancel(knowledge_id)

    async def shutdown(self) -> None:
        await self._scheduler.shutdown()

    async def _complete(self, record: KnowledgeFileRecord, profile: IngestionProfile, delay: float) -> None:
        await self._sleep(delay)
        chunks = self._rng.randint(profile.chunks_min, profile.chunks_max)
        updated = self._store.complete_knowledge_file(
            record.knowledge_id,
            status=KNOWLEDGE_STATUS_COMPLETED,
            chunks=chunks,
            updated_at=self._clock(),
        )
        if not updated:
            logger.info("knowledge file gone or no longer processing knowledge_id=%s", record.knowledge_id)
            return
        log_json(logger, "knowledge.completed", knowledge_id=record.knowledge_id, chunks=chunks)
