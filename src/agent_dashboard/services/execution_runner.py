import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from agent_dashboard.domain.agents import AgentRecord
from agent_dashboard.domain.errors import NotFoundError, ValidationError
from agent_dashboard.domain.executions import (
    EXECUTION_STATUS_COMPLETED,
    EXECUTION_STATUS_FAILED,
    LOG_LEVEL_ERROR,
    LOG_LEVEL_INFO,
    LOG_LEVEL_SUCCESS,
    LOG_LEVEL_WARNING,
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionTransitionError,
    LogEntry,
    validate_outcome,
    validate_transition,
)
from agent_dashboard.events.event_bus import EventBus
from agent_dashboard.observability.structured_log import log_json
from agent_dashboard.persistence.sqlite_store import SqliteDashboardStore
from agent_dashboard.services.execution_backend import (
    SIMULATED_ERROR,
    ExecutionBackend,
    SimulatedBackend,
    TaskFailure,
)
from agent_dashboard.services.execution_scheduler import (
    JOB_STATUS_QUEUED,
    JOB_STATUS_RUNNING,
    ExecutionScheduler,
)

logger = logging.getLogger(__name__)

MESSAGE_STARTED = "Agent execution started"
MESSAGE_PROCESSING = "Processing agent workflow"
MESSAGE_COMPLETED = "Agent execution completed successfully"
MESSAGE_FAILED = "Agent execution failed"
MESSAGE_CANCELLED = "Agent execution cancelled"

CANCELLED_ERROR = "Execution cancelled"
INTERRUPTED_ERROR = "Execution interrupted by service restart"
TIMEOUT_ERROR = "Execution timed out"

_MAX_BACKOFF_SEC = 60.0
_JITTER_FRACTION = 0.25

Clock = Callable[[], datetime]
Sleeper = Callable[[float], Awaitable[None]]


class ExecutionRunner:
    """Runs agent tasks through an ``ExecutionBackend`` on the bounded scheduler.

    ``start_execution`` persists a ``running`` record with its start entry
    before returning; the completion is queued on the scheduler and applies
    exactly one terminal transition. Without an explicit backend the
    simulated one is built from the delay window and ``success_rate``.

    With ``max_attempts`` > 1 a failed or timed-out attempt is retried after
    an exponential backoff, each retry leaving a ``warning`` entry. With the
    default single attempt every completion leaves exactly three entries:
    start, processing and the terminal one.
    """

    def __init__(
        self,
        store: SqliteDashboardStore,
        scheduler: ExecutionScheduler,
        event_bus: Optional[EventBus] = None,
        backend: Optional[ExecutionBackend] = None,
        delay_min_sec: float = 2.0,
        delay_max_sec: float = 7.0,
        success_rate: float = 0.9,
        timeout_sec: float = 0.0,
        max_attempts: int = 1,
        retry_backoff_sec: float = 1.0,
        rng: Optional[random.Random] = None,
        clock: Optional[Clock] = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        if timeout_sec < 0:
            raise ValueError("timeout_sec must not be negative")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if retry_backoff_sec < 0:
            raise ValueError("retry_backoff_sec must not be negative")
        self._rng = rng or random.Random()
        self._backend: ExecutionBackend = backend or SimulatedBackend(
            delay_min_sec=delay_min_sec,
            delay_max_sec=delay_max_sec,
            success_rate=success_rate,
            rng=self._rng,
            sleep=sleep,
        )
        self._store = store
        self._scheduler = scheduler
        self._event_bus = event_bus or EventBus()
        self._timeout_sec = timeout_sec
        self._max_attempts = max_attempts
        self._retry_backoff_sec = retry_backoff_sec
        self._clock = clock or _utc_now
        self._sleep = sleep

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    async def start_execution(self, agent: AgentRecord) -> ExecutionRecord:
        start_time = self._now()
        record = self._store.create_execution(
            owner_id=agent.owner_id,
            agent_id=agent.agent_id,
            agent_name=agent.name,
            start_time=start_time,
            start_message=MESSAGE_STARTED,
        )
        self._event_bus.publish(
            execution_id=record.execution_id,
            agent_id=agent.agent_id,
            event_type="execution.started",
            payload=f"max_attempts={self._max_attempts}",
        )
        log_json(
            logger,
            "execution.started",
            execution_id=record.execution_id,
            agent_id=agent.agent_id,
            owner_id=agent.owner_id,
        )

        async def _work() -> None:
            await self._complete(record, agent)

        await self._scheduler.enqueue(record.execution_id, agent.agent_id, _work)
        return record

    async def wait(self, execution_id: str) -> str:
        return await self._scheduler.wait(execution_id)

    async def _complete(self, record: ExecutionRecord, agent: AgentRecord) -> None:
        output, error = await self._attempt(agent)
        attempt = 1
        while error is not None and attempt < self._max_attempts:
            backoff = _backoff_seconds(self._retry_backoff_sec, attempt - 1, self._rng)
            retry_entry = LogEntry(
                timestamp=self._now(),
                level=LOG_LEVEL_WARNING,
                message=f"Attempt {attempt} failed: {error}; retrying",
            )
            if not self._store.append_execution_log(record.execution_id, retry_entry):
                return
            log_json(
                logger,
                "execution.retry",
                execution_id=record.execution_id,
                agent_id=record.agent_id,
                attempt=attempt,
                backoff_sec=round(backoff, 3),
                error=error,
            )
            await self._sleep(backoff)
            attempt += 1
            output, error = await self._attempt(agent)

        end_time = self._now()
        duration_ms = _duration_ms(record.start_time, end_time)
        if error is None:
            outcome = ExecutionOutcome(
                status=EXECUTION_STATUS_COMPLETED,
                end_time=end_time,
                duration_ms=duration_ms,
                output=dict(output or {}),
                error=None,
            )
            terminal = LogEntry(timestamp=end_time, level=LOG_LEVEL_SUCCESS, message=MESSAGE_COMPLETED)
        else:
            outcome = ExecutionOutcome(
                status=EXECUTION_STATUS_FAILED,
                end_time=end_time,
                duration_ms=duration_ms,
                output=None,
                error=error,
            )
            terminal = LogEntry(timestamp=end_time, level=LOG_LEVEL_ERROR, message=MESSAGE_FAILED)
        validate_outcome(outcome)
        processing = LogEntry(timestamp=end_time, level=LOG_LEVEL_INFO, message=MESSAGE_PROCESSING)
        if not self._store.finish_execution(record.execution_id, outcome, [processing, terminal]):
            logger.info("execution already terminal, skipping completion execution_id=%s", record.execution_id)
            return
        self._store.set_agent_last_run(record.owner_id, record.agent_id, end_time)
        event_type = "execution.completed" if error is None else "execution.failed"
        self._event_bus.publish(
            execution_id=record.execution_id,
            agent_id=record.agent_id,
            event_type=event_type,
            payload=f"duration_ms={duration_ms} attempts={attempt}",
        )
        log_json(
            logger,
            event_type,
            execution_id=record.execution_id,
            agent_id=record.agent_id,
            owner_id=record.owner_id,
            duration_ms=duration_ms,
            attempts=attempt,
        )

    async def _attempt(self, agent: AgentRecord) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        try:
            if self._timeout_sec > 0:
                output = await asyncio.wait_for(self._backend.run(agent), timeout=self._timeout_sec)
            else:
                output = await self._backend.run(agent)
        except TaskFailure as exc:
            return None, str(exc) or SIMULATED_ERROR
        except asyncio.TimeoutError:
            return None, TIMEOUT_ERROR
        except Exception as exc:
            logger.exception("execution backend crashed agent_id=%s", agent.agent_id)
            return None, f"{type(exc).__name__}: {exc}"
        return output, None

    def cancel(self, owner_id: str, execution_id: str) -> ExecutionRecord:
        record = self._store.get_execution(owner_id, execution_id)
        if record is None:
            raise NotFoundError("Execution not found")
        try:
            validate_transition(record.status, EXECUTION_STATUS_FAILED)
        except ExecutionTransitionError as exc:
            raise ValidationError(f"Execution already {record.status}") from exc
        self._scheduler.cancel(execution_id)
        self._fail_cancelled(record)
        refreshed = self._store.get_execution(owner_id, execution_id)
        assert refreshed is not None
        return refreshed

    def cancel_agent(self, owner_id: str, agent_id: str) -> List[str]:
        cancelled: List[str] = []
        for execution_id in self._store.list_running_executions(owner_id=owner_id, agent_id=agent_id):
            record = self._store.get_execution(owner_id, execution_id)
            if record is None:
                continue
            self._scheduler.cancel(execution_id)
            if self._fail_cancelled(record):
                cancelled.append(execution_id)
        return cancelled

    def _fail_cancelled(self, record: ExecutionRecord) -> bool:
        end_time = self._now()
        duration_ms = _duration_ms(record.start_time, end_time)
        outcome = ExecutionOutcome(
            status=EXECUTION_STATUS_FAILED,
            end_time=end_time,
            duration_ms=duration_ms,
            output=None,
            error=CANCELLED_ERROR,
        )
        entry = LogEntry(timestamp=end_time, level=LOG_LEVEL_WARNING, message=MESSAGE_CANCELLED)
        if not self._store.finish_execution(record.execution_id, outcome, [entry]):
            return False
        self._event_bus.publish(
            execution_id=record.execution_id,
            agent_id=record.agent_id,
            event_type="execution.cancelled",
            payload=CANCELLED_ERROR,
        )
        log_json(
            logger,
            "execution.cancelled",
            execution_id=record.execution_id,
            agent_id=record.agent_id,
            owner_id=record.owner_id,
        )
        return True

    def recover_stale(self) -> int:
        """Fail records a previous process left ``running``."""
        failed = self._store.fail_stale_executions(INTERRUPTED_ERROR, self._now())
        if failed:
            logger.warning("failed %s stale executions left running by a previous process", failed)
        return failed

    async def shutdown(self) -> None:
        for execution_id in self._store.list_running_executions():
            if self._scheduler.job_status(execution_id) not in {JOB_STATUS_QUEUED, JOB_STATUS_RUNNING}:
                continue
            self._scheduler.cancel(execution_id)
            record = self._store.get_execution_unscoped(execution_id)
            if record is not None:
                self._fail_cancelled(record)
        await self._scheduler.shutdown()

    def stats(self) -> Dict[str, int]:
        return self._scheduler.stats()

    def _now(self) -> datetime:
        return _truncate_ms(self._clock())


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _truncate_ms(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def _duration_ms(start: datetime, end: datetime) -> int:
    return int(round((end - start).total_seconds() * 1000))


def _backoff_seconds(base_sec: float, retry_index: int, rng: random.Random) -> float:
    """Exponential backoff with +/-25 % jitter, capped at one minute."""
    delay = min(base_sec * (2 ** retry_index), _MAX_BACKOFF_SEC)
    jitter = delay * _JITTER_FRACTION * (2 * rng.random() - 1)
    return max(0.0, delay + jitter)
