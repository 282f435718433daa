import logging
from typing import Optional

from agent_dashboard.config import Settings
from agent_dashboard.events.event_bus import EventBus
from agent_dashboard.persistence.sqlite_store import SqliteDashboardStore
from agent_dashboard.services.dashboard_service import DashboardService
from agent_dashboard.services.execution_runner import ExecutionRunner
from agent_dashboard.services.execution_scheduler import ExecutionScheduler
from agent_dashboard.services.knowledge_ingestion import KnowledgeIngestion
from agent_dashboard.services.schedule_resolver import ScheduleResolver


logger = logging.getLogger(__name__)


def build_dashboard_service(settings: Settings, event_bus: Optional[EventBus] = None) -> DashboardService:
    store = SqliteDashboardStore(settings.db_path)
    bus = event_bus or EventBus()
    runner = ExecutionRunner(
        store=store,
        scheduler=ExecutionScheduler(max_concurrency=settings.execution_max_concurrency),
        event_bus=bus,
        delay_min_sec=settings.execution_delay_min_sec,
        delay_max_sec=settings.execution_delay_max_sec,
        success_rate=settings.execution_success_rate,
        timeout_sec=settings.execution_timeout_sec,
        max_attempts=settings.execution_max_attempts,
        retry_backoff_sec=settings.execution_retry_backoff_sec,
    )
    logger.info(
        "dashboard service ready db=%s schedule_mode=%s max_concurrency=%s "
        "delay=%.1f-%.1fs success_rate=%.2f max_attempts=%s timeout=%.1fs",
        store.db_path,
        settings.schedule_mode,
        settings.execution_max_concurrency,
        settings.execution_delay_min_sec,
        settings.execution_delay_max_sec,
        settings.execution_success_rate,
        settings.execution_max_attempts,
        settings.execution_timeout_sec,
    )
    return DashboardService(
        store=store,
        runner=runner,
        ingestion=KnowledgeIngestion(store=store),
        resolver=ScheduleResolver(mode=settings.schedule_mode),
    )
