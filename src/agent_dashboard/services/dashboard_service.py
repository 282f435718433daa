import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

from agent_dashboard.domain.agents import AGENT_STATUS_DRAFT, AGENT_STATUSES, AgentRecord
from agent_dashboard.domain.chatbots import (
    CHATBOT_STATUS_ACTIVE,
    CHATBOT_STATUSES,
    DEFAULT_PRIMARY_COLOR,
    DEFAULT_WELCOME_MESSAGE,
    ChatbotAppearance,
    ChatbotRecord,
)
from agent_dashboard.domain.errors import NotFoundError, ValidationError
from agent_dashboard.domain.executions import ExecutionRecord
from agent_dashboard.domain.knowledge import (
    KNOWLEDGE_STATUS_PROCESSING,
    KNOWLEDGE_TYPE_FILE,
    KNOWLEDGE_TYPES,
    KnowledgeFileRecord,
)
from agent_dashboard.domain.providers import PROVIDER_TYPES, ProviderRecord, models_for_provider_type
from agent_dashboard.domain.tools import TOOL_TYPES, CustomToolRecord
from agent_dashboard.events.event_bus import ExecutionEvent
from agent_dashboard.observability.structured_log import log_json
from agent_dashboard.persistence.sqlite_store import SqliteDashboardStore, new_id
from agent_dashboard.services.execution_runner import ExecutionRunner
from agent_dashboard.services.knowledge_ingestion import KNOWLEDGE_PROFILE, UPLOAD_PROFILE, KnowledgeIngestion
from agent_dashboard.services.schedule_resolver import ScheduleResolver

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0

_PROVIDER_FIELDS = frozenset({"name", "provider_type", "api_key", "endpoint", "is_active"})
_CHATBOT_FIELDS = frozenset(
    {
        "name",
        "description",
        "provider",
        "provider_id",
        "model",
        "system_prompt",
        "temperature",
        "max_tokens",
        "welcome_message",
        "primary_color",
        "show_avatar",
        "knowledge_base",
        "tools",
        "status",
    }
)
_AGENT_FIELDS = frozenset(
    {"name", "description", "provider", "model", "system_prompt", "temperature", "schedule", "status", "tools"}
)
_TOOL_FIELDS = frozenset({"name", "description", "tool_type", "code", "openapi_spec", "parameters"})

_PROVIDER_TEXT_FIELDS = ("api_key", "endpoint")
_CHATBOT_TEXT_FIELDS = ("description", "provider", "provider_id", "model", "system_prompt")
_AGENT_TEXT_FIELDS = ("description", "provider", "model", "system_prompt", "schedule")
_TOOL_TEXT_FIELDS = ("description", "code", "openapi_spec")


class DashboardService:
    """Owner-scoped facade over the store, the schedule resolver and the simulators.

    Every operation takes the caller's owner id first; entities owned by
    someone else are reported as missing.
    """

    def __init__(
        self,
        store: SqliteDashboardStore,
        runner: ExecutionRunner,
        ingestion: KnowledgeIngestion,
        resolver: Optional[ScheduleResolver] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._runner = runner
        self._ingestion = ingestion
        self._resolver = resolver or ScheduleResolver()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._runner.event_bus.subscribe(self._store.append_execution_event)

    @property
    def store(self) -> SqliteDashboardStore:
        return self._store

    @property
    def runner(self) -> ExecutionRunner:
        return self._runner

    @property
    def ingestion(self) -> KnowledgeIngestion:
        return self._ingestion

    @property
    def resolver(self) -> ScheduleResolver:
        return self._resolver

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def startup(self, seed_demo_owner: Optional[str] = None) -> None:
        self._runner.recover_stale()
        if seed_demo_owner and self._store.seed_demo_data(owner_id=seed_demo_owner):
            logger.info("seeded demo workspace owner_id=%s", seed_demo_owner)

    async def shutdown(self) -> None:
        await self._runner.shutdown()
        await self._ingestion.shutdown()

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def list_providers(self, owner_id: str) -> List[ProviderRecord]:
        return self._store.list_providers(owner_id)

    def get_provider(self, owner_id: str, provider_id: str) -> ProviderRecord:
        provider = self._store.get_provider(owner_id, provider_id)
        if provider is None:
            raise NotFoundError("Provider not found")
        return provider

    def create_provider(
        self,
        owner_id: str,
        name: str,
        provider_type: str,
        api_key: str = "",
        endpoint: str = "",
        is_active: bool = True,
    ) -> ProviderRecord:
        now = self._clock()
        record = ProviderRecord(
            provider_id=new_id("provider"),
            owner_id=owner_id,
            name=_require_name(name),
            provider_type=_require_choice("type", provider_type, PROVIDER_TYPES),
            api_key=str(api_key or ""),
            endpoint=str(endpoint or ""),
            is_active=bool(is_active),
            models=models_for_provider_type(provider_type),
            created_at=now,
            updated_at=now,
        )
        self._store.create_provider(record)
        log_json(logger, "provider.created", provider_id=record.provider_id, owner_id=owner_id)
        return record

    def update_provider(self, owner_id: str, provider_id: str, changes: Mapping[str, Any]) -> ProviderRecord:
        current = self.get_provider(owner_id, provider_id)
        updates = _accepted(changes, _PROVIDER_FIELDS)
        if "name" in updates:
            updates["name"] = _require_name(updates["name"])
        if "provider_type" in updates:
            updates["provider_type"] = _require_choice("type", updates["provider_type"], PROVIDER_TYPES)
            updates["models"] = models_for_provider_type(updates["provider_type"])
        _coerce_text(updates, _PROVIDER_TEXT_FIELDS)
        if "is_active" in updates:
            updates["is_active"] = _require_bool("isActive", updates["is_active"])
        updated = replace(current, updated_at=self._clock(), **updates)
        self._store.update_provider(updated)
        return updated

    def delete_provider(self, owner_id: str, provider_id: str) -> None:
        if not self._store.delete_provider(owner_id, provider_id):
            raise NotFoundError("Provider not found")
        log_json(logger, "provider.deleted", provider_id=provider_id, owner_id=owner_id)

    # ------------------------------------------------------------------
    # Chatbots
    # ------------------------------------------------------------------

    def list_chatbots(self, owner_id: str) -> List[ChatbotRecord]:
        return self._store.list_chatbots(owner_id)

    def get_chatbot(self, owner_id: str, chatbot_id: str) -> ChatbotRecord:
        chatbot = self._store.get_chatbot(owner_id, chatbot_id)
        if chatbot is None:
            raise NotFoundError("Chatbot not found")
        return chatbot

    def create_chatbot(
        self,
        owner_id: str,
        name: str,
        description: str = "",
        provider: str = "",
        provider_id: str = "",
        model: str = "",
        system_prompt: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        welcome_message: Optional[str] = None,
        primary_color: Optional[str] = None,
        show_avatar: Optional[bool] = None,
        knowledge_base: Optional[Iterable[str]] = None,
        tools: Optional[Iterable[str]] = None,
        status: Optional[str] = None,
    ) -> ChatbotRecord:
        now = self._clock()
        record = ChatbotRecord(
            chatbot_id=new_id("chatbot"),
            owner_id=owner_id,
            name=_require_name(name),
            description=str(description or ""),
            provider=str(provider or ""),
            provider_id=str(provider_id or ""),
            model=str(model or ""),
            system_prompt=str(system_prompt or ""),
            temperature=_require_temperature(DEFAULT_TEMPERATURE if temperature is None else temperature),
            max_tokens=_require_positive_int("maxTokens", DEFAULT_MAX_TOKENS if max_tokens is None else max_tokens),
            welcome_message=welcome_message or DEFAULT_WELCOME_MESSAGE,
            status=_require_choice("status", status or CHATBOT_STATUS_ACTIVE, CHATBOT_STATUSES),
            created_at=now,
            updated_at=now,
            appearance=ChatbotAppearance(
                primary_color=primary_color or DEFAULT_PRIMARY_COLOR,
                show_avatar=True if show_avatar is None else bool(show_avatar),
            ),
            knowledge_base=list(knowledge_base or []),
            tools=list(tools or []),
        )
        self._store.create_chatbot(record)
        log_json(logger, "chatbot.created", chatbot_id=record.chatbot_id, owner_id=owner_id)
        return record

    def update_chatbot(self, owner_id: str, chatbot_id: str, changes: Mapping[str, Any]) -> ChatbotRecord:
        current = self.get_chatbot(owner_id, chatbot_id)
        updates = _accepted(changes, _CHATBOT_FIELDS)
        if "name" in updates:
            updates["name"] = _require_name(updates["name"])
        if "temperature" in updates:
            updates["temperature"] = _require_temperature(updates["temperature"])
        if "max_tokens" in updates:
            updates["max_tokens"] = _require_positive_int("maxTokens", updates["max_tokens"])
        if "status" in updates:
            updates["status"] = _require_choice("status", updates["status"], CHATBOT_STATUSES)
        _coerce_text(updates, _CHATBOT_TEXT_FIELDS)
        if "welcome_message" in updates:
            updates["welcome_message"] = updates["welcome_message"] or DEFAULT_WELCOME_MESSAGE
        for key in ("knowledge_base", "tools"):
            if key in updates:
                updates[key] = list(updates[key] or [])
        appearance = current.appearance
        if "primary_color" in updates:
            appearance = replace(appearance, primary_color=updates.pop("primary_color") or DEFAULT_PRIMARY_COLOR)
        if "show_avatar" in updates:
            appearance = replace(appearance, show_avatar=_require_bool("showAvatar", updates.pop("show_avatar")))
        updated = replace(current, appearance=appearance, updated_at=self._clock(), **updates)
        self._store.update_chatbot(updated)
        return updated

    def delete_chatbot(self, owner_id: str, chatbot_id: str) -> None:
        if not self._store.delete_chatbot(owner_id, chatbot_id):
            raise NotFoundError("Chatbot not found")
        log_json(logger, "chatbot.deleted", chatbot_id=chatbot_id, owner_id=owner_id)

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    def list_agents(self, owner_id: str) -> List[AgentRecord]:
        return self._store.list_agents(owner_id)

    def get_agent(self, owner_id: str, agent_id: str) -> AgentRecord:
        agent = self._store.get_agent(owner_id, agent_id)
        if agent is None:
            raise NotFoundError("Agent not found")
        return agent

    def create_agent(
        self,
        owner_id: str,
        name: str,
        description: str = "",
        provider: str = "",
        model: str = "",
        system_prompt: str = "",
        temperature: Optional[float] = None,
        schedule: str = "",
        status: Optional[str] = None,
        tools: Optional[Iterable[str]] = None,
    ) -> AgentRecord:
        now = self._clock()
        record = AgentRecord(
            agent_id=new_id("agent"),
            owner_id=owner_id,
            name=_require_name(name),
            description=str(description or ""),
            provider=str(provider or ""),
            model=str(model or ""),
            system_prompt=str(system_prompt or ""),
            temperature=_require_temperature(DEFAULT_TEMPERATURE if temperature is None else temperature),
            schedule=str(schedule or ""),
            status=_require_choice("status", status or AGENT_STATUS_DRAFT, AGENT_STATUSES),
            tools=list(tools or []),
            next_run=None,
            last_run=None,
            created_at=now,
            updated_at=now,
        )
        record = replace(record, next_run=self._next_run_for(record))
        self._store.create_agent(record)
        log_json(
            logger,
            "agent.created",
            agent_id=record.agent_id,
            owner_id=owner_id,
            status=record.status,
            next_run=record.next_run,
        )
        return record

    def update_agent(self, owner_id: str, agent_id: str, changes: Mapping[str, Any]) -> AgentRecord:
        current = self.get_agent(owner_id, agent_id)
        updates = _accepted(changes, _AGENT_FIELDS)
        if "name" in updates:
            updates["name"] = _require_name(updates["name"])
        if "temperature" in updates:
            updates["temperature"] = _require_temperature(updates["temperature"])
        if "status" in updates:
            updates["status"] = _require_choice("status", updates["status"], AGENT_STATUSES)
        _coerce_text(updates, _AGENT_TEXT_FIELDS)
        if "tools" in updates:
            updates["tools"] = list(updates["tools"] or [])
        updated = replace(current, updated_at=self._clock(), **updates)
        if "status" in updates or "schedule" in updates:
            updated = replace(updated, next_run=self._next_run_for(updated))
        self._store.update_agent(updated)
        return updated

    def delete_agent(self, owner_id: str, agent_id: str) -> List[str]:
        self.get_agent(owner_id, agent_id)
        cancelled = self._runner.cancel_agent(owner_id, agent_id)
        self._store.delete_agent(owner_id, agent_id)
        log_json(logger, "agent.deleted", agent_id=agent_id, owner_id=owner_id, cancelled=len(cancelled))
        return cancelled

    async def execute_agent(self, owner_id: str, agent_id: str) -> ExecutionRecord:
        agent = self.get_agent(owner_id, agent_id)
        return await self._runner.start_execution(agent)

    def list_execution_logs(self, owner_id: str, agent_id: str) -> List[ExecutionRecord]:
        return self._store.list_executions_for_agent(owner_id, agent_id)

    def get_execution(self, owner_id: str, execution_id: str) -> ExecutionRecord:
        record = self._store.get_execution(owner_id, execution_id)
        if record is None:
            raise NotFoundError("Execution not found")
        return record

    def cancel_execution(self, owner_id: str, execution_id: str) -> ExecutionRecord:
        return self._runner.cancel(owner_id, execution_id)

    def list_execution_events(self, owner_id: str, execution_id: str) -> List[ExecutionEvent]:
        self.get_execution(owner_id, execution_id)
        return self._store.list_execution_events(owner_id, execution_id)

    def _next_run_for(self, agent: AgentRecord) -> Optional[datetime]:
        if not agent.is_active():
            return None
        return self._resolver.next_run(agent.schedule)

    # ------------------------------------------------------------------
    # Custom tools
    # ------------------------------------------------------------------

    def list_tools(self, owner_id: str) -> List[CustomToolRecord]:
        return self._store.list_tools(owner_id)

    def get_tool(self, owner_id: str, tool_id: str) -> CustomToolRecord:
        tool = self._store.get_tool(owner_id, tool_id)
        if tool is None:
            raise NotFoundError("Tool not found")
        return tool

    def create_tool(
        self,
        owner_id: str,
        name: str,
        tool_type: str,
        description: str = "",
        code: str = "",
        openapi_spec: str = "",
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> CustomToolRecord:
        now = self._clock()
        record = CustomToolRecord(
            tool_id=new_id("tool"),
            owner_id=owner_id,
            name=_require_name(name),
            description=str(description or ""),
            tool_type=_require_choice("type", tool_type, TOOL_TYPES),
            code=str(code or ""),
            openapi_spec=str(openapi_spec or ""),
            created_at=now,
            updated_at=now,
            parameters=dict(parameters or {}),
        )
        self._store.create_tool(record)
        log_json(logger, "tool.created", tool_id=record.tool_id, owner_id=owner_id, tool_type=record.tool_type)
        return record

    def update_tool(self, owner_id: str, tool_id: str, changes: Mapping[str, Any]) -> CustomToolRecord:
        current = self.get_tool(owner_id, tool_id)
        updates = _accepted(changes, _TOOL_FIELDS)
        if "name" in updates:
            updates["name"] = _require_name(updates["name"])
        if "tool_type" in updates:
            updates["tool_type"] = _require_choice("type", updates["tool_type"], TOOL_TYPES)
        _coerce_text(updates, _TOOL_TEXT_FIELDS)
        if "parameters" in updates:
            updates["parameters"] = dict(updates["parameters"] or {})
        updated = replace(current, updated_at=self._clock(), **updates)
        self._store.update_tool(updated)
        return updated

    def delete_tool(self, owner_id: str, tool_id: str) -> None:
        if not self._store.delete_tool(owner_id, tool_id):
            raise NotFoundError("Tool not found")
        log_json(logger, "tool.deleted", tool_id=tool_id, owner_id=owner_id)

    # ------------------------------------------------------------------
    # Knowledge files
    # ------------------------------------------------------------------

    def list_knowledge_files(self, owner_id: str) -> List[KnowledgeFileRecord]:
        return self._store.list_knowledge_files(owner_id)

    def get_knowledge_file(self, owner_id: str, knowledge_id: str) -> KnowledgeFileRecord:
        record = self._store.get_knowledge_file(owner_id, knowledge_id)
        if record is None:
            raise NotFoundError("Knowledge file not found")
        return record

    async def create_knowledge_file(
        self,
        owner_id: str,
        name: str,
        knowledge_type: str,
        size: Optional[int] = None,
        url: Optional[str] = None,
    ) -> KnowledgeFileRecord:
        record = self._new_knowledge_file(
            owner_id=owner_id,
            name=name,
            knowledge_type=_require_choice("type", knowledge_type, KNOWLEDGE_TYPES),
            size=size,
            url=url,
        )
        self._store.create_knowledge_file(record)
        await self._ingestion.schedule(record, KNOWLEDGE_PROFILE)
        return record

    async def upload_knowledge_file(self, owner_id: str, filename: str, size: int) -> KnowledgeFileRecord:
        record = self._new_knowledge_file(
            owner_id=owner_id,
            name=filename,
            knowledge_type=KNOWLEDGE_TYPE_FILE,
            size=size,
            url=None,
        )
        self._store.create_knowledge_file(record)
        await self._ingestion.schedule(record, UPLOAD_PROFILE)
        return record

    def delete_knowledge_file(self, owner_id: str, knowledge_id: str) -> None:
        if not self._store.delete_knowledge_file(owner_id, knowledge_id):
            raise NotFoundError("Knowledge file not found")
        self._ingestion.cancel(knowledge_id)
        log_json(logger, "knowledge.deleted", knowledge_id=knowledge_id, owner_id=owner_id)

    def _new_knowledge_file(
        self,
        owner_id: str,
        name: str,
        knowledge_type: str,
        size: Optional[int],
        url: Optional[str],
    ) -> KnowledgeFileRecord:
        if size is not None and int(size) < 0:
            raise ValidationError("size must not be negative")
        now = self._clock()
        return KnowledgeFileRecord(
            knowledge_id=new_id("knowledge"),
            owner_id=owner_id,
            name=_require_name(name),
            knowledge_type=knowledge_type,
            status=KNOWLEDGE_STATUS_PROCESSING,
            chunks=0,
            size=int(size) if size is not None else None,
            url=url or None,
            created_at=now,
            updated_at=now,
        )


def _accepted(changes: Mapping[str, Any], allowed: FrozenSet[str]) -> Dict[str, Any]:
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise ValidationError(f"Unsupported fields: {', '.join(unknown)}")
    return dict(changes)


def _coerce_text(updates: Dict[str, Any], keys: Iterable[str]) -> None:
    for key in keys:
        if key in updates:
            updates[key] = str(updates[key] or "")


def _require_name(value: Any) -> str:
    name = str(value or "").strip()
    if not name:
        raise ValidationError("name is required")
    return name


def _require_choice(label: str, value: Any, allowed: FrozenSet[str]) -> str:
    choice = str(value or "").strip()
    if choice not in allowed:
        raise ValidationError(f"{label} must be one of: {', '.join(sorted(allowed))}")
    return choice


def _require_bool(label: str, value: Any) -> bool:
    if value is None:
        raise ValidationError(f"{label} must be true or false")
    return bool(value)


def _require_temperature(value: Any) -> float:
    try:
        temperature = float(value)
    except (TypeError, ValueError):
        raise ValidationError("temperature must be a number")
    if not MIN_TEMPERATURE <= temperature <= MAX_TEMPERATURE:
        raise ValidationError(f"temperature must be within [{MIN_TEMPERATURE:g}, {MAX_TEMPERATURE:g}]")
    return temperature


def _require_positive_int(label: str, value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be an integer")
    if number <= 0:
        raise ValidationError(f"{label} must be positive")
    return number
