from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from agent_dashboard import __version__
from agent_dashboard.domain.agents import AgentRecord
from agent_dashboard.domain.chatbots import ChatbotRecord
from agent_dashboard.domain.errors import NotFoundError, ValidationError
from agent_dashboard.domain.executions import ExecutionRecord
from agent_dashboard.domain.knowledge import KnowledgeFileRecord
from agent_dashboard.domain.providers import ProviderRecord
from agent_dashboard.domain.tools import CustomToolRecord
from agent_dashboard.events.event_bus import ExecutionEvent
from agent_dashboard.services.dashboard_service import DashboardService
from agent_dashboard.util import mask_secret


class ProviderCreateRequest(BaseModel):
    name: str
    type: str
    apiKey: str = ""
    endpoint: str = ""
    isActive: bool = True


class ProviderUpdateRequest(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    apiKey: Optional[str] = None
    endpoint: Optional[str] = None
    isActive: Optional[bool] = None


class AppearanceRequest(BaseModel):
    primaryColor: Optional[str] = None
    showAvatar: Optional[bool] = None


class ChatbotCreateRequest(BaseModel):
    name: str
    description: str = ""
    provider: str = ""
    providerId: str = ""
    model: str = ""
    systemPrompt: str = ""
    temperature: Optional[float] = None
    maxTokens: Optional[int] = None
    welcomeMessage: Optional[str] = None
    appearance: Optional[AppearanceRequest] = None
    knowledgeBase: List[str] = []
    tools: List[str] = []
    status: Optional[str] = None


class ChatbotUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    provider: Optional[str] = None
    providerId: Optional[str] = None
    model: Optional[str] = None
    systemPrompt: Optional[str] = None
    temperature: Optional[float] = None
    maxTokens: Optional[int] = None
    welcomeMessage: Optional[str] = None
    appearance: Optional[AppearanceRequest] = None
    knowledgeBase: Optional[List[str]] = None
    tools: Optional[List[str]] = None
    status: Optional[str] = None


class AgentCreateRequest(BaseModel):
    name: str
    description: str = ""
    provider: str = ""
    model: str = ""
    systemPrompt: str = ""
    temperature: Optional[float] = None
    schedule: str = ""
    status: Optional[str] = None
    tools: List[str] = []


class AgentUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    systemPrompt: Optional[str] = None
    temperature: Optional[float] = None
    schedule: Optional[str] = None
    status: Optional[str] = None
    tools: Optional[List[str]] = None


class ToolCreateRequest(BaseModel):
    name: str
    type: str
    description: str = ""
    code: str = ""
    openApiSpec: str = ""
    parameters: Dict[str, Any] = {}


class ToolUpdateRequest(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    code: Optional[str] = None
    openApiSpec: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None


class KnowledgeCreateRequest(BaseModel):
    name: str
    type: str
    size: Optional[int] = None
    url: Optional[str] = None


_PROVIDER_KEYS = {"type": "provider_type", "apiKey": "api_key", "isActive": "is_active"}
_CHATBOT_KEYS = {
    "providerId": "provider_id",
    "systemPrompt": "system_prompt",
    "maxTokens": "max_tokens",
    "welcomeMessage": "welcome_message",
    "knowledgeBase": "knowledge_base",
    "primaryColor": "primary_color",
    "showAvatar": "show_avatar",
}
_AGENT_KEYS = {"systemPrompt": "system_prompt"}
_TOOL_KEYS = {"type": "tool_type", "openApiSpec": "openapi_spec"}


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _snake_changes(req: BaseModel, keys: Mapping[str, str]) -> Dict[str, Any]:
    raw = req.model_dump(exclude_unset=True)
    appearance = raw.pop("appearance", None)
    if appearance:
        raw.update(appearance)
    return {keys.get(k, k): v for k, v in raw.items()}


def _provider_to_dict(provider: ProviderRecord) -> Dict[str, Any]:
    return {
        "id": provider.provider_id,
        "userId": provider.owner_id,
        "name": provider.name,
        "type": provider.provider_type,
        "apiKey": mask_secret(provider.api_key),
        "endpoint": provider.endpoint or None,
        "isActive": provider.is_active,
        "models": list(provider.models),
        "createdAt": _iso(provider.created_at),
        "updatedAt": _iso(provider.updated_at),
    }


def _chatbot_to_dict(chatbot: ChatbotRecord) -> Dict[str, Any]:
    return {
        "id": chatbot.chatbot_id,
        "userId": chatbot.owner_id,
        "name": chatbot.name,
        "description": chatbot.description,
        "provider": chatbot.provider,
        "providerId": chatbot.provider_id,
        "model": chatbot.model,
        "systemPrompt": chatbot.system_prompt,
        "temperature": chatbot.temperature,
        "maxTokens": chatbot.max_tokens,
        "welcomeMessage": chatbot.welcome_message,
        "appearance": {
            "primaryColor": chatbot.appearance.primary_color,
            "showAvatar": chatbot.appearance.show_avatar,
        },
        "knowledgeBase": list(chatbot.knowledge_base),
        "tools": list(chatbot.tools),
        "status": chatbot.status,
        "createdAt": _iso(chatbot.created_at),
        "updatedAt": _iso(chatbot.updated_at),
    }


def _agent_to_dict(agent: AgentRecord) -> Dict[str, Any]:
    return {
        "id": agent.agent_id,
        "userId": agent.owner_id,
        "name": agent.name,
        "description": agent.description,
        "provider": agent.provider,
        "model": agent.model,
        "systemPrompt": agent.system_prompt,
        "temperature": agent.temperature,
        "schedule": agent.schedule,
        "status": agent.status,
        "tools": list(agent.tools),
        "nextRun": _iso(agent.next_run),
        "lastRun": _iso(agent.last_run),
        "createdAt": _iso(agent.created_at),
        "updatedAt": _iso(agent.updated_at),
    }


def _tool_to_dict(tool: CustomToolRecord) -> Dict[str, Any]:
    return {
        "id": tool.tool_id,
        "userId": tool.owner_id,
        "name": tool.name,
        "description": tool.description,
        "type": tool.tool_type,
        "code": tool.code or None,
        "openApiSpec": tool.openapi_spec or None,
        "parameters": dict(tool.parameters),
        "createdAt": _iso(tool.created_at),
        "updatedAt": _iso(tool.updated_at),
    }


def _knowledge_to_dict(record: KnowledgeFileRecord) -> Dict[str, Any]:
    return {
        "id": record.knowledge_id,
        "userId": record.owner_id,
        "name": record.name,
        "type": record.knowledge_type,
        "status": record.status,
        "chunks": record.chunks,
        "size": record.size,
        "url": record.url,
        "createdAt": _iso(record.created_at),
        "updatedAt": _iso(record.updated_at),
    }


def _execution_to_dict(record: ExecutionRecord) -> Dict[str, Any]:
    return {
        "id": record.record_id,
        "userId": record.owner_id,
        "agentId": record.agent_id,
        "agentName": record.agent_name,
        "executionId": record.execution_id,
        "status": record.status,
        "startTime": _iso(record.start_time),
        "endTime": _iso(record.end_time),
        "durationMs": record.duration_ms,
        "output": record.output,
        "error": record.error,
        "logs": [
            {"timestamp": _iso(entry.timestamp), "level": entry.level, "message": entry.message}
            for entry in record.logs
        ],
    }


def _event_to_dict(event: ExecutionEvent) -> Dict[str, Any]:
    return {
        "executionId": event.execution_id,
        "agentId": event.agent_id,
        "type": event.event_type,
        "payload": event.payload,
        "createdAt": _iso(event.created_at),
    }


def create_app(
    service: DashboardService,
    api_keys: Optional[Mapping[str, str]] = None,
    seed_demo_owner: Optional[str] = None,
) -> FastAPI:
    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        service.startup(seed_demo_owner=seed_demo_owner)
        try:
            yield
        finally:
            await service.shutdown()

    app = FastAPI(title="Agent Dashboard", version=__version__, lifespan=_lifespan)
    owners_by_token: Dict[str, str] = dict(api_keys or {})

    def _resolve_api_token(request: Request) -> str:
        bearer = (request.headers.get("authorization") or "").strip()
        if bearer.lower().startswith("bearer "):
            return bearer[7:].strip()
        return (request.headers.get("x-api-key") or "").strip()

    def _require_owner(request: Request) -> str:
        token = _resolve_api_token(request)
        if not token:
            raise HTTPException(status_code=401, detail="Missing API token.")
        owner_id = owners_by_token.get(token)
        if not owner_id:
            raise HTTPException(status_code=401, detail="Invalid API token.")
        return owner_id

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def _invalid(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "scheduleMode": service.resolver.mode,
            "executions": service.runner.stats(),
        }

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    @app.get("/api/agents")
    async def api_agents(request: Request) -> List[Dict[str, Any]]:
        owner_id = _require_owner(request)
        return [_agent_to_dict(a) for a in service.list_agents(owner_id)]

    @app.post("/api/agents")
    async def api_agents_create(request: Request, req: AgentCreateRequest) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        agent = service.create_agent(
            owner_id,
            name=req.name,
            description=req.description,
            provider=req.provider,
            model=req.model,
            system_prompt=req.systemPrompt,
            temperature=req.temperature,
            schedule=req.schedule,
            status=req.status,
            tools=req.tools,
        )
        return _agent_to_dict(agent)

    @app.get("/api/agents/{agent_id}")
    async def api_agent(request: Request, agent_id: str) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        return _agent_to_dict(service.get_agent(owner_id, agent_id))

    @app.put("/api/agents/{agent_id}")
    async def api_agent_update(request: Request, agent_id: str, req: AgentUpdateRequest) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        agent = service.update_agent(owner_id, agent_id, _snake_changes(req, _AGENT_KEYS))
        return _agent_to_dict(agent)

    @app.delete("/api/agents/{agent_id}")
    async def api_agent_delete(request: Request, agent_id: str) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        cancelled = service.delete_agent(owner_id, agent_id)
        return {"message": "Agent deleted", "cancelledExecutions": cancelled}

    @app.post("/api/agents/{agent_id}/execute")
    async def api_agent_execute(request: Request, agent_id: str) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        record = await service.execute_agent(owner_id, agent_id)
        return {"message": "Agent execution started", "executionId": record.execution_id}

    @app.get("/api/agents/{agent_id}/logs")
    async def api_agent_logs(request: Request, agent_id: str) -> List[Dict[str, Any]]:
        owner_id = _require_owner(request)
        return [_execution_to_dict(r) for r in service.list_execution_logs(owner_id, agent_id)]

    @app.get("/api/executions/{execution_id}")
    async def api_execution(request: Request, execution_id: str) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        return _execution_to_dict(service.get_execution(owner_id, execution_id))

    @app.post("/api/executions/{execution_id}/cancel")
    async def api_execution_cancel(request: Request, execution_id: str) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        return _execution_to_dict(service.cancel_execution(owner_id, execution_id))

    @app.get("/api/executions/{execution_id}/events")
    async def api_execution_events(request: Request, execution_id: str) -> List[Dict[str, Any]]:
        owner_id = _require_owner(request)
        return [_event_to_dict(e) for e in service.list_execution_events(owner_id, execution_id)]

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    @app.get("/api/providers")
    async def api_providers(request: Request) -> List[Dict[str, Any]]:
        owner_id = _require_owner(request)
        return [_provider_to_dict(p) for p in service.list_providers(owner_id)]

    @app.post("/api/providers")
    async def api_providers_create(request: Request, req: ProviderCreateRequest) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        provider = service.create_provider(
            owner_id,
            name=req.name,
            provider_type=req.type,
            api_key=req.apiKey,
            endpoint=req.endpoint,
            is_active=req.isActive,
        )
        return _provider_to_dict(provider)

    @app.delete("/api/providers")
    async def api_providers_delete_by_query(request: Request, id: str = "") -> Dict[str, Any]:
        owner_id = _require_owner(request)
        if not id.strip():
            raise HTTPException(status_code=400, detail="Provider ID is required")
        service.delete_provider(owner_id, id.strip())
        return {"message": "Provider deleted"}

    @app.get("/api/providers/{provider_id}")
    async def api_provider(request: Request, provider_id: str) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        return _provider_to_dict(service.get_provider(owner_id, provider_id))

    @app.put("/api/providers/{provider_id}")
    async def api_provider_update(request: Request, provider_id: str, req: ProviderUpdateRequest) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        provider = service.update_provider(owner_id, provider_id, _snake_changes(req, _PROVIDER_KEYS))
        return _provider_to_dict(provider)

    @app.delete("/api/providers/{provider_id}")
    async def api_provider_delete(request: Request, provider_id: str) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        service.delete_provider(owner_id, provider_id)
        return {"message": "Provider deleted"}

    # ------------------------------------------------------------------
    # Chatbots
    # ------------------------------------------------------------------

    @app.get("/api/chatbots")
    async def api_chatbots(request: Request) -> List[Dict[str, Any]]:
        owner_id = _require_owner(request)
        return [_chatbot_to_dict(c) for c in service.list_chatbots(owner_id)]

    @app.post("/api/chatbots")
    async def api_chatbots_create(request: Request, req: ChatbotCreateRequest) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        appearance = req.appearance or AppearanceRequest()
        chatbot = service.create_chatbot(
            owner_id,
            name=req.name,
            description=req.description,
            provider=req.provider,
            provider_id=req.providerId,
            model=req.model,
            system_prompt=req.systemPrompt,
            temperature=req.temperature,
            max_tokens=req.maxTokens,
            welcome_message=req.welcomeMessage,
            primary_color=appearance.primaryColor,
            show_avatar=appearance.showAvatar,
            knowledge_base=req.knowledgeBase,
            tools=req.tools,
            status=req.status,
        )
        return _chatbot_to_dict(chatbot)

    @app.get("/api/chatbots/{chatbot_id}")
    async def api_chatbot(request: Request, chatbot_id: str) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        return _chatbot_to_dict(service.get_chatbot(owner_id, chatbot_id))

    @app.put("/api/chatbots/{chatbot_id}")
    async def api_chatbot_update(request: Request, chatbot_id: str, req: ChatbotUpdateRequest) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        chatbot = service.update_chatbot(owner_id, chatbot_id, _snake_changes(req, _CHATBOT_KEYS))
        return _chatbot_to_dict(chatbot)

    @app.delete("/api/chatbots/{chatbot_id}")
    async def api_chatbot_delete(request: Request, chatbot_id: str) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        service.delete_chatbot(owner_id, chatbot_id)
        return {"message": "Chatbot deleted"}

    # ------------------------------------------------------------------
    # Custom tools
    # ------------------------------------------------------------------

    @app.get("/api/tools")
    async def api_tools(request: Request) -> List[Dict[str, Any]]:
        owner_id = _require_owner(request)
        return [_tool_to_dict(t) for t in service.list_tools(owner_id)]

    @app.post("/api/tools")
    async def api_tools_create(request: Request, req: ToolCreateRequest) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        tool = service.create_tool(
            owner_id,
            name=req.name,
            tool_type=req.type,
            description=req.description,
            code=req.code,
            openapi_spec=req.openApiSpec,
            parameters=req.parameters,
        )
        return _tool_to_dict(tool)

    @app.get("/api/tools/{tool_id}")
    async def api_tool(request: Request, tool_id: str) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        return _tool_to_dict(service.get_tool(owner_id, tool_id))

    @app.put("/api/tools/{tool_id}")
    async def api_tool_update(request: Request, tool_id: str, req: ToolUpdateRequest) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        tool = service.update_tool(owner_id, tool_id, _snake_changes(req, _TOOL_KEYS))
        return _tool_to_dict(tool)

    @app.delete("/api/tools/{tool_id}")
    async def api_tool_delete(request: Request, tool_id: str) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        service.delete_tool(owner_id, tool_id)
        return {"message": "Tool deleted"}

    # ------------------------------------------------------------------
    # Knowledge
    # ------------------------------------------------------------------

    @app.get("/api/knowledge")
    async def api_knowledge(request: Request) -> List[Dict[str, Any]]:
        owner_id = _require_owner(request)
        return [_knowledge_to_dict(k) for k in service.list_knowledge_files(owner_id)]

    @app.post("/api/knowledge")
    async def api_knowledge_create(request: Request, req: KnowledgeCreateRequest) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        record = await service.create_knowledge_file(
            owner_id,
            name=req.name,
            knowledge_type=req.type,
            size=req.size,
            url=req.url,
        )
        return _knowledge_to_dict(record)

    @app.delete("/api/knowledge/{knowledge_id}")
    async def api_knowledge_delete(request: Request, knowledge_id: str) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        service.delete_knowledge_file(owner_id, knowledge_id)
        return {"message": "Knowledge file deleted"}

    @app.post("/api/upload")
    async def api_upload(request: Request, file: Optional[UploadFile] = File(None)) -> Dict[str, Any]:
        owner_id = _require_owner(request)
        if file is None or not file.filename:
            raise HTTPException(status_code=400, detail="No file provided")
        content = await file.read()
        record = await service.upload_knowledge_file(owner_id, filename=file.filename, size=len(content))
        return {"message": "File uploaded successfully", "fileId": record.knowledge_id}

    return app
