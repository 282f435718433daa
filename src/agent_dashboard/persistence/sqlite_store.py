import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from agent_dashboard.domain.agents import AgentRecord
from agent_dashboard.domain.chatbots import ChatbotAppearance, ChatbotRecord
from agent_dashboard.domain.executions import (
    EXECUTION_STATUS_FAILED,
    EXECUTION_STATUS_RUNNING,
    LOG_LEVEL_ERROR,
    LOG_LEVEL_INFO,
    LOG_LEVELS,
    ExecutionOutcome,
    ExecutionRecord,
    LogEntry,
)
from agent_dashboard.domain.knowledge import KNOWLEDGE_STATUS_PROCESSING, KnowledgeFileRecord
from agent_dashboard.domain.providers import ProviderRecord
from agent_dashboard.domain.tools import CustomToolRecord
from agent_dashboard.domain.users import UserRecord
from agent_dashboard.events.event_bus import ExecutionEvent
from agent_dashboard.persistence.demo_seed import DEMO_OWNER_ID, build_demo_data


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class SqliteDashboardStore:
    """Owner-scoped repository for every dashboard entity.

    Every read or write of an owned row filters on ``owner_id``; a row owned
    by somebody else behaves exactly like a missing one.
    """

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path).expanduser().resolve()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    avatar TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS providers (
                    provider_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    provider_type TEXT NOT NULL,
                    api_key TEXT NOT NULL,
                    endpoint TEXT NOT NULL,
                    is_active INTEGER NOT NULL,
                    models_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chatbots (
                    chatbot_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    provider_id TEXT NOT NULL,
                    model TEXT NOT NULL,
                    system_prompt TEXT NOT NULL,
                    temperature REAL NOT NULL,
                    max_tokens INTEGER NOT NULL,
                    welcome_message TEXT NOT NULL,
                    primary_color TEXT NOT NULL,
                    show_avatar INTEGER NOT NULL,
                    knowledge_base_json TEXT NOT NULL,
                    tools_json TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS agents (
                    agent_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    model TEXT NOT NULL,
                    system_prompt TEXT NOT NULL,
                    temperature REAL NOT NULL,
                    schedule TEXT NOT NULL,
                    status TEXT NOT NULL,
                    tools_json TEXT NOT NULL,
                    next_run TEXT,
                    last_run TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS custom_tools (
                    tool_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL,
                    tool_type TEXT NOT NULL,
                    code TEXT NOT NULL,
                    openapi_spec TEXT NOT NULL,
                    parameters_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS knowledge_files (
                    knowledge_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    knowledge_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    chunks INTEGER NOT NULL DEFAULT 0,
                    size INTEGER,
                    url TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS executions (
                    record_id TEXT PRIMARY KEY,
                    execution_id TEXT NOT NULL UNIQUE,
                    owner_id TEXT NOT NULL,
                    agent_id TEXT NOT NULL,
                    agent_name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    duration_ms INTEGER NOT NULL DEFAULT 0,
                    output_json TEXT,
                    error TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS execution_log_entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    execution_id TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    level TEXT NOT NULL,
                    message TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS execution_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    execution_id TEXT NOT NULL,
                    agent_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_executions_agent
                ON executions (owner_id, agent_id, start_time)
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_execution_log_entries_execution
                ON execution_log_entries (execution_id, id)
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_execution_events_execution
                ON execution_events (execution_id, id)
                """
            )
            # Lightweight migration for DBs created before tool parameters existed.
            tool_cols = conn.execute("PRAGMA table_info(custom_tools)").fetchall()
            if "parameters_json" not in {c["name"] for c in tool_cols}:
                conn.execute("ALTER TABLE custom_tools ADD COLUMN parameters_json TEXT NOT NULL DEFAULT '{}'")

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def upsert_user(self, record: UserRecord) -> UserRecord:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users (user_id, name, email, avatar, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    name = excluded.name,
                    email = excluded.email,
                    avatar = excluded.avatar,
                    updated_at = excluded.updated_at
                """,
                (
                    record.user_id,
                    record.name,
                    record.email,
                    record.avatar,
                    _fmt_dt(record.created_at),
                    _fmt_dt(record.updated_at),
                ),
            )
        return record

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
        return _row_to_user(row) if row else None

    def list_users(self) -> List[UserRecord]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at, rowid").fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def create_provider(self, record: ProviderRecord) -> ProviderRecord:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO providers (provider_id, owner_id, name, provider_type, api_key, endpoint,
                                       is_active, models_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                _provider_values(record),
            )
        return record

    def update_provider(self, record: ProviderRecord) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE providers
                SET name = ?, provider_type = ?, api_key = ?, endpoint = ?, is_active = ?,
                    models_json = ?, updated_at = ?
                WHERE provider_id = ? AND owner_id = ?
                """,
                (
                    record.name,
                    record.provider_type,
                    record.api_key,
                    record.endpoint,
                    1 if record.is_active else 0,
                    json.dumps(record.models),
                    _fmt_dt(record.updated_at),
                    record.provider_id,
                    record.owner_id,
                ),
            )
            return cur.rowcount > 0

    def get_provider(self, owner_id: str, provider_id: str) -> Optional[ProviderRecord]:
        row = self._fetch_one("providers", "provider_id", owner_id, provider_id)
        return _row_to_provider(row) if row else None

    def list_providers(self, owner_id: str) -> List[ProviderRecord]:
        return [_row_to_provider(r) for r in self._fetch_owned("providers", owner_id)]

    def delete_provider(self, owner_id: str, provider_id: str) -> bool:
        return self._delete_owned("providers", "provider_id", owner_id, provider_id)

    # ------------------------------------------------------------------
    # Chatbots
    # ------------------------------------------------------------------

    def create_chatbot(self, record: ChatbotRecord) -> ChatbotRecord:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO chatbots (chatbot_id, owner_id, name, description, provider, provider_id, model,
                                      system_prompt, temperature, max_tokens, welcome_message, primary_color,
                                      show_avatar, knowledge_base_json, tools_json, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.chatbot_id,
                    record.owner_id,
                    *_chatbot_mutable_values(record),
                    _fmt_dt(record.created_at),
                    _fmt_dt(record.updated_at),
                ),
            )
        return record

    def update_chatbot(self, record: ChatbotRecord) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE chatbots
                SET name = ?, description = ?, provider = ?, provider_id = ?, model = ?, system_prompt = ?,
                    temperature = ?, max_tokens = ?, welcome_message = ?, primary_color = ?, show_avatar = ?,
                    knowledge_base_json = ?, tools_json = ?, status = ?, updated_at = ?
                WHERE chatbot_id = ? AND owner_id = ?
                """,
                (
                    *_chatbot_mutable_values(record),
                    _fmt_dt(record.updated_at),
                    record.chatbot_id,
                    record.owner_id,
                ),
            )
            return cur.rowcount > 0

    def get_chatbot(self, owner_id: str, chatbot_id: str) -> Optional[ChatbotRecord]:
        row = self._fetch_one("chatbots", "chatbot_id", owner_id, chatbot_id)
        return _row_to_chatbot(row) if row else None

    def list_chatbots(self, owner_id: str) -> List[ChatbotRecord]:
        return [_row_to_chatbot(r) for r in self._fetch_owned("chatbots", owner_id)]

    def delete_chatbot(self, owner_id: str, chatbot_id: str) -> bool:
        return self._delete_owned("chatbots", "chatbot_id", owner_id, chatbot_id)

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    def create_agent(self, record: AgentRecord) -> AgentRecord:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO agents (agent_id, owner_id, name, description, provider, model, system_prompt,
                                    temperature, schedule, status, tools_json, next_run, last_run,
                                    created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.agent_id,
                    record.owner_id,
                    *_agent_mutable_values(record),
                    _fmt_dt(record.created_at),
                    _fmt_dt(record.updated_at),
                ),
            )
        return record

    def update_agent(self, record: AgentRecord) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE agents
                SET name = ?, description = ?, provider = ?, model = ?, system_prompt = ?, temperature = ?,
                    schedule = ?, status = ?, tools_json = ?, next_run = ?, last_run = ?, updated_at = ?
                WHERE agent_id = ? AND owner_id = ?
                """,
                (
                    *_agent_mutable_values(record),
                    _fmt_dt(record.updated_at),
                    record.agent_id,
                    record.owner_id,
                ),
            )
            return cur.rowcount > 0

    def set_agent_last_run(self, owner_id: str, agent_id: str, last_run: datetime) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE agents SET last_run = ? WHERE agent_id = ? AND owner_id = ?",
                (_fmt_dt(last_run), agent_id, owner_id),
            )
            return cur.rowcount > 0

    def get_agent(self, owner_id: str, agent_id: str) -> Optional[AgentRecord]:
        row = self._fetch_one("agents", "agent_id", owner_id, agent_id)
        return _row_to_agent(row) if row else None

    def list_agents(self, owner_id: str) -> List[AgentRecord]:
        return [_row_to_agent(r) for r in self._fetch_owned("agents", owner_id)]

    def delete_agent(self, owner_id: str, agent_id: str) -> bool:
        return self._delete_owned("agents", "agent_id", owner_id, agent_id)

    # ------------------------------------------------------------------
    # Custom tools
    # ------------------------------------------------------------------

    def create_tool(self, record: CustomToolRecord) -> CustomToolRecord:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO custom_tools (tool_id, owner_id, name, description, tool_type, code, openapi_spec,
                                          parameters_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.tool_id,
                    record.owner_id,
                    record.name,
                    record.description,
                    record.tool_type,
                    record.code,
                    record.openapi_spec,
                    json.dumps(record.parameters, sort_keys=True),
                    _fmt_dt(record.created_at),
                    _fmt_dt(record.updated_at),
                ),
            )
        return record

    def update_tool(self, record: CustomToolRecord) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE custom_tools
                SET name = ?, description = ?, tool_type = ?, code = ?, openapi_spec = ?,
                    parameters_json = ?, updated_at = ?
                WHERE tool_id = ? AND owner_id = ?
                """,
                (
                    record.name,
                    record.description,
                    record.tool_type,
                    record.code,
                    record.openapi_spec,
                    json.dumps(record.parameters, sort_keys=True),
                    _fmt_dt(record.updated_at),
                    record.tool_id,
                    record.owner_id,
                ),
            )
            return cur.rowcount > 0

    def get_tool(self, owner_id: str, tool_id: str) -> Optional[CustomToolRecord]:
        row = self._fetch_one("custom_tools", "tool_id", owner_id, tool_id)
        return _row_to_tool(row) if row else None

    def list_tools(self, owner_id: str) -> List[CustomToolRecord]:
        return [_row_to_tool(r) for r in self._fetch_owned("custom_tools", owner_id)]

    def delete_tool(self, owner_id: str, tool_id: str) -> bool:
        return self._delete_owned("custom_tools", "tool_id", owner_id, tool_id)

    # ------------------------------------------------------------------
    # Knowledge files
    # ------------------------------------------------------------------

    def create_knowledge_file(self, record: KnowledgeFileRecord) -> KnowledgeFileRecord:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO knowledge_files (knowledge_id, owner_id, name, knowledge_type, status, chunks,
                                             size, url, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.knowledge_id,
                    record.owner_id,
                    record.name,
                    record.knowledge_type,
                    record.status,
                    record.chunks,
                    record.size,
                    record.url,
                    _fmt_dt(record.created_at),
                    _fmt_dt(record.updated_at),
                ),
            )
        return record

    def complete_knowledge_file(self, knowledge_id: str, status: str, chunks: int, updated_at: datetime) -> bool:
        """Leave ``processing`` exactly once; later calls are no-ops."""
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE knowledge_files SET status = ?, chunks = ?, updated_at = ?
                WHERE knowledge_id = ? AND status = ?
                """,
                (status, int(chunks), _fmt_dt(updated_at), knowledge_id, KNOWLEDGE_STATUS_PROCESSING),
            )
            return cur.rowcount > 0

    def get_knowledge_file(self, owner_id: str, knowledge_id: str) -> Optional[KnowledgeFileRecord]:
        row = self._fetch_one("knowledge_files", "knowledge_id", owner_id, knowledge_id)
        return _row_to_knowledge(row) if row else None

    def list_knowledge_files(self, owner_id: str) -> List[KnowledgeFileRecord]:
        return [_row_to_knowledge(r) for r in self._fetch_owned("knowledge_files", owner_id)]

    def delete_knowledge_file(self, owner_id: str, knowledge_id: str) -> bool:
        return self._delete_owned("knowledge_files", "knowledge_id", owner_id, knowledge_id)

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    def create_execution(
        self,
        owner_id: str,
        agent_id: str,
        agent_name: str,
        start_time: datetime,
        start_message: str,
    ) -> ExecutionRecord:
        """Insert a ``running`` record together with its start log entry."""
        record_id = new_id("log")
        execution_id = new_id("exec")
        start_entry = LogEntry(timestamp=start_time, level=LOG_LEVEL_INFO, message=start_message)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO executions (record_id, execution_id, owner_id, agent_id, agent_name, status,
                                        start_time, end_time, duration_ms, output_json, error)
                VALUES (?, ?, ?, ?, ?, ?, ?, NULL, 0, NULL, NULL)
                """,
                (record_id, execution_id, owner_id, agent_id, agent_name, EXECUTION_STATUS_RUNNING, _fmt_dt(start_time)),
            )
            _insert_log_entries(conn, execution_id, [start_entry])
        return ExecutionRecord(
            record_id=record_id,
            execution_id=execution_id,
            owner_id=owner_id,
            agent_id=agent_id,
            agent_name=agent_name,
            status=EXECUTION_STATUS_RUNNING,
            start_time=start_time,
            end_time=None,
            duration_ms=0,
            output=None,
            error=None,
            logs=[start_entry],
        )

    def append_execution_log(self, execution_id: str, entry: LogEntry) -> bool:
        """Append one entry to a record that is still running."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT status FROM executions WHERE execution_id = ?",
                (execution_id,),
            ).fetchone()
            if not row or row["status"] != EXECUTION_STATUS_RUNNING:
                return False
            _insert_log_entries(conn, execution_id, [entry])
            return True

    def finish_execution(self, execution_id: str, outcome: ExecutionOutcome, entries: Sequence[LogEntry]) -> bool:
        """Apply the single terminal transition and its log entries atomically.

        Returns False without writing anything when the record is missing or
        already terminal.
        """
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE executions
                SET status = ?, end_time = ?, duration_ms = ?, output_json = ?, error = ?
                WHERE execution_id = ? AND status = ?
                """,
                (
                    outcome.status,
                    _fmt_dt(outcome.end_time),
                    int(outcome.duration_ms),
                    json.dumps(outcome.output, sort_keys=True) if outcome.output is not None else None,
                    outcome.error,
                    execution_id,
                    EXECUTION_STATUS_RUNNING,
                ),
            )
            if cur.rowcount == 0:
                return False
            _insert_log_entries(conn, execution_id, entries)
            return True

    def get_execution(self, owner_id: str, execution_id: str) -> Optional[ExecutionRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM executions WHERE execution_id = ? AND owner_id = ?",
                (execution_id, owner_id),
            ).fetchone()
            if not row:
                return None
            logs = _load_log_entries(conn, [execution_id])
        return _row_to_execution(row, logs.get(execution_id, []))

    def get_execution_unscoped(self, execution_id: str) -> Optional[ExecutionRecord]:
        """Lookup by id alone, for background work that already owns the record."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM executions WHERE execution_id = ?", (execution_id,)).fetchone()
            if not row:
                return None
            logs = _load_log_entries(conn, [execution_id])
        return _row_to_execution(row, logs.get(execution_id, []))

    def list_executions_for_agent(self, owner_id: str, agent_id: str) -> List[ExecutionRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM executions
                WHERE owner_id = ? AND agent_id = ?
                ORDER BY start_time DESC, rowid DESC
                """,
                (owner_id, agent_id),
            ).fetchall()
            logs = _load_log_entries(conn, [r["execution_id"] for r in rows])
        return [_row_to_execution(r, logs.get(r["execution_id"], [])) for r in rows]

    def list_running_executions(self, owner_id: Optional[str] = None, agent_id: Optional[str] = None) -> List[str]:
        clauses = ["status = ?"]
        params: List[Any] = [EXECUTION_STATUS_RUNNING]
        if owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        if agent_id is not None:
            clauses.append("agent_id = ?")
            params.append(agent_id)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT execution_id FROM executions WHERE {' AND '.join(clauses)} ORDER BY start_time",
                tuple(params),
            ).fetchall()
        return [r["execution_id"] for r in rows]

    def fail_stale_executions(self, error: str, now: datetime) -> int:
        """Fail records left ``running`` by a previous process."""
        stale = self.list_running_executions()
        failed = 0
        for execution_id in stale:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT start_time FROM executions WHERE execution_id = ?",
                    (execution_id,),
                ).fetchone()
            start = _parse_dt(row["start_time"]) if row else None
            duration_ms = _duration_ms(start, now) if start else 0
            outcome = ExecutionOutcome(
                status=EXECUTION_STATUS_FAILED,
                end_time=now,
                duration_ms=duration_ms,
                output=None,
                error=error,
            )
            entry = LogEntry(timestamp=now, level=LOG_LEVEL_ERROR, message=error)
            if self.finish_execution(execution_id, outcome, [entry]):
                failed += 1
        return failed

    def insert_execution_history(self, record: ExecutionRecord) -> None:
        """Insert an already finished record, e.g. imported demo history."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO executions (record_id, execution_id, owner_id, agent_id, agent_name, status,
                                        start_time, end_time, duration_ms, output_json, error)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.record_id,
                    record.execution_id,
                    record.owner_id,
                    record.agent_id,
                    record.agent_name,
                    record.status,
                    _fmt_dt(record.start_time),
                    _fmt_dt(record.end_time) if record.end_time else None,
                    int(record.duration_ms),
                    json.dumps(record.output, sort_keys=True) if record.output is not None else None,
                    record.error,
                ),
            )
            _insert_log_entries(conn, record.execution_id, record.logs)

    def append_execution_event(self, event: ExecutionEvent) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO execution_events (execution_id, agent_id, event_type, payload, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (event.execution_id, event.agent_id, event.event_type, event.payload, _fmt_dt(event.created_at)),
            )

    def list_execution_events(self, owner_id: str, execution_id: str) -> List[ExecutionEvent]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT ev.execution_id, ev.agent_id, ev.event_type, ev.payload, ev.created_at
                FROM execution_events ev
                JOIN executions ex ON ex.execution_id = ev.execution_id
                WHERE ev.execution_id = ? AND ex.owner_id = ?
                ORDER BY ev.id
                """,
                (execution_id, owner_id),
            ).fetchall()
        return [
            ExecutionEvent(
                execution_id=r["execution_id"],
                agent_id=r["agent_id"],
                event_type=r["event_type"],
                payload=r["payload"],
                created_at=_parse_dt(r["created_at"]),
            )
            for r in rows
        ]

    def count_rows(self, table: str) -> int:
        if table not in _OWNED_TABLES and table not in {"users", "executions"}:
            raise ValueError(f"unknown table: {table}")
        with self._connect() as conn:
            return int(conn.execute(f"SELECT COUNT(*) AS c FROM {table}").fetchone()["c"])

    def is_empty(self) -> bool:
        return all(self.count_rows(t) == 0 for t in sorted(_OWNED_TABLES | {"users", "executions"}))

    def seed_demo_data(self, owner_id: str = DEMO_OWNER_ID, now: Optional[datetime] = None) -> bool:
        """Insert the demo workspace once; returns False when data already exists."""
        if not self.is_empty():
            return False
        data = build_demo_data(owner_id=owner_id, now=now or datetime.now(timezone.utc))
        for user in data.users:
            self.upsert_user(user)
        for provider in data.providers:
            self.create_provider(provider)
        for tool in data.tools:
            self.create_tool(tool)
        for knowledge in data.knowledge_files:
            self.create_knowledge_file(knowledge)
        for chatbot in data.chatbots:
            self.create_chatbot(chatbot)
        for agent in data.agents:
            self.create_agent(agent)
        for execution in data.executions:
            self.insert_execution_history(execution)
        return True

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _fetch_one(self, table: str, key_column: str, owner_id: str, key: str) -> Optional[sqlite3.Row]:
        _check_table(table)
        with self._connect() as conn:
            return conn.execute(
                f"SELECT * FROM {table} WHERE {key_column} = ? AND owner_id = ?",
                (key, owner_id),
            ).fetchone()

    def _fetch_owned(self, table: str, owner_id: str) -> List[sqlite3.Row]:
        _check_table(table)
        with self._connect() as conn:
            return conn.execute(
                f"SELECT * FROM {table} WHERE owner_id = ? ORDER BY created_at, rowid",
                (owner_id,),
            ).fetchall()

    def _delete_owned(self, table: str, key_column: str, owner_id: str, key: str) -> bool:
        _check_table(table)
        with self._connect() as conn:
            cur = conn.execute(
                f"DELETE FROM {table} WHERE {key_column} = ? AND owner_id = ?",
                (key, owner_id),
            )
            return cur.rowcount > 0


_OWNED_TABLES = {"providers", "chatbots", "agents", "custom_tools", "knowledge_files"}


def _check_table(table: str) -> None:
    if table not in _OWNED_TABLES:
        raise ValueError(f"unknown table: {table}")


def _fmt_dt(value: datetime) -> str:
    # Fixed-width UTC strings so lexical order matches time order.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def _parse_dt(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    return datetime.fromisoformat(raw)


def _duration_ms(start: datetime, end: datetime) -> int:
    return int(round((end - start).total_seconds() * 1000))


def _insert_log_entries(conn: sqlite3.Connection, execution_id: str, entries: Iterable[LogEntry]) -> None:
    entries = list(entries)
    for entry in entries:
        if entry.level not in LOG_LEVELS:
            raise ValueError(f"unknown log level: {entry.level}")
    conn.executemany(
        "INSERT INTO execution_log_entries (execution_id, timestamp, level, message) VALUES (?, ?, ?, ?)",
        [(execution_id, _fmt_dt(e.timestamp), e.level, e.message) for e in entries],
    )


def _load_log_entries(conn: sqlite3.Connection, execution_ids: List[str]) -> Dict[str, List[LogEntry]]:
    out: Dict[str, List[LogEntry]] = {eid: [] for eid in execution_ids}
    if not execution_ids:
        return out
    placeholders = ",".join("?" for _ in execution_ids)
    rows = conn.execute(
        f"""
        SELECT execution_id, timestamp, level, message FROM execution_log_entries
        WHERE execution_id IN ({placeholders})
        ORDER BY id
        """,
        tuple(execution_ids),
    ).fetchall()
    for row in rows:
        out[row["execution_id"]].append(
            LogEntry(timestamp=_parse_dt(row["timestamp"]), level=row["level"], message=row["message"])
        )
    return out


def _provider_values(record: ProviderRecord) -> Tuple[Any, ...]:
    return (
        record.provider_id,
        record.owner_id,
        record.name,
        record.provider_type,
        record.api_key,
        record.endpoint,
        1 if record.is_active else 0,
        json.dumps(record.models),
        _fmt_dt(record.created_at),
        _fmt_dt(record.updated_at),
    )


def _chatbot_mutable_values(record: ChatbotRecord) -> Tuple[Any, ...]:
    return (
        record.name,
        record.description,
        record.provider,
        record.provider_id,
        record.model,
        record.system_prompt,
        float(record.temperature),
        int(record.max_tokens),
        record.welcome_message,
        record.appearance.primary_color,
        1 if record.appearance.show_avatar else 0,
        json.dumps(record.knowledge_base),
        json.dumps(record.tools),
        record.status,
    )


def _agent_mutable_values(record: AgentRecord) -> Tuple[Any, ...]:
    return (
        record.name,
        record.description,
        record.provider,
        record.model,
        record.system_prompt,
        float(record.temperature),
        record.schedule,
        record.status,
        json.dumps(record.tools),
        _fmt_dt(record.next_run) if record.next_run else None,
        _fmt_dt(record.last_run) if record.last_run else None,
    )


def _row_to_user(row: sqlite3.Row) -> UserRecord:
    return UserRecord(
        user_id=row["user_id"],
        name=row["name"],
        email=row["email"],
        avatar=row["avatar"],
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _row_to_provider(row: sqlite3.Row) -> ProviderRecord:
    return ProviderRecord(
        provider_id=row["provider_id"],
        owner_id=row["owner_id"],
        name=row["name"],
        provider_type=row["provider_type"],
        api_key=row["api_key"],
        endpoint=row["endpoint"],
        is_active=bool(row["is_active"]),
        models=list(json.loads(row["models_json"] or "[]")),
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _row_to_chatbot(row: sqlite3.Row) -> ChatbotRecord:
    return ChatbotRecord(
        chatbot_id=row["chatbot_id"],
        owner_id=row["owner_id"],
        name=row["name"],
        description=row["description"],
        provider=row["provider"],
        provider_id=row["provider_id"],
        model=row["model"],
        system_prompt=row["system_prompt"],
        temperature=float(row["temperature"]),
        max_tokens=int(row["max_tokens"]),
        welcome_message=row["welcome_message"],
        status=row["status"],
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
        appearance=ChatbotAppearance(primary_color=row["primary_color"], show_avatar=bool(row["show_avatar"])),
        knowledge_base=list(json.loads(row["knowledge_base_json"] or "[]")),
        tools=list(json.loads(row["tools_json"] or "[]")),
    )


def _row_to_agent(row: sqlite3.Row) -> AgentRecord:
    return AgentRecord(
        agent_id=row["agent_id"],
        owner_id=row["owner_id"],
        name=row["name"],
        description=row["description"],
        provider=row["provider"],
        model=row["model"],
        system_prompt=row["system_prompt"],
        temperature=float(row["temperature"]),
        schedule=row["schedule"],
        status=row["status"],
        tools=list(json.loads(row["tools_json"] or "[]")),
        next_run=_parse_dt(row["next_run"]),
        last_run=_parse_dt(row["last_run"]),
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _row_to_tool(row: sqlite3.Row) -> CustomToolRecord:
    return CustomToolRecord(
        tool_id=row["tool_id"],
        owner_id=row["owner_id"],
        name=row["name"],
        description=row["description"],
        tool_type=row["tool_type"],
        code=row["code"],
        openapi_spec=row["openapi_spec"],
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
        parameters=dict(json.loads(row["parameters_json"] or "{}")),
    )


def _row_to_knowledge(row: sqlite3.Row) -> KnowledgeFileRecord:
    return KnowledgeFileRecord(
        knowledge_id=row["knowledge_id"],
        owner_id=row["owner_id"],
        name=row["name"],
        knowledge_type=row["knowledge_type"],
        status=row["status"],
        chunks=int(row["chunks"]),
        size=row["size"],
        url=row["url"],
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _row_to_execution(row: sqlite3.Row, logs: List[LogEntry]) -> ExecutionRecord:
    output_raw = row["output_json"]
    return ExecutionRecord(
        record_id=row["record_id"],
        execution_id=row["execution_id"],
        owner_id=row["owner_id"],
        agent_id=row["agent_id"],
        agent_name=row["agent_name"],
        status=row["status"],
        start_time=_parse_dt(row["start_time"]),
        end_time=_parse_dt(row["end_time"]),
        duration_ms=int(row["duration_ms"] or 0),
        output=json.loads(output_raw) if output_raw is not None else None,
        error=row["error"],
        logs=logs,
    )
