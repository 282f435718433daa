import random
import tempfile
import time
import unittest
from datetime import datetime, timezone
from pathlib import Path

from fastapi.testclient import TestClient

from agent_dashboard.control_center.app import create_app
from agent_dashboard.persistence.sqlite_store import SqliteDashboardStore
from agent_dashboard.services.dashboard_service import DashboardService
from agent_dashboard.services.execution_runner import ExecutionRunner
from agent_dashboard.services.execution_scheduler import ExecutionScheduler
from agent_dashboard.services.knowledge_ingestion import KnowledgeIngestion
from agent_dashboard.services.schedule_resolver import ScheduleResolver

API_KEYS = {"tok-a": "owner-a", "tok-b": "owner-b"}
A = {"Authorization": "Bearer tok-a"}
B = {"Authorization": "Bearer tok-b"}
NOW = datetime(2026, 3, 4, 14, 30, tzinfo=timezone.utc)


class _FixedRandom(random.Random):
    def __init__(self, value: float):
        super().__init__(7)
        self._value = value

    def random(self) -> float:
        return self._value


async def _no_sleep(delay: float) -> None:
    return None


class TestControlCenterApi(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = SqliteDashboardStore(Path(self.tmp.name) / "dashboard.db")

    def tearDown(self):
        self.tmp.cleanup()

    def _app(self, delay: float = 0.0, seed_demo_owner=None):
        runner = ExecutionRunner(
            store=self.store,
            scheduler=ExecutionScheduler(max_concurrency=2),
            delay_min_sec=delay,
            delay_max_sec=delay,
            rng=_FixedRandom(0.0),
        )
        service = DashboardService(
            store=self.store,
            runner=runner,
            ingestion=KnowledgeIngestion(store=self.store, rng=random.Random(1), sleep=_no_sleep),
            resolver=ScheduleResolver(clock=lambda: NOW),
        )
        return create_app(service, api_keys=API_KEYS, seed_demo_owner=seed_demo_owner)

    def _poll(self, client: TestClient, path: str, done) -> dict:
        for _ in range(400):
            res = client.get(path, headers=A)
            self.assertEqual(res.status_code, 200)
            body = res.json()
            if done(body):
                return body
            time.sleep(0.01)
        self.fail(f"{path} never reached the expected state")

    # -- auth ----------------------------------------------------------

    def test_health_needs_no_token(self):
        with TestClient(self._app()) as client:
            res = client.get("/health")
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["scheduleMode"], "presets")
        self.assertEqual(body["executions"]["max_concurrency"], 2)

    def test_api_requires_known_token(self):
        with TestClient(self._app()) as client:
            missing = client.get("/api/agents")
            wrong = client.get("/api/agents", headers={"Authorization": "Bearer nope"})
            by_header = client.get("/api/agents", headers={"x-api-key": "tok-a"})
        self.assertEqual((missing.status_code, missing.json()["detail"]), (401, "Missing API token."))
        self.assertEqual((wrong.status_code, wrong.json()["detail"]), (401, "Invalid API token."))
        self.assertEqual((by_header.status_code, by_header.json()), (200, []))

    # -- agents --------------------------------------------------------

    def test_agent_crud_uses_camel_case(self):
        with TestClient(self._app()) as client:
            created = client.post(
                "/api/agents",
                headers=A,
                json={"name": "Reporter", "systemPrompt": "Summarize", "schedule": "0 9 * * *", "status": "active"},
            )
            self.assertEqual(created.status_code, 200)
            agent = created.json()
            self.assertEqual(agent["userId"], "owner-a")
            self.assertEqual(agent["systemPrompt"], "Summarize")
            self.assertEqual(agent["temperature"], 0.7)
            self.assertEqual(agent["nextRun"], "2026-03-05T09:00:00.000Z")
            self.assertIsNone(agent["lastRun"])

            updated = client.put(f"/api/agents/{agent['id']}", headers=A, json={"status": "inactive"})
            self.assertEqual(updated.status_code, 200)
            self.assertIsNone(updated.json()["nextRun"])
            self.assertEqual(updated.json()["systemPrompt"], "Summarize")

            listed = client.get("/api/agents", headers=A).json()
            self.assertEqual([a["id"] for a in listed], [agent["id"]])

            deleted = client.delete(f"/api/agents/{agent['id']}", headers=A)
            self.assertEqual(deleted.json(), {"message": "Agent deleted", "cancelledExecutions": []})
            self.assertEqual(client.get(f"/api/agents/{agent['id']}", headers=A).status_code, 404)

    def test_validation_errors(self):
        with TestClient(self._app()) as client:
            missing_name = client.post("/api/agents", headers=A, json={"schedule": "0 9 * * *"})
            blank_name = client.post("/api/agents", headers=A, json={"name": "  "})
            hot = client.post("/api/agents", headers=A, json={"name": "Hot", "temperature": 5})
        self.assertEqual(missing_name.status_code, 422)
        self.assertEqual(blank_name.status_code, 400)
        self.assertEqual(hot.status_code, 400)

    def test_owners_are_isolated(self):
        with TestClient(self._app()) as client:
            agent = client.post("/api/agents", headers=A, json={"name": "Private"}).json()

            self.assertEqual(client.get("/api/agents", headers=B).json(), [])
            self.assertEqual(client.get(f"/api/agents/{agent['id']}", headers=B).status_code, 404)
            self.assertEqual(client.put(f"/api/agents/{agent['id']}", headers=B, json={"name": "x"}).status_code, 404)
            self.assertEqual(client.post(f"/api/agents/{agent['id']}/execute", headers=B).status_code, 404)
            self.assertEqual(client.delete(f"/api/agents/{agent['id']}", headers=B).status_code, 404)
            self.assertEqual(client.get(f"/api/agents/{agent['id']}", headers=A).status_code, 200)

    def test_execute_records_three_log_entries(self):
        with TestClient(self._app()) as client:
            agent = client.post("/api/agents", headers=A, json={"name": "Reporter"}).json()

            started = client.post(f"/api/agents/{agent['id']}/execute", headers=A)
            self.assertEqual(started.status_code, 200)
            self.assertEqual(started.json()["message"], "Agent execution started")
            execution_id = started.json()["executionId"]

            record = self._poll(client, f"/api/executions/{execution_id}", lambda b: b["status"] != "running")
            self.assertEqual(record["status"], "completed")
            self.assertEqual([e["level"] for e in record["logs"]], ["info", "info", "success"])
            self.assertEqual(record["agentName"], "Reporter")
            self.assertIsInstance(record["durationMs"], int)
            self.assertTrue(record["endTime"].endswith("Z"))

            logs = client.get(f"/api/agents/{agent['id']}/logs", headers=A).json()
            self.assertEqual([r["executionId"] for r in logs], [execution_id])
            self.assertEqual(client.get(f"/api/agents/{agent['id']}/logs", headers=B).json(), [])
            self.assertEqual(client.get(f"/api/executions/{execution_id}", headers=B).status_code, 404)

            refreshed = client.get(f"/api/agents/{agent['id']}", headers=A).json()
            self.assertEqual(refreshed["lastRun"], record["endTime"])

            events = client.get(f"/api/executions/{execution_id}/events", headers=A).json()
            self.assertEqual([e["type"] for e in events], ["execution.started", "execution.completed"])
            self.assertEqual(client.get(f"/api/executions/{execution_id}/events", headers=B).status_code, 404)

    def test_cancel_running_execution(self):
        with TestClient(self._app(delay=30.0)) as client:
            agent = client.post("/api/agents", headers=A, json={"name": "Slow"}).json()
            execution_id = client.post(f"/api/agents/{agent['id']}/execute", headers=A).json()["executionId"]

            cancelled = client.post(f"/api/executions/{execution_id}/cancel", headers=A)
            self.assertEqual(cancelled.status_code, 200)
            body = cancelled.json()
            self.assertEqual(body["status"], "failed")
            self.assertEqual(body["error"], "Execution cancelled")
            self.assertEqual([e["level"] for e in body["logs"]], ["info", "warning"])

            again = client.post(f"/api/executions/{execution_id}/cancel", headers=A)
            self.assertEqual(again.status_code, 400)
            foreign = client.post(f"/api/executions/{execution_id}/cancel", headers=B)
            self.assertEqual(foreign.status_code, 404)

    def test_closing_the_app_cancels_in_flight_executions(self):
        with TestClient(self._app(delay=30.0)) as client:
            agent = client.post("/api/agents", headers=A, json={"name": "Slow"}).json()
            execution_id = client.post(f"/api/agents/{agent['id']}/execute", headers=A).json()["executionId"]

        record = self.store.get_execution("owner-a", execution_id)
        self.assertEqual(record.status, "failed")
        self.assertEqual(record.error, "Execution cancelled")

    def test_delete_agent_reports_cancelled_executions(self):
        with TestClient(self._app(delay=30.0)) as client:
            agent = client.post("/api/agents", headers=A, json={"name": "Slow"}).json()
            execution_id = client.post(f"/api/agents/{agent['id']}/execute", headers=A).json()["executionId"]

            deleted = client.delete(f"/api/agents/{agent['id']}", headers=A).json()

            self.assertEqual(deleted["cancelledExecutions"], [execution_id])
            history = client.get(f"/api/agents/{agent['id']}/logs", headers=A).json()
            self.assertEqual(history[0]["error"], "Execution cancelled")

    # -- providers -----------------------------------------------------

    def test_provider_key_is_masked_and_query_delete(self):
        with TestClient(self._app()) as client:
            created = client.post(
                "/api/providers",
                headers=A,
                json={"name": "OpenAI", "type": "openai", "apiKey": "sk-demo-key-12345"},
            ).json()
            self.assertEqual(created["apiKey"], "*************2345")
            self.assertIn("gpt-4o", created["models"])
            self.assertTrue(created["isActive"])

            switched = client.put(f"/api/providers/{created['id']}", headers=A, json={"type": "anthropic"}).json()
            self.assertIn("claude-3-haiku", switched["models"])

            self.assertEqual(client.post("/api/providers", headers=A, json={"name": "x", "type": "cohere"}).status_code, 400)
            no_id = client.delete("/api/providers", headers=A)
            self.assertEqual((no_id.status_code, no_id.json()["detail"]), (400, "Provider ID is required"))
            self.assertEqual(client.delete(f"/api/providers?id={created['id']}", headers=B).status_code, 404)
            deleted = client.delete(f"/api/providers?id={created['id']}", headers=A)
            self.assertEqual(deleted.json(), {"message": "Provider deleted"})
            self.assertEqual(client.get("/api/providers", headers=A).json(), [])

    def test_null_fields_in_updates_are_cleared(self):
        with TestClient(self._app()) as client:
            agent = client.post(
                "/api/agents", headers=A, json={"name": "Reporter", "description": "daily", "model": "gpt-4o"}
            ).json()
            res = client.put(
                f"/api/agents/{agent['id']}",
                headers=A,
                json={"description": None, "provider": None, "model": None, "systemPrompt": None, "schedule": None},
            )
            self.assertEqual(res.status_code, 200)
            self.assertEqual((res.json()["description"], res.json()["model"], res.json()["systemPrompt"]), ("", "", ""))
            self.assertIsNone(res.json()["nextRun"])

            chatbot = client.post("/api/chatbots", headers=A, json={"name": "Support", "welcomeMessage": "Hi"}).json()
            res = client.put(
                f"/api/chatbots/{chatbot['id']}",
                headers=A,
                json={"welcomeMessage": None, "description": None, "providerId": None, "tools": None},
            )
            self.assertEqual(res.status_code, 200)
            self.assertEqual(res.json()["welcomeMessage"], "Hello! How can I help you today?")
            self.assertEqual(res.json()["tools"], [])
            avatar = client.put(f"/api/chatbots/{chatbot['id']}", headers=A, json={"appearance": {"showAvatar": None}})
            self.assertEqual(avatar.status_code, 400)

            provider = client.post(
                "/api/providers", headers=A, json={"name": "OpenAI", "type": "openai", "apiKey": "sk-demo-key-12345"}
            ).json()
            res = client.put(f"/api/providers/{provider['id']}", headers=A, json={"apiKey": None, "endpoint": None})
            self.assertEqual(res.status_code, 200)
            self.assertEqual(res.json()["apiKey"], "")
            self.assertIsNone(res.json()["endpoint"])
            inactive = client.put(f"/api/providers/{provider['id']}", headers=A, json={"isActive": None})
            self.assertEqual((inactive.status_code, inactive.json()["detail"]), (400, "isActive must be true or false"))

            tool = client.post("/api/tools", headers=A, json={"name": "Calc", "type": "python", "code": "x"}).json()
            res = client.put(
                f"/api/tools/{tool['id']}",
                headers=A,
                json={"code": None, "openApiSpec": None, "description": None, "parameters": None},
            )
            self.assertEqual(res.status_code, 200)
            self.assertIsNone(res.json()["code"])
            self.assertEqual(res.json()["parameters"], {})

            self.assertEqual(client.put(f"/api/agents/{agent['id']}", headers=A, json={"name": None}).status_code, 400)

    # -- chatbots ------------------------------------------------------

    def test_chatbot_defaults_and_appearance_update(self):
        with TestClient(self._app()) as client:
            chatbot = client.post("/api/chatbots", headers=A, json={"name": "Support"}).json()
            self.assertEqual(chatbot["status"], "active")
            self.assertEqual(chatbot["maxTokens"], 1000)
            self.assertEqual(chatbot["welcomeMessage"], "Hello! How can I help you today?")
            self.assertEqual(chatbot["appearance"], {"primaryColor": "#3b82f6", "showAvatar": True})

            updated = client.put(
                f"/api/chatbots/{chatbot['id']}",
                headers=A,
                json={"appearance": {"showAvatar": False}, "knowledgeBase": ["knowledge-1"]},
            ).json()
            self.assertEqual(updated["appearance"], {"primaryColor": "#3b82f6", "showAvatar": False})
            self.assertEqual(updated["knowledgeBase"], ["knowledge-1"])

            self.assertEqual(client.delete(f"/api/chatbots/{chatbot['id']}", headers=A).json(), {"message": "Chatbot deleted"})
            self.assertEqual(client.get(f"/api/chatbots/{chatbot['id']}", headers=A).status_code, 404)

    # -- tools ---------------------------------------------------------

    def test_tool_crud(self):
        with TestClient(self._app()) as client:
            tool = client.post(
                "/api/tools",
                headers=A,
                json={"name": "Weather", "type": "openapi", "openApiSpec": "openapi: 3.0.0"},
            ).json()
            self.assertEqual(tool["openApiSpec"], "openapi: 3.0.0")
            self.assertIsNone(tool["code"])
            self.assertEqual(tool["parameters"], {})

            updated = client.put(
                f"/api/tools/{tool['id']}", headers=A, json={"parameters": {"city": {"type": "string"}}}
            ).json()
            self.assertEqual(updated["parameters"], {"city": {"type": "string"}})
            self.assertEqual(client.post("/api/tools", headers=A, json={"name": "x", "type": "ruby"}).status_code, 400)
            self.assertEqual(client.delete(f"/api/tools/{tool['id']}", headers=A).json(), {"message": "Tool deleted"})

    # -- knowledge -----------------------------------------------------

    def test_knowledge_entry_completes(self):
        with TestClient(self._app()) as client:
            created = client.post(
                "/api/knowledge", headers=A, json={"name": "Docs", "type": "url", "url": "https://example.com"}
            ).json()
            self.assertEqual((created["status"], created["chunks"]), ("processing", 0))

            def completed(body):
                return any(k["id"] == created["id"] and k["status"] == "completed" for k in body)

            listed = self._poll(client, "/api/knowledge", completed)
            entry = next(k for k in listed if k["id"] == created["id"])
            self.assertGreaterEqual(entry["chunks"], 10)
            self.assertLessEqual(entry["chunks"], 59)

            deleted = client.delete(f"/api/knowledge/{created['id']}", headers=A)
            self.assertEqual(deleted.json(), {"message": "Knowledge file deleted"})
            self.assertEqual(client.get("/api/knowledge", headers=A).json(), [])

    def test_upload(self):
        with TestClient(self._app()) as client:
            uploaded = client.post("/api/upload", headers=A, files={"file": ("notes.txt", b"hello world")})
            self.assertEqual(uploaded.status_code, 200)
            self.assertEqual(uploaded.json()["message"], "File uploaded successfully")
            file_id = uploaded.json()["fileId"]

            listed = client.get("/api/knowledge", headers=A).json()
            entry = next(k for k in listed if k["id"] == file_id)
            self.assertEqual((entry["name"], entry["type"], entry["size"]), ("notes.txt", "file", 11))

            missing = client.post("/api/upload", headers=A, files={"other": ("x.txt", b"x")})
            self.assertEqual((missing.status_code, missing.json()["detail"]), (400, "No file provided"))

    # -- seeding -------------------------------------------------------

    def test_seeds_demo_workspace_on_startup(self):
        with TestClient(self._app(seed_demo_owner="owner-a")) as client:
            agents = client.get("/api/agents", headers=A).json()
            self.assertEqual([a["name"] for a in agents], ["Daily Report Generator", "Content Moderator"])
            history = client.get("/api/agents/agent-1/logs", headers=A).json()
            self.assertEqual(history[0]["durationMs"], 45000)
            self.assertEqual(client.get("/api/agents", headers=B).json(), [])
