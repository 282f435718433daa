import random
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from agent_dashboard.domain.errors import NotFoundError, ValidationError
from agent_dashboard.persistence.sqlite_store import SqliteDashboardStore
from agent_dashboard.services.dashboard_service import DashboardService
from agent_dashboard.services.execution_runner import CANCELLED_ERROR, ExecutionRunner
from agent_dashboard.services.execution_scheduler import ExecutionScheduler
from agent_dashboard.services.knowledge_ingestion import KnowledgeIngestion
from agent_dashboard.services.schedule_resolver import ScheduleResolver

# 2026-03-04 is a Wednesday.
NOW = datetime(2026, 3, 4, 14, 30, tzinfo=timezone.utc)


async def _no_sleep(delay: float) -> None:
    return None


class TestDashboardService(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = SqliteDashboardStore(Path(self.tmp.name) / "dashboard.db")
        self.runner = ExecutionRunner(
            store=self.store,
            scheduler=ExecutionScheduler(max_concurrency=2),
            delay_min_sec=0.0,
            delay_max_sec=0.0,
            rng=random.Random(5),
        )
        self.ingestion = KnowledgeIngestion(store=self.store, rng=random.Random(5), sleep=_no_sleep)
        self.service = DashboardService(
            store=self.store,
            runner=self.runner,
            ingestion=self.ingestion,
            resolver=ScheduleResolver(clock=lambda: NOW),
        )

    async def asyncTearDown(self):
        await self.service.shutdown()
        self.tmp.cleanup()

    # -- agents ---------------------------------------------------------

    async def test_create_agent_defaults(self):
        agent = self.service.create_agent("owner-a", name="Reporter", schedule="0 9 * * *")

        self.assertEqual(agent.status, "draft")
        self.assertEqual(agent.temperature, 0.7)
        self.assertEqual(agent.tools, [])
        self.assertIsNone(agent.next_run)
        self.assertIsNone(agent.last_run)
        self.assertTrue(agent.agent_id.startswith("agent-"))
        self.assertEqual(self.service.get_agent("owner-a", agent.agent_id), agent)

    async def test_null_text_updates_become_empty_strings(self):
        agent = self.service.create_agent("owner-a", name="Reporter", description="daily", schedule="0 9 * * *")
        updated = self.service.update_agent(
            "owner-a", agent.agent_id, {"description": None, "system_prompt": None, "schedule": None}
        )

        self.assertEqual((updated.description, updated.system_prompt, updated.schedule), ("", "", ""))
        self.assertEqual(self.service.get_agent("owner-a", agent.agent_id).description, "")

        provider = self.service.create_provider("owner-a", name="OpenAI", provider_type="openai", api_key="sk-x")
        with self.assertRaises(ValidationError):
            self.service.update_provider("owner-a", provider.provider_id, {"is_active": None})
        cleared = self.service.update_provider("owner-a", provider.provider_id, {"api_key": None})
        self.assertEqual(cleared.api_key, "")

    async def test_explicit_zero_temperature_is_kept(self):
        agent = self.service.create_agent("owner-a", name="Cold", temperature=0.0)
        self.assertEqual(agent.temperature, 0.0)

    async def test_active_agent_gets_next_run(self):
        agent = self.service.create_agent("owner-a", name="Reporter", schedule="0 9 * * *", status="active")
        self.assertEqual(agent.next_run, datetime(2026, 3, 5, 9, 0, tzinfo=timezone.utc))
        self.assertEqual(self.service.get_agent("owner-a", agent.agent_id).next_run, agent.next_run)

    async def test_active_agent_with_unknown_schedule_has_no_next_run(self):
        agent = self.service.create_agent("owner-a", name="Odd", schedule="0 10 * * *", status="active")
        self.assertIsNone(agent.next_run)

    async def test_status_and_schedule_updates_maintain_next_run(self):
        agent = self.service.create_agent("owner-a", name="Reporter", schedule="0 9 * * 1", status="active")
        self.assertEqual(agent.next_run, datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc))

        paused = self.service.update_agent("owner-a", agent.agent_id, {"status": "inactive"})
        self.assertIsNone(paused.next_run)

        resumed = self.service.update_agent("owner-a", agent.agent_id, {"status": "active"})
        self.assertEqual(resumed.next_run, datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc))

        rescheduled = self.service.update_agent("owner-a", agent.agent_id, {"schedule": "*/15 * * * *"})
        self.assertEqual(rescheduled.next_run, datetime(2026, 3, 4, 14, 45, tzinfo=timezone.utc))

        renamed = self.service.update_agent("owner-a", agent.agent_id, {"name": "Weekly"})
        self.assertEqual(renamed.next_run, rescheduled.next_run)
        self.assertEqual(self.service.get_agent("owner-a", agent.agent_id).name, "Weekly")

    async def test_agent_validation(self):
        with self.assertRaises(ValidationError):
            self.service.create_agent("owner-a", name="   ")
        with self.assertRaises(ValidationError):
            self.service.create_agent("owner-a", name="Hot", temperature=2.5)
        with self.assertRaises(ValidationError):
            self.service.create_agent("owner-a", name="Odd", status="paused")
        agent = self.service.create_agent("owner-a", name="Reporter")
        with self.assertRaises(ValidationError):
            self.service.update_agent("owner-a", agent.agent_id, {"temperature": -0.1})
        with self.assertRaises(ValidationError):
            self.service.update_agent("owner-a", agent.agent_id, {"last_run": NOW})

    async def test_agents_are_owner_scoped(self):
        agent = self.service.create_agent("owner-a", name="Reporter")
        with self.assertRaises(NotFoundError):
            self.service.get_agent("owner-b", agent.agent_id)
        with self.assertRaises(NotFoundError):
            self.service.update_agent("owner-b", agent.agent_id, {"name": "Stolen"})
        with self.assertRaises(NotFoundError):
            self.service.delete_agent("owner-b", agent.agent_id)
        with self.assertRaises(NotFoundError):
            await self.service.execute_agent("owner-b", agent.agent_id)
        self.assertEqual(self.service.list_agents("owner-b"), [])

    async def test_execute_and_list_logs(self):
        first = self.service.create_agent("owner-a", name="A")
        second = self.service.create_agent("owner-a", name="B")

        record = await self.service.execute_agent("owner-a", first.agent_id)
        other = await self.service.execute_agent("owner-a", second.agent_id)
        await self.runner.wait(record.execution_id)
        await self.runner.wait(other.execution_id)

        logs = self.service.list_execution_logs("owner-a", first.agent_id)
        self.assertEqual([r.execution_id for r in logs], [record.execution_id])
        self.assertIn(logs[0].status, {"completed", "failed"})
        self.assertEqual(len(logs[0].logs), 3)
        self.assertEqual(self.service.list_execution_logs("owner-b", first.agent_id), [])
        self.assertEqual(self.service.get_execution("owner-a", record.execution_id).execution_id, record.execution_id)
        with self.assertRaises(NotFoundError):
            self.service.get_execution("owner-b", record.execution_id)

        events = self.service.list_execution_events("owner-a", record.execution_id)
        self.assertEqual(events[0].event_type, "execution.started")
        self.assertIn(events[-1].event_type, {"execution.completed", "execution.failed"})
        with self.assertRaises(NotFoundError):
            self.service.list_execution_events("owner-b", record.execution_id)

    async def test_delete_agent_cancels_in_flight_executions(self):
        slow_runner = ExecutionRunner(
            store=self.store,
            scheduler=ExecutionScheduler(max_concurrency=1),
            delay_min_sec=30.0,
            delay_max_sec=30.0,
        )
        service = DashboardService(store=self.store, runner=slow_runner, ingestion=self.ingestion)
        agent = service.create_agent("owner-a", name="Slow")
        record = await service.execute_agent("owner-a", agent.agent_id)

        cancelled = service.delete_agent("owner-a", agent.agent_id)

        self.assertEqual(cancelled, [record.execution_id])
        with self.assertRaises(NotFoundError):
            service.get_agent("owner-a", agent.agent_id)
        history = service.list_execution_logs("owner-a", agent.agent_id)
        self.assertEqual(history[0].error, CANCELLED_ERROR)
        await slow_runner.shutdown()

    # -- providers -----------------------------------------------------

    async def test_provider_models_follow_type(self):
        provider = self.service.create_provider("owner-a", name="Claude", provider_type="anthropic", api_key="sk-ant-x")
        self.assertEqual(provider.models, ["claude-3-sonnet", "claude-3-haiku", "claude-3-opus", "claude-2.1"])
        self.assertTrue(provider.is_active)

        switched = self.service.update_provider("owner-a", provider.provider_id, {"provider_type": "custom"})
        self.assertEqual(switched.models, ["custom-model-1", "custom-model-2"])
        self.assertEqual(self.service.get_provider("owner-a", provider.provider_id).models, switched.models)

    async def test_provider_validation_and_delete(self):
        with self.assertRaises(ValidationError):
            self.service.create_provider("owner-a", name="Bad", provider_type="cohere")
        with self.assertRaises(ValidationError):
            self.service.create_provider("owner-a", name="", provider_type="openai")
        provider = self.service.create_provider("owner-a", name="GPT", provider_type="openai")
        with self.assertRaises(NotFoundError):
            self.service.delete_provider("owner-b", provider.provider_id)
        self.service.delete_provider("owner-a", provider.provider_id)
        with self.assertRaises(NotFoundError):
            self.service.delete_provider("owner-a", provider.provider_id)

    # -- chatbots ------------------------------------------------------

    async def test_chatbot_defaults(self):
        chatbot = self.service.create_chatbot("owner-a", name="Support")

        self.assertEqual(chatbot.status, "active")
        self.assertEqual(chatbot.temperature, 0.7)
        self.assertEqual(chatbot.max_tokens, 1000)
        self.assertEqual(chatbot.welcome_message, "Hello! How can I help you today?")
        self.assertEqual(chatbot.appearance.primary_color, "#3b82f6")
        self.assertTrue(chatbot.appearance.show_avatar)
        self.assertEqual(self.service.get_chatbot("owner-a", chatbot.chatbot_id), chatbot)

    async def test_chatbot_update_merges_appearance(self):
        chatbot = self.service.create_chatbot("owner-a", name="Support", primary_color="#10b981")
        updated = self.service.update_chatbot("owner-a", chatbot.chatbot_id, {"show_avatar": False, "max_tokens": 500})

        self.assertEqual(updated.appearance.primary_color, "#10b981")
        self.assertFalse(updated.appearance.show_avatar)
        self.assertEqual(updated.max_tokens, 500)
        with self.assertRaises(ValidationError):
            self.service.update_chatbot("owner-a", chatbot.chatbot_id, {"max_tokens": 0})
        with self.assertRaises(ValidationError):
            self.service.create_chatbot("owner-a", name="Hot", temperature=3)

    # -- tools ---------------------------------------------------------

    async def test_tool_crud(self):
        tool = self.service.create_tool("owner-a", name="Weather", tool_type="python", code="def f(): pass")
        self.assertEqual(tool.parameters, {})

        updated = self.service.update_tool(
            "owner-a", tool.tool_id, {"parameters": {"city": {"type": "string"}}, "tool_type": "javascript"}
        )
        self.assertEqual(updated.parameters, {"city": {"type": "string"}})
        self.assertEqual(updated.tool_type, "javascript")
        with self.assertRaises(ValidationError):
            self.service.create_tool("owner-a", name="Bad", tool_type="ruby")
        self.service.delete_tool("owner-a", tool.tool_id)
        self.assertEqual(self.service.list_tools("owner-a"), [])

    # -- knowledge -----------------------------------------------------

    async def test_knowledge_create_then_completes(self):
        record = await self.service.create_knowledge_file(
            "owner-a", name="Playbook", knowledge_type="url", url="https://example.com/playbook"
        )
        self.assertEqual((record.status, record.chunks), ("processing", 0))

        await self.ingestion.wait(record.knowledge_id)

        loaded = self.service.get_knowledge_file("owner-a", record.knowledge_id)
        self.assertEqual(loaded.status, "completed")
        self.assertIn(loaded.chunks, range(10, 60))

    async def test_upload_uses_upload_profile(self):
        record = await self.service.upload_knowledge_file("owner-a", filename="notes.md", size=5)
        await self.ingestion.wait(record.knowledge_id)

        loaded = self.service.get_knowledge_file("owner-a", record.knowledge_id)
        self.assertEqual((loaded.knowledge_type, loaded.size), ("file", 5))
        self.assertIn(loaded.chunks, range(20, 120))

    async def test_knowledge_validation_and_delete(self):
        with self.assertRaises(ValidationError):
            await self.service.create_knowledge_file("owner-a", name="x", knowledge_type="video")
        record = await self.service.create_knowledge_file("owner-a", name="FAQ", knowledge_type="file", size=10)
        with self.assertRaises(NotFoundError):
            self.service.delete_knowledge_file("owner-b", record.knowledge_id)
        self.service.delete_knowledge_file("owner-a", record.knowledge_id)
        self.assertEqual(self.service.list_knowledge_files("owner-a"), [])

    # -- lifecycle -----------------------------------------------------

    async def test_startup_seeds_demo_once(self):
        self.service.startup(seed_demo_owner="owner-a")
        self.service.startup(seed_demo_owner="owner-a")

        self.assertEqual(len(self.service.list_agents("owner-a")), 2)
        self.assertEqual(len(self.service.list_execution_logs("owner-a", "agent-1")), 1)
