"""Demo workspace inserted into an empty database with ``--seed-demo``."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List

from agent_dashboard.domain.agents import AGENT_STATUS_ACTIVE, AgentRecord
from agent_dashboard.domain.chatbots import ChatbotAppearance, ChatbotRecord
from agent_dashboard.domain.executions import (
    EXECUTION_STATUS_COMPLETED,
    LOG_LEVEL_INFO,
    LOG_LEVEL_SUCCESS,
    LOG_LEVEL_WARNING,
    ExecutionRecord,
    LogEntry,
)
from agent_dashboard.domain.knowledge import (
    KNOWLEDGE_STATUS_COMPLETED,
    KNOWLEDGE_TYPE_FILE,
    KNOWLEDGE_TYPE_URL,
    KnowledgeFileRecord,
)
from agent_dashboard.domain.providers import (
    PROVIDER_TYPE_ANTHROPIC,
    PROVIDER_TYPE_OPENAI,
    ProviderRecord,
    models_for_provider_type,
)
from agent_dashboard.domain.tools import TOOL_TYPE_JAVASCRIPT, TOOL_TYPE_PYTHON, CustomToolRecord
from agent_dashboard.domain.users import UserRecord

DEMO_OWNER_ID = "user-1"
_AVATAR = "/placeholder.svg?height=32&width=32"

_WEATHER_CODE = '''def get_weather(city: str) -> dict:
    """Get current weather information for a given city."""
    return {"city": city, "temperature": "22C", "condition": "Sunny", "humidity": "45%"}
'''

_EMAIL_CODE = """async function sendEmail(to, subject, body) {
    return { success: true, messageId: 'msg_' + Date.now(), sentAt: new Date().toISOString() };
}
"""

_ANALYZER_CODE = '''def analyze_data(data: list) -> dict:
    """Analyze a dataset and return key insights."""
    if not data:
        return {"error": "No data provided"}
    return {"total_records": len(data), "columns": sorted(data[0].keys())}
'''


@dataclass
class DemoData:
    users: List[UserRecord] = field(default_factory=list)
    providers: List[ProviderRecord] = field(default_factory=list)
    chatbots: List[ChatbotRecord] = field(default_factory=list)
    agents: List[AgentRecord] = field(default_factory=list)
    tools: List[CustomToolRecord] = field(default_factory=list)
    knowledge_files: List[KnowledgeFileRecord] = field(default_factory=list)
    executions: List[ExecutionRecord] = field(default_factory=list)


def build_demo_data(owner_id: str, now: datetime) -> DemoData:
    def days_ago(n: int) -> datetime:
        return now - timedelta(days=n)

    data = DemoData()
    data.users = [
        UserRecord(owner_id, "Demo User", "demo@neural.ai", _AVATAR, now, now),
        UserRecord("user-2", "Admin User", "admin@neural.ai", _AVATAR, now, now),
    ]
    if owner_id == "user-2":
        data.users = data.users[1:]

    data.providers = [
        ProviderRecord(
            provider_id="provider-1",
            owner_id=owner_id,
            name="OpenAI GPT-4",
            provider_type=PROVIDER_TYPE_OPENAI,
            api_key="sk-demo-key-12345",
            endpoint="",
            is_active=True,
            models=models_for_provider_type(PROVIDER_TYPE_OPENAI),
            created_at=days_ago(7),
            updated_at=now,
        ),
        ProviderRecord(
            provider_id="provider-2",
            owner_id=owner_id,
            name="Anthropic Claude",
            provider_type=PROVIDER_TYPE_ANTHROPIC,
            api_key="sk-ant-demo-key-67890",
            endpoint="",
            is_active=True,
            models=models_for_provider_type(PROVIDER_TYPE_ANTHROPIC),
            created_at=days_ago(5),
            updated_at=now,
        ),
    ]

    data.chatbots = [
        ChatbotRecord(
            chatbot_id="chatbot-1",
            owner_id=owner_id,
            name="Customer Support Bot",
            description="AI-powered customer support assistant that helps users with common questions and issues",
            provider="OpenAI GPT-4",
            provider_id="provider-1",
            model="gpt-4o",
            system_prompt=(
                "You are a helpful customer support assistant. Be friendly, professional, and provide accurate "
                "information. If you don't know something, politely admit it and offer to escalate to a human agent."
            ),
            temperature=0.7,
            max_tokens=1000,
            welcome_message=(
                "Hello! I'm here to help you with any questions or issues you might have. "
                "How can I assist you today?"
            ),
            status="active",
            created_at=days_ago(3),
            updated_at=now,
            appearance=ChatbotAppearance(primary_color="#3b82f6", show_avatar=True),
            knowledge_base=["knowledge-1", "knowledge-2"],
            tools=["tool-1"],
        ),
        ChatbotRecord(
            chatbot_id="chatbot-2",
            owner_id=owner_id,
            name="Sales Assistant",
            description="AI sales assistant that helps qualify leads and provides product information",
            provider="Anthropic Claude",
            provider_id="provider-2",
            model="claude-3-sonnet",
            system_prompt=(
                "You are a knowledgeable sales assistant. Help potential customers understand our products and "
                "services. Be persuasive but not pushy."
            ),
            temperature=0.8,
            max_tokens=1200,
            welcome_message=(
                "Welcome! I'm here to help you find the perfect solution for your needs. What brings you here today?"
            ),
            status="active",
            created_at=days_ago(1),
            updated_at=now,
            appearance=ChatbotAppearance(primary_color="#10b981", show_avatar=True),
            knowledge_base=["knowledge-3"],
            tools=[],
        ),
    ]

    data.agents = [
        AgentRecord(
            agent_id="agent-1",
            owner_id=owner_id,
            name="Daily Report Generator",
            description="Automatically generates daily analytics reports and sends them to stakeholders",
            provider="OpenAI GPT-4",
            model="gpt-4o",
            system_prompt=(
                "You are an AI agent responsible for generating comprehensive daily reports. Analyze the provided "
                "data, identify key trends and insights, and create professional reports."
            ),
            temperature=0.3,
            schedule="0 9 * * *",
            status=AGENT_STATUS_ACTIVE,
            tools=["tool-2", "tool-3"],
            next_run=now + timedelta(hours=12),
            last_run=now - timedelta(hours=12),
            created_at=days_ago(5),
            updated_at=now,
        ),
        AgentRecord(
            agent_id="agent-2",
            owner_id=owner_id,
            name="Content Moderator",
            description="Monitors user-generated content and flags inappropriate material",
            provider="Anthropic Claude",
            model="claude-3-haiku",
            system_prompt=(
                "You are a content moderation agent. Review submitted content for policy violations and flag "
                "concerning content with brief explanations."
            ),
            temperature=0.2,
            schedule="*/15 * * * *",
            status=AGENT_STATUS_ACTIVE,
            tools=["tool-1"],
            next_run=now + timedelta(minutes=8),
            last_run=now - timedelta(minutes=7),
            created_at=days_ago(2),
            updated_at=now,
        ),
    ]

    data.tools = [
        CustomToolRecord(
            tool_id="tool-1",
            owner_id=owner_id,
            name="Weather Checker",
            description="Get current weather information for any city worldwide",
            tool_type=TOOL_TYPE_PYTHON,
            code=_WEATHER_CODE,
            openapi_spec="",
            created_at=days_ago(4),
            updated_at=now,
            parameters={
                "city": {"type": "string", "description": "The name of the city to get weather for", "required": True}
            },
        ),
        CustomToolRecord(
            tool_id="tool-2",
            owner_id=owner_id,
            name="Email Sender",
            description="Send emails with custom content and attachments",
            tool_type=TOOL_TYPE_JAVASCRIPT,
            code=_EMAIL_CODE,
            openapi_spec="",
            created_at=days_ago(3),
            updated_at=now,
            parameters={
                "to": {"type": "string", "description": "Recipient email address", "required": True},
                "subject": {"type": "string", "description": "Email subject line", "required": True},
                "body": {"type": "string", "description": "Email body content", "required": True},
            },
        ),
        CustomToolRecord(
            tool_id="tool-3",
            owner_id=owner_id,
            name="Data Analyzer",
            description="Analyze datasets and generate insights",
            tool_type=TOOL_TYPE_PYTHON,
            code=_ANALYZER_CODE,
            openapi_spec="",
            created_at=days_ago(2),
            updated_at=now,
            parameters={
                "data": {"type": "array", "description": "Dataset to analyze (array of objects)", "required": True}
            },
        ),
    ]

    data.knowledge_files = [
        KnowledgeFileRecord(
            knowledge_id="knowledge-1",
            owner_id=owner_id,
            name="Company FAQ.pdf",
            knowledge_type=KNOWLEDGE_TYPE_FILE,
            status=KNOWLEDGE_STATUS_COMPLETED,
            chunks=45,
            size=2048576,
            url=None,
            created_at=days_ago(6),
            updated_at=days_ago(6),
        ),
        KnowledgeFileRecord(
            knowledge_id="knowledge-2",
            owner_id=owner_id,
            name="Product Documentation.md",
            knowledge_type=KNOWLEDGE_TYPE_FILE,
            status=KNOWLEDGE_STATUS_COMPLETED,
            chunks=78,
            size=1572864,
            url=None,
            created_at=days_ago(4),
            updated_at=days_ago(4),
        ),
        KnowledgeFileRecord(
            knowledge_id="knowledge-3",
            owner_id=owner_id,
            name="Sales Playbook",
            knowledge_type=KNOWLEDGE_TYPE_URL,
            status=KNOWLEDGE_STATUS_COMPLETED,
            chunks=32,
            size=None,
            url="https://example.com/sales-playbook",
            created_at=days_ago(3),
            updated_at=days_ago(3),
        ),
    ]

    report_start = now - timedelta(hours=2)
    moderation_start = now - timedelta(minutes=30)
    data.executions = [
        ExecutionRecord(
            record_id="log-1",
            execution_id="exec-1",
            owner_id=owner_id,
            agent_id="agent-1",
            agent_name="Daily Report Generator",
            status=EXECUTION_STATUS_COMPLETED,
            start_time=report_start,
            end_time=report_start + timedelta(seconds=45),
            duration_ms=45000,
            output={
                "reportGenerated": True,
                "recordsProcessed": 1247,
                "recipientsSent": 5,
                "reportUrl": "https://reports.neural.ai/daily-2024-01-15.pdf",
            },
            error=None,
            logs=[
                LogEntry(report_start, LOG_LEVEL_INFO, "Agent execution started"),
                LogEntry(report_start + timedelta(seconds=10), LOG_LEVEL_INFO, "Fetching analytics data from database"),
                LogEntry(report_start + timedelta(seconds=30), LOG_LEVEL_INFO, "Processing 1,247 conversation records"),
                LogEntry(
                    report_start + timedelta(seconds=45), LOG_LEVEL_SUCCESS, "Daily report generated and sent successfully"
                ),
            ],
        ),
        ExecutionRecord(
            record_id="log-2",
            execution_id="exec-2",
            owner_id=owner_id,
            agent_id="agent-2",
            agent_name="Content Moderator",
            status=EXECUTION_STATUS_COMPLETED,
            start_time=moderation_start,
            end_time=moderation_start + timedelta(seconds=8),
            duration_ms=8000,
            output={"submissionsScanned": 23, "approved": 21, "flagged": 2, "rejected": 0},
            error=None,
            logs=[
                LogEntry(moderation_start, LOG_LEVEL_INFO, "Content moderation cycle started"),
                LogEntry(moderation_start + timedelta(seconds=3), LOG_LEVEL_INFO, "Scanning 23 new submissions"),
                LogEntry(
                    moderation_start + timedelta(seconds=6), LOG_LEVEL_WARNING, "Flagged 2 submissions for manual review"
                ),
                LogEntry(moderation_start + timedelta(seconds=8), LOG_LEVEL_SUCCESS, "Content moderation completed"),
            ],
        ),
    ]
    return data
