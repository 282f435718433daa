from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, List


CHATBOT_STATUS_DRAFT = "draft"
CHATBOT_STATUS_ACTIVE = "active"
CHATBOT_STATUS_INACTIVE = "inactive"

CHATBOT_STATUSES: FrozenSet[str] = frozenset([CHATBOT_STATUS_DRAFT, CHATBOT_STATUS_ACTIVE, CHATBOT_STATUS_INACTIVE])

DEFAULT_WELCOME_MESSAGE = "Hello! How can I help you today?"
DEFAULT_PRIMARY_COLOR = "#3b82f6"


@dataclass(frozen=True)
class ChatbotAppearance:
    primary_color: str = DEFAULT_PRIMARY_COLOR
    show_avatar: bool = True


@dataclass(frozen=True)
class ChatbotRecord:
    chatbot_id: str
    owner_id: str
    name: str
    description: str
    provider: str
    provider_id: str
    model: str
    system_prompt: str
    temperature: float
    max_tokens: int
    welcome_message: str
    status: str
    created_at: datetime
    updated_at: datetime
    appearance: ChatbotAppearance = field(default_factory=ChatbotAppearance)
    knowledge_base: List[str] = field(default_factory=list)
    tools: List[str] = field(default_factory=list)
