from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, List, Optional


AGENT_STATUS_DRAFT = "draft"
AGENT_STATUS_ACTIVE = "active"
AGENT_STATUS_INACTIVE = "inactive"

AGENT_STATUSES: FrozenSet[str] = frozenset([AGENT_STATUS_DRAFT, AGENT_STATUS_ACTIVE, AGENT_STATUS_INACTIVE])


@dataclass(frozen=True)
class AgentRecord:
    agent_id: str
    owner_id: str
    name: str
    description: str
    provider: str
    model: str
    system_prompt: str
    temperature: float
    schedule: str
    status: str
    tools: List[str]
    next_run: Optional[datetime]
    last_run: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    def is_active(self) -> bool:
        return self.status == AGENT_STATUS_ACTIVE
