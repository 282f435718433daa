from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Optional


KNOWLEDGE_STATUS_PROCESSING = "processing"
KNOWLEDGE_STATUS_COMPLETED = "completed"
KNOWLEDGE_STATUS_FAILED = "failed"

KNOWLEDGE_TYPE_FILE = "file"
KNOWLEDGE_TYPE_URL = "url"

KNOWLEDGE_TYPES: FrozenSet[str] = frozenset([KNOWLEDGE_TYPE_FILE, KNOWLEDGE_TYPE_URL])


@dataclass(frozen=True)
class KnowledgeFileRecord:
    knowledge_id: str
    owner_id: str
    name: str
    knowledge_type: str
    status: str
    chunks: int
    size: Optional[int]
    url: Optional[str]
    created_at: datetime
    updated_at: datetime
