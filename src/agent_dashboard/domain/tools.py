from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet


TOOL_TYPE_PYTHON = "python"
TOOL_TYPE_JAVASCRIPT = "javascript"
TOOL_TYPE_OPENAPI = "openapi"

TOOL_TYPES: FrozenSet[str] = frozenset([TOOL_TYPE_PYTHON, TOOL_TYPE_JAVASCRIPT, TOOL_TYPE_OPENAPI])


@dataclass(frozen=True)
class CustomToolRecord:
    tool_id: str
    owner_id: str
    name: str
    description: str
    tool_type: str
    code: str
    openapi_spec: str
    created_at: datetime
    updated_at: datetime
    # JSON-schema-ish parameter descriptors keyed by parameter name.
    parameters: Dict[str, Any] = field(default_factory=dict)
