from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, List


PROVIDER_TYPE_OPENAI = "openai"
PROVIDER_TYPE_ANTHROPIC = "anthropic"
PROVIDER_TYPE_CUSTOM = "custom"

PROVIDER_TYPES: FrozenSet[str] = frozenset([PROVIDER_TYPE_OPENAI, PROVIDER_TYPE_ANTHROPIC, PROVIDER_TYPE_CUSTOM])

_MODELS_BY_TYPE: Dict[str, List[str]] = {
    PROVIDER_TYPE_OPENAI: ["gpt-4o", "gpt-4o-mini", "gpt-3.5-turbo", "gpt-4", "gpt-4-turbo"],
    PROVIDER_TYPE_ANTHROPIC: ["claude-3-sonnet", "claude-3-haiku", "claude-3-opus", "claude-2.1"],
    PROVIDER_TYPE_CUSTOM: ["custom-model-1", "custom-model-2"],
}


def models_for_provider_type(provider_type: str) -> List[str]:
    return list(_MODELS_BY_TYPE.get(provider_type, ["default-model"]))


@dataclass(frozen=True)
class ProviderRecord:
    provider_id: str
    owner_id: str
    name: str
    provider_type: str
    api_key: str
    endpoint: str
    is_active: bool
    models: List[str]
    created_at: datetime
    updated_at: datetime
