import json
from datetime import datetime, timezone
from logging import Logger
from typing import Any, Dict

from agent_dashboard.util import redact


def log_json(logger: Logger, event: str, **fields: Any) -> None:
    payload: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
    }
    payload.update(fields)
    logger.info(redact(json.dumps(payload, ensure_ascii=True, sort_keys=True, default=str)))
