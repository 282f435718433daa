import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)

DB_PATH_KEY = "DASHBOARD_DB_PATH"
API_KEYS_KEY = "DASHBOARD_API_KEYS"
DELAY_MIN_KEY = "EXECUTION_DELAY_MIN_SEC"
DELAY_MAX_KEY = "EXECUTION_DELAY_MAX_SEC"
SUCCESS_RATE_KEY = "EXECUTION_SUCCESS_RATE"
MAX_CONCURRENCY_KEY = "EXECUTION_MAX_CONCURRENCY"
TIMEOUT_KEY = "EXECUTION_TIMEOUT_SEC"
MAX_ATTEMPTS_KEY = "EXECUTION_MAX_ATTEMPTS"
RETRY_BACKOFF_KEY = "EXECUTION_RETRY_BACKOFF_SEC"
SCHEDULE_MODE_KEY = "SCHEDULE_MODE"
SEED_DEMO_KEY = "SEED_DEMO_DATA"
LOG_LEVEL_KEY = "LOG_LEVEL"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

SCHEDULE_MODE_PRESETS = "presets"
SCHEDULE_MODE_CRON = "cron"

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "agent-dashboard"


@dataclass
class Settings:
    config_dir: Path
    db_path: Path
    api_keys: Dict[str, str]
    execution_delay_min_sec: float = 2.0
    execution_delay_max_sec: float = 7.0
    execution_success_rate: float = 0.9
    execution_max_concurrency: int = 4
    execution_timeout_sec: float = 0.0
    execution_max_attempts: int = 1
    execution_retry_backoff_sec: float = 1.0
    schedule_mode: str = SCHEDULE_MODE_PRESETS
    seed_demo_data: bool = False
    log_level: str = "INFO"


def load_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    if not path.exists():
        return data
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            data[k.strip()] = v.strip()
    except OSError as exc:
        logger.warning("failed to read env file path=%s error=%s", path, exc)
    return data


def get_env_path(config_dir: Path) -> Path:
    return config_dir / ".env"


def get_env_value(key: str, env_file: Mapping[str, str]) -> Optional[str]:
    return os.environ.get(key) or env_file.get(key)


def parse_api_keys(raw: Optional[str]) -> Dict[str, str]:
    """Parse ``token:owner;token2:owner2`` into a token -> owner mapping."""
    out: Dict[str, str] = {}
    for chunk in (raw or "").split(";"):
        value = chunk.strip()
        if not value:
            continue
        parts = value.split(":", 1)
        if len(parts) != 2:
            continue
        token = parts[0].strip()
        owner = parts[1].strip()
        if not token or not owner:
            continue
        out[token] = owner
    return out


def _read_float(raw: Optional[str], default: float, minimum: float, maximum: float) -> float:
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("invalid float setting value=%r, using default=%s", raw, default)
        return default
    return max(minimum, min(value, maximum))


def _read_int(raw: Optional[str], default: int, minimum: int, maximum: int) -> int:
    if raw is None or not str(raw).strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("invalid int setting value=%r, using default=%s", raw, default)
        return default
    return max(minimum, min(value, maximum))


def _flag_enabled(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def load_settings(config_dir: Optional[Path] = None, env_file: Optional[Mapping[str, str]] = None) -> Settings:
    resolved_dir = (config_dir or DEFAULT_CONFIG_DIR).expanduser().resolve()
    values = dict(env_file) if env_file is not None else load_env_file(get_env_path(resolved_dir))

    raw_db_path = get_env_value(DB_PATH_KEY, values)
    db_path = Path(raw_db_path).expanduser() if raw_db_path else resolved_dir / "dashboard.db"

    delay_min = _read_float(get_env_value(DELAY_MIN_KEY, values), 2.0, 0.0, 3600.0)
    delay_max = _read_float(get_env_value(DELAY_MAX_KEY, values), 7.0, 0.0, 3600.0)
    if delay_max < delay_min:
        delay_max = delay_min

    schedule_mode = (get_env_value(SCHEDULE_MODE_KEY, values) or SCHEDULE_MODE_PRESETS).strip().lower()
    if schedule_mode not in {SCHEDULE_MODE_PRESETS, SCHEDULE_MODE_CRON}:
        logger.warning("unknown schedule mode=%r, using %s", schedule_mode, SCHEDULE_MODE_PRESETS)
        schedule_mode = SCHEDULE_MODE_PRESETS

    log_level = (get_env_value(LOG_LEVEL_KEY, values) or "INFO").strip().upper()
    if log_level not in LOG_LEVELS:
        logger.warning("unknown log level=%r, using INFO", log_level)
        log_level = "INFO"

    return Settings(
        config_dir=resolved_dir,
        db_path=db_path,
        api_keys=parse_api_keys(get_env_value(API_KEYS_KEY, values)),
        execution_delay_min_sec=delay_min,
        execution_delay_max_sec=delay_max,
        execution_success_rate=_read_float(get_env_value(SUCCESS_RATE_KEY, values), 0.9, 0.0, 1.0),
        execution_max_concurrency=_read_int(get_env_value(MAX_CONCURRENCY_KEY, values), 4, 1, 256),
        execution_timeout_sec=_read_float(get_env_value(TIMEOUT_KEY, values), 0.0, 0.0, 3600.0),
        execution_max_attempts=_read_int(get_env_value(MAX_ATTEMPTS_KEY, values), 1, 1, 10),
        execution_retry_backoff_sec=_read_float(get_env_value(RETRY_BACKOFF_KEY, values), 1.0, 0.0, 300.0),
        schedule_mode=schedule_mode,
        seed_demo_data=_flag_enabled(get_env_value(SEED_DEMO_KEY, values)),
        log_level=log_level,
    )
