from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from agent_dashboard.config import SCHEDULE_MODE_CRON, SCHEDULE_MODE_PRESETS


SCHEDULE_DAILY_9AM = "0 9 * * *"
SCHEDULE_EVERY_15_MINUTES = "*/15 * * * *"
SCHEDULE_WEEKLY_MONDAY_9AM = "0 9 * * 1"
SCHEDULE_MONTHLY_FIRST_9AM = "0 9 1 * *"


def _at_nine(dt: datetime) -> datetime:
    return dt.replace(hour=9, minute=0, second=0, microsecond=0)


def _daily_9am(now: datetime) -> datetime:
    return _at_nine(now + timedelta(days=1))


def _every_15_minutes(now: datetime) -> datetime:
    return now + timedelta(minutes=15)


def _weekly_monday_9am(now: datetime) -> datetime:
    # Always 1..7 days ahead, so a Monday morning call lands on next Monday.
    days_until_monday = (7 - now.weekday()) % 7 or 7
    return _at_nine(now + timedelta(days=days_until_monday))


def _monthly_first_9am(now: datetime) -> datetime:
    if now.month == 12:
        return _at_nine(now.replace(year=now.year + 1, month=1, day=1))
    return _at_nine(now.replace(month=now.month + 1, day=1))


PRESET_SCHEDULES: Dict[str, Callable[[datetime], datetime]] = {
    SCHEDULE_DAILY_9AM: _daily_9am,
    SCHEDULE_EVERY_15_MINUTES: _every_15_minutes,
    SCHEDULE_WEEKLY_MONDAY_9AM: _weekly_monday_9am,
    SCHEDULE_MONTHLY_FIRST_9AM: _monthly_first_9am,
}


def resolve_preset(descriptor: str, now: datetime) -> Optional[datetime]:
    handler = PRESET_SCHEDULES.get(str(descriptor or "").strip())
    if handler is None:
        return None
    return handler(now)


def cron_next_run(cron_expr: str, after: datetime) -> datetime:
    fields = str(cron_expr or "").strip().split()
    if len(fields) != 5:
        raise ValueError("cron expression must contain 5 fields")
    m_field, h_field, dom_field, mon_field, dow_field = fields
    for field_value, lo, hi in (
        (m_field, 0, 59),
        (h_field, 0, 23),
        (dom_field, 1, 31),
        (mon_field, 1, 12),
        (dow_field, 0, 7),
    ):
        if not _cron_field_valid(field_value, lo, hi):
            raise ValueError(f"invalid cron field: {field_value!r}")
    cursor = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    for _ in range(0, 366 * 24 * 60):
        if (
            _cron_match(m_field, cursor.minute, 0, 59)
            and _cron_match(h_field, cursor.hour, 0, 23)
            and _cron_match(dom_field, cursor.day, 1, 31)
            and _cron_match(mon_field, cursor.month, 1, 12)
            and _cron_dow_match(dow_field, cursor)
        ):
            return cursor
        cursor += timedelta(minutes=1)
    raise ValueError("Could not compute next cron run within one year")


class ScheduleResolver:
    """Map a schedule descriptor to the next wall-clock run time.

    In ``presets`` mode only the literal descriptors of ``PRESET_SCHEDULES``
    resolve; everything else yields ``None``. In ``cron`` mode descriptors
    outside the table go through the five-field evaluator instead.
    """

    def __init__(self, mode: str = SCHEDULE_MODE_PRESETS, clock: Optional[Callable[[], datetime]] = None):
        if mode not in {SCHEDULE_MODE_PRESETS, SCHEDULE_MODE_CRON}:
            raise ValueError(f"Unsupported schedule mode: {mode}")
        self._mode = mode
        self._clock = clock or _local_now

    @property
    def mode(self) -> str:
        return self._mode

    def next_run(self, descriptor: str, now: Optional[datetime] = None) -> Optional[datetime]:
        base = now or self._clock()
        preset = resolve_preset(descriptor, base)
        if preset is not None:
            return preset
        if self._mode != SCHEDULE_MODE_CRON:
            return None
        try:
            return cron_next_run(descriptor, base)
        except ValueError:
            return None

    def is_supported(self, descriptor: str) -> bool:
        return self.next_run(descriptor) is not None


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _cron_dow_match(field: str, cursor: datetime) -> bool:
    # cron counts Sunday as 0 (and 7); datetime.weekday() counts Monday as 0.
    cron_dow = (cursor.weekday() + 1) % 7
    return _cron_match(field, cron_dow, 0, 7) or (cron_dow == 0 and _cron_match(field, 7, 0, 7))


def _cron_field_valid(field: str, min_value: int, max_value: int) -> bool:
    token = str(field or "").strip()
    if not token:
        return False
    if token == "*":
        return True
    if token.startswith("*/"):
        return token[2:].isdigit() and int(token[2:]) > 0
    for part in token.split(","):
        if "-" in part:
            start_s, _, end_s = part.partition("-")
            if not (start_s.isdigit() and end_s.isdigit()):
                return False
            if not (min_value <= int(start_s) <= int(end_s) <= max_value):
                return False
            continue
        if not part.isdigit() or not (min_value <= int(part) <= max_value):
            return False
    return True


def _cron_match(field: str, value: int, min_value: int, max_value: int) -> bool:
    token = str(field or "*").strip()
    if token == "*":
        return True
    if token.startswith("*/"):
        try:
            step = int(token[2:])
        except ValueError:
            return False
        return step > 0 and (value - min_value) % step == 0
    if "," in token:
        return any(_cron_match(part, value, min_value, max_value) for part in token.split(","))
    if "-" in token:
        start_s, end_s = token.split("-", 1)
        try:
            start, end = int(start_s), int(end_s)
        except ValueError:
            return False
        return start <= value <= end
    try:
        exact = int(token)
    except ValueError:
        return False
    return min_value <= exact <= max_value and exact == value
