"""Per-rule periodic timers for schedule conditions.

Invariants:
- Timers are keyed by (rule_id, condition_index); disarm matches rule ids exactly.
- Cancelling a timer never interrupts an execution it already spawned.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from app.services.automation_errors import RuleValidationError

logger = logging.getLogger("app.services.schedule_service")

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS
DEFAULT_INTERVAL_MS = HOUR_MS

UNIT_MS: dict[str, int] = {
    "minutes": MINUTE_MS,
    "hours": HOUR_MS,
    "days": DAY_MS,
}

FireCallback = Callable[[], Any]
SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class ScheduleKey:
    """Identity of one armed timer."""
    rule_id: str
    condition_index: int


def _split_interval(interval: str) -> tuple[int, str] | None:
    parts = interval.strip().split()
    if len(parts) != 2:
        return None
    value, unit = parts
    try:
        count = int(value)
    except ValueError:
        return None
    if count <= 0 or unit not in UNIT_MS:
        return None
    return count, unit


def is_valid_interval(interval: str) -> bool:
    return _split_interval(interval) is not None


def parse_interval(interval: str) -> int:
    """Convert ``"<count> <unit>"`` to milliseconds.

    Unknown units, non-integer counts, and non-positive counts fall back to one
    hour. Callers that want a hard failure use :func:`require_valid_interval`.
    """
    parsed = _split_interval(interval)
    if parsed is None:
        logger.warning("Unrecognized schedule interval %r; falling back to 1 hour", interval)
        return DEFAULT_INTERVAL_MS
    count, unit = parsed
    return count * UNIT_MS[unit]


def require_valid_interval(interval: str) -> int:
    parsed = _split_interval(interval)
    if parsed is None:
        raise RuleValidationError(f"invalid_schedule_interval:{interval}")
    count, unit = parsed
    return count * UNIT_MS[unit]


class RuleScheduler:
    """Owns one asyncio task per armed (rule, schedule condition) pair."""

    def __init__(self, *, sleep: SleepFunc = asyncio.sleep) -> None:
        self._sleep = sleep
        self._timers: dict[ScheduleKey, asyncio.Task] = {}

    def arm(self, rule_id: Any, condition_index: int, interval: str, fire: FireCallback) -> ScheduleKey:
        """Start a repeating timer; re-arming an existing key replaces it."""
        key = ScheduleKey(str(rule_id), condition_index)
        existing = self._timers.pop(key, None)
        if existing:
            existing.cancel()
        interval_ms = parse_interval(interval)
        task = asyncio.create_task(
            self._run_timer(key, interval_ms / 1000, fire),
            name=f"automation-timer:{key.rule_id}:{key.condition_index}",
        )
        self._timers[key] = task
        logger.info("Armed schedule %s#%s every %sms", key.rule_id, key.condition_index, interval_ms)
        return key

    def disarm(self, rule_id: Any) -> int:
        """Cancel every timer belonging to ``rule_id`` and return how many were cancelled."""
        target = str(rule_id)
        keys = [key for key in self._timers if key.rule_id == target]
        for key in keys:
            self._timers.pop(key).cancel()
        if keys:
            logger.info("Disarmed %s schedule(s) for rule %s", len(keys), target)
        return len(keys)

    def active_keys(self, rule_id: Any | None = None) -> list[ScheduleKey]:
        keys = [key for key, task in self._timers.items() if not task.done()]
        if rule_id is None:
            return keys
        target = str(rule_id)
        return [key for key in keys if key.rule_id == target]

    async def shutdown(self) -> None:
        """Cancel all timers and wait for their tasks to unwind."""
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_timer(self, key: ScheduleKey, interval_seconds: float, fire: FireCallback) -> None:
        while True:
            await self._sleep(interval_seconds)
            try:
                result = fire()
                if asyncio.iscoroutine(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                logger.exception("Schedule callback failed for %s#%s", key.rule_id, key.condition_index)
