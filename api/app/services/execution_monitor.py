"""In-process metrics for rule executions."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Any, DefaultDict

logger = logging.getLogger("app.services.execution_monitor")


@dataclass
class RuleMetrics:
    """Aggregated counters for one rule."""
    started: int = 0
    succeeded: int = 0
    failed: int = 0
    in_flight: int = 0
    last_latency_ms: float | None = None
    last_error: str | None = None
    last_trigger: str | None = None


class ExecutionMonitor:
    """Track execution counts and failures for health reporting."""

    def __init__(self) -> None:
        self._metrics: DefaultDict[str, RuleMetrics] = defaultdict(RuleMetrics)
        self._lock = asyncio.Lock()

    async def record_start(self, rule_id: str, *, trigger: str) -> None:
        async with self._lock:
            metrics = self._metrics[rule_id]
            metrics.started += 1
            metrics.in_flight += 1
            metrics.last_trigger = trigger

    async def record_finish(
        self,
        rule_id: str,
        *,
        succeeded: bool,
        latency_ms: float,
        error: str | None = None,
    ) -> None:
        """Close out an execution and emit a structured log line."""
        async with self._lock:
            metrics = self._metrics[rule_id]
            metrics.in_flight = max(0, metrics.in_flight - 1)
            metrics.last_latency_ms = latency_ms
            if succeeded:
                metrics.succeeded += 1
                metrics.last_error = None
            else:
                metrics.failed += 1
                metrics.last_error = error
            payload = {
                "event": "automation_success" if succeeded else "automation_failure",
                "rule_id": rule_id,
                "trigger": metrics.last_trigger,
                "latency_ms": round(latency_ms, 2),
                "error": error,
            }
        if succeeded:
            logger.info(json.dumps(payload))
        else:
            logger.warning(json.dumps(payload))

    async def snapshot(self) -> dict[str, Any]:
        async with self._lock:
            return {rule_id: asdict(metrics) for rule_id, metrics in self._metrics.items()}

    def forget(self, rule_id: str) -> None:
        self._metrics.pop(rule_id, None)


def summarize(snapshot: dict[str, Any]) -> dict[str, Any]:
    """Condense per-rule metrics into totals and failing rules."""
    totals = {"started": 0, "succeeded": 0, "failed": 0, "in_flight": 0}
    failing: list[dict[str, Any]] = []
    for rule_id, metrics in snapshot.items():
        for key in totals:
            totals[key] += int(metrics.get(key) or 0)
        if metrics.get("last_error"):
            failing.append({"rule_id": rule_id, "error": metrics["last_error"], "failed": metrics.get("failed", 0)})
    return {"totals": totals, "failing_rules": failing}
