from . import (
    automation_engine,
    automation_service,
    event_matcher,
    rule_engine,
    rule_store,
    schedule_service,
    template_service,
)

__all__ = [
    "automation_engine",
    "automation_service",
    "event_matcher",
    "rule_engine",
    "rule_store",
    "schedule_service",
    "template_service",
]
"""Automation engine services."""
