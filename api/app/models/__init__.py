from app.models.automation import AutomationLog, AutomationLogStatus, AutomationRule
from app.models.notification import Notification

__all__ = [
    "AutomationLog",
    "AutomationLogStatus",
    "AutomationRule",
    "Notification",
]
"""SQLAlchemy ORM models for the automation engine."""
