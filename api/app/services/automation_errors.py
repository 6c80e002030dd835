"""Error taxonomy for rule validation, integrations, and persistence."""

from __future__ import annotations


class AutomationError(RuntimeError):
    """Base class for engine errors that carry a short, loggable message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RuleValidationError(AutomationError):
    """Rule payload is malformed: unknown type, missing parameter, bad template."""


class IntegrationConfigurationError(AutomationError):
    """A rule references an integration or executor that is not registered."""


class IntegrationError(AutomationError):
    """An external side-effect call failed."""


class PersistenceError(AutomationError):
    """Reading or writing the rule store or execution log failed."""


class RuleNotFoundError(AutomationError):
    """No rule with the given id exists for the requesting owner."""
