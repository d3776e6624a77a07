"""Exception taxonomy shared by the orchestration core and the step catalog."""
from __future__ import annotations


class ProvisionError(RuntimeError):
    """Base class for all postinstallctl errors."""


class ConfigurationError(ProvisionError):
    """Raised for invalid step registrations or unusable configuration."""


class IdentityError(ProvisionError):
    """Raised when the target user cannot be resolved."""


class StepFailure(ProvisionError):
    """Raised by a step action when its desired end state was not reached."""


class ValidationFailure(ProvisionError):
    """Raised when a replaced file fails validation and is rolled back."""


__all__ = [
    "ConfigurationError",
    "IdentityError",
    "ProvisionError",
    "StepFailure",
    "ValidationFailure",
]
