"""Domain error taxonomy shared by services and the API layer."""

from __future__ import annotations


class DomainError(ValueError):
    """Base class for errors raised by business operations."""


class ValidationFailed(DomainError):
    """Input rejected before any mutation took place."""


class NotFound(DomainError):
    """A referenced record does not exist."""


class Forbidden(DomainError):
    """The caller may not access the requested record."""


class StateConflict(DomainError):
    """The target is in a state that forbids the requested change."""


class ConfigurationError(RuntimeError):
    """Required configuration is missing for the current environment."""


class PaymentGatewayError(RuntimeError):
    """Raised when a payment provider call fails."""

    provider = "gateway"


__all__ = [
    "ConfigurationError",
    "DomainError",
    "Forbidden",
    "NotFound",
    "PaymentGatewayError",
    "StateConflict",
    "ValidationFailed",
]
