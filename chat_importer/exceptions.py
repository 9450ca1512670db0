"""Custom exception hierarchy for the chat import executor."""

from __future__ import annotations


class ImporterError(Exception):
    """Base exception for all import-related errors."""

    exit_code = 1


class ConfigError(ImporterError):
    """Raised when configuration is invalid or missing."""

    exit_code = 16


class PlanError(ImporterError):
    """Raised when the transfer plan cannot be used."""

    exit_code = 11


class PlanNotFoundError(PlanError):
    """Raised when the plan directory or its plan file does not exist."""

    exit_code = 10


class PlanVersionError(PlanError):
    """Raised when the plan declares a version this executor does not understand."""


class PlanValidationError(PlanError):
    """Raised when the plan is malformed or its counts do not reconcile."""


class LedgerError(ImporterError):
    """Raised when the progress log or summary is unreadable or inconsistent."""

    exit_code = 12


class InvalidTransitionError(ImporterError):
    """Raised when a job or run is moved through a transition it does not allow."""

    exit_code = 15

    def __init__(self, current: object, target: object, subject: str = "job") -> None:
        self.current = current
        self.target = target
        self.subject = subject
        super().__init__(
            f"Invalid {subject} status transition from "
            f"{getattr(current, 'value', current)} to {getattr(target, 'value', target)}"
        )


class ChannelError(ImporterError):
    """Base class for errors reported by a channel adapter."""


class JobDeliveryError(ChannelError):
    """A single message was rejected; the run continues with the next job."""


class ChannelConnectionError(ChannelError):
    """The channel is no longer reachable; the run stops and can be resumed later."""

    exit_code = 13


class RateCeilingReached(ImporterError):
    """The rolling daily send ceiling has been reached."""

    exit_code = 14

    def __init__(self, ceiling: int, retry_after: float | None = None) -> None:
        self.ceiling = ceiling
        self.retry_after = retry_after
        message = f"Daily ceiling of {ceiling} attempts reached"
        if retry_after is not None:
            message += f"; window frees up in {retry_after / 3600:.1f} hours"
        super().__init__(message)
