"""Tests for the custom exception hierarchy."""

import pytest

from chat_importer.exceptions import (
    ChannelConnectionError,
    ChannelError,
    ConfigError,
    ImporterError,
    InvalidTransitionError,
    JobDeliveryError,
    LedgerError,
    PlanError,
    PlanNotFoundError,
    PlanValidationError,
    PlanVersionError,
    RateCeilingReached,
)
from chat_importer.types import JobStatus

EXCEPTION_CLASSES = [
    ConfigError,
    PlanNotFoundError,
    PlanValidationError,
    PlanVersionError,
    LedgerError,
    JobDeliveryError,
    ChannelConnectionError,
]


class TestExceptionHierarchy:
    """Tests for exception types, inheritance and exit codes."""

    @pytest.mark.parametrize("exc_class", EXCEPTION_CLASSES)
    def test_each_exception_is_caught_by_importer_error(self, exc_class) -> None:
        with pytest.raises(ImporterError):
            raise exc_class("caught by base")

    @pytest.mark.parametrize(
        "exc_class",
        [PlanNotFoundError, PlanValidationError, PlanVersionError],
    )
    def test_plan_errors_share_base(self, exc_class) -> None:
        assert issubclass(exc_class, PlanError)

    def test_channel_errors_share_base(self) -> None:
        assert issubclass(JobDeliveryError, ChannelError)
        assert issubclass(ChannelConnectionError, ChannelError)

    @pytest.mark.parametrize(
        "exc,code",
        [
            (ImporterError("x"), 1),
            (PlanNotFoundError("x"), 10),
            (PlanValidationError("x"), 11),
            (PlanVersionError("x"), 11),
            (LedgerError("x"), 12),
            (ChannelConnectionError("x"), 13),
            (RateCeilingReached(100), 14),
            (InvalidTransitionError(JobStatus.SENT, JobStatus.PROCESSING), 15),
            (ConfigError("x"), 16),
        ],
    )
    def test_exit_codes(self, exc, code) -> None:
        assert exc.exit_code == code


class TestMessages:
    def test_invalid_transition_message(self) -> None:
        exc = InvalidTransitionError(JobStatus.SENT, JobStatus.PROCESSING)
        assert str(exc) == "Invalid job status transition from sent to processing"

    def test_rate_ceiling_message_with_retry_after(self) -> None:
        exc = RateCeilingReached(1000, retry_after=7200)
        assert "1000" in str(exc)
        assert "2.0 hours" in str(exc)

    def test_rate_ceiling_message_without_retry_after(self) -> None:
        assert str(RateCeilingReached(5)) == "Daily ceiling of 5 attempts reached"
