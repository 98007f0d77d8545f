from __future__ import annotations

from typing import Any


class BillingCoreError(Exception):
    """Base exception for all billing-core errors.

    Attributes:
        code: Optional machine-readable error code (e.g. ``"NO_PROVIDERS"``).
        details: Arbitrary key/value context about the error.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}

    @property
    def is_retryable(self) -> bool:
        """Whether the operation that raised this error can be retried."""
        return False


class ConfigurationError(BillingCoreError): ...


class StorageError(BillingCoreError): ...


class RecordNotFoundError(BillingCoreError): ...


class NoProvidersAvailableError(BillingCoreError):
    """No active provider can serve the requested service type."""


class NoApplicableRuleError(BillingCoreError):
    """A required base price (provider cost or plan component) is absent.

    Never defaulted to zero: charging nothing for a priced service is a
    revenue-safety violation.
    """


class NegativeBalanceError(BillingCoreError):
    """A credit mutation would drive a balance below zero."""


class InvalidTransitionError(BillingCoreError):
    """A workflow record is not in a state that allows the requested move."""


class ConcurrentModificationError(BillingCoreError):
    """An optimistic-lock check failed on commit.

    Always retryable: the caller re-reads and re-applies the whole
    operation.
    """

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return True


# ---------------------------------------------------------------------------
# Warnings
# ---------------------------------------------------------------------------


class ConfigurationWarning(UserWarning):
    """Non-fatal catalog problem detected during resolution.

    The resolver has already applied a fail-closed fallback (e.g. the base
    component price instead of a malformed tier) when this is emitted.
    """
