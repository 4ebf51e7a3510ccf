"""Exceptions raised across the SOA switcher."""

from __future__ import annotations


class InvalidInput(ValueError):
    """An input row cannot be turned into a mailbox reference."""


class InputSourceError(RuntimeError):
    """The input source cannot be read at all."""


class SetupError(RuntimeError):
    """The run cannot start (backend unreachable, bad credentials)."""


class BackendError(RuntimeError):
    """Base class for failures reported by the mailbox service."""


class ExchangeApiError(BackendError):
    """A non-2xx answer from the Exchange admin API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MailboxNotFound(ExchangeApiError):
    """Get-Mailbox returned nothing for the identity."""

    def __init__(self, identity: str) -> None:
        super().__init__(f"Mailbox '{identity}' was not found", status_code=404)
        self.identity = identity


class RetryExhausted(BackendError):
    """A remote operation failed for good, either fatally or after all attempts."""

    def __init__(self, operation_name: str, attempts: int, last_error: str) -> None:
        super().__init__(
            f"{operation_name} failed after {attempts} attempt(s): {last_error}"
        )
        self.operation_name = operation_name
        self.attempts = attempts
        self.last_error = last_error


class RunCancelled(RuntimeError):
    """The operator cancelled the run while an operation was waiting."""
