from __future__ import annotations

import asyncio

import httpx
from sqlalchemy.exc import DBAPIError, OperationalError


class LedgerError(Exception):
    """Base class for failures that carry a message safe to show to the end user."""

    user_message = "Sorry, something went wrong. Please try again."

    def __init__(self, detail: str | None = None, *, user_message: str | None = None) -> None:
        super().__init__(detail or user_message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class ValidationFailed(LedgerError):
    """Raised when operation parameters are missing or malformed."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail, user_message=detail)


class NotFoundError(LedgerError):
    """Raised when a referenced user, invoice or client does not exist for the owner."""

    user_message = "I couldn't find that record."


class ConflictError(LedgerError):
    """Raised when an operation clashes with the current state of a record."""

    user_message = "That change conflicts with the current state of the record."


class InvoiceAlreadyPaidError(ConflictError):
    user_message = "That invoice has already been marked as paid."


class DuplicateInvoiceNumberError(ConflictError):
    """Raised by the repository when an invoice number is already taken for the user."""


class TransientError(LedgerError):
    """Raised for infrastructure failures that may succeed when retried."""

    user_message = "The service is temporarily unavailable. Please try again in a moment."


_TRANSIENT_MARKERS = ("timeout", "timed out", "network", "connection", "rate limit", "temporarily")


def is_retriable(exc: BaseException) -> bool:
    """Classify an exception raised by a step as transient (retry) or fatal (stop)."""
    if isinstance(exc, TransientError):
        return True
    if isinstance(exc, LedgerError):
        return False
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)
