from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar
from uuid import UUID

from ..errors import ConflictError, DuplicateInvoiceNumberError

if TYPE_CHECKING:
    from ..repositories import LedgerRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InvoiceNumberAllocator:
    """Hands out sequential invoice numbers without duplicates per user.

    Creation for one user is serialised inside this process, and the
    ``(user_id, invoice_number)`` unique constraint guards against other
    processes. A collision reported by the repository rolls the unit of work
    back and the allocation is retried with a fresh count.
    """

    def __init__(self, max_attempts: int = 5) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def allocate(
        self,
        repository: "LedgerRepository",
        user_id: UUID,
        create: Callable[[str], Awaitable[T]],
    ) -> T:
        """Run ``create(invoice_number)`` in one unit of work with the next free number."""
        lock = self._lock_for(user_id)
        async with lock:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    async with repository.unit_of_work():
                        invoice_number = await repository.next_invoice_number(user_id)
                        return await create(invoice_number)
                except DuplicateInvoiceNumberError:
                    logger.warning(
                        "Invoice number collision for user %s (attempt %d/%d)",
                        user_id,
                        attempt,
                        self.max_attempts,
                    )
        raise ConflictError(
            f"Could not allocate an invoice number for user {user_id}",
            user_message="I couldn't assign an invoice number right now. Please try again.",
        )


default_allocator = InvoiceNumberAllocator()
