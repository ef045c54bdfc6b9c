from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol
from uuid import UUID

from ..models import Channel, Client, Expense, Invoice, InvoiceItem, InvoiceStatus, Payment, User


class LedgerRepository(Protocol):
    """Persistence operations the core needs; every query is scoped by owner."""

    def unit_of_work(self) -> AbstractAsyncContextManager[None]:
        """Commit everything written inside the block, or roll it all back on error."""
        ...

    async def rollback(self) -> None:
        """Discard the current transaction so the next call starts clean."""
        ...

    async def get_user(self, user_id: UUID) -> Optional[User]: ...

    async def get_or_create_channel_user(
        self, channel: Channel, handle: str, display_name: Optional[str] = None
    ) -> User: ...

    async def create_or_get_client(self, user_id: UUID, name: str) -> Client: ...

    async def next_invoice_number(self, user_id: UUID) -> str: ...

    async def create_invoice(
        self,
        *,
        user_id: UUID,
        client_id: UUID,
        invoice_number: str,
        currency: str,
        vat_included: bool,
        vat_rate: Decimal,
        due_date: datetime,
        notes: Optional[str] = None,
    ) -> Invoice:
        """Raises ``DuplicateInvoiceNumberError`` when the number is already taken."""
        ...

    async def create_invoice_item(
        self,
        *,
        invoice_id: UUID,
        description: str,
        quantity: int,
        unit_price: Decimal,
    ) -> InvoiceItem: ...

    async def get_invoice(self, invoice_id: UUID, user_id: UUID) -> Optional[Invoice]: ...

    async def find_invoice_by_number(self, user_id: UUID, invoice_number: str) -> Optional[Invoice]: ...

    async def list_invoices(
        self,
        user_id: UUID,
        *,
        statuses: Optional[Sequence[InvoiceStatus]] = None,
        limit: int = 20,
    ) -> Sequence[Invoice]: ...

    async def update_invoice_status(
        self,
        invoice_id: UUID,
        user_id: UUID,
        status: InvoiceStatus,
        paid_at: Optional[datetime] = None,
    ) -> None:
        """Raises ``InvoiceAlreadyPaidError`` when asked to mark an already paid invoice paid."""
        ...

    async def create_payment(
        self,
        *,
        invoice_id: UUID,
        amount: Decimal,
        method: str,
        paid_at: datetime,
        reference: Optional[str] = None,
    ) -> Payment: ...

    async def create_expense(
        self,
        *,
        user_id: UUID,
        description: str,
        amount: Decimal,
        currency: str,
        category: Optional[str],
        date: datetime,
        vat_amount: Decimal,
    ) -> Expense: ...

    async def query_invoices_paid_in_range(
        self, user_id: UUID, start: datetime, end: datetime
    ) -> Sequence[Invoice]: ...

    async def query_expenses_in_range(
        self, user_id: UUID, start: datetime, end: datetime
    ) -> Sequence[Expense]: ...
