"""In-memory stand-ins for the repository and the language model used across tests."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from equiledger.errors import DuplicateInvoiceNumberError, InvoiceAlreadyPaidError, NotFoundError
from equiledger.models import Channel, InvoiceStatus
from equiledger.services import calculator

FIXED_NOW = datetime(2026, 3, 15, 10, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


class ExpiredInstanceError(RuntimeError):
    """Stands in for the lazy-load failure of an expired ORM instance on an async session."""


@dataclass
class FakeUser:
    id: UUID = field(default_factory=uuid4)
    name: str = "Thandi"
    currency: str = "ZAR"
    default_vat_rate: Decimal = Decimal("0.15")
    telegram_id: Optional[str] = None
    whatsapp_number: Optional[str] = None
    email: Optional[str] = None
    expired: bool = field(default=False, repr=False, compare=False)

    def __getattribute__(self, name: str) -> Any:
        if name != "expired" and not name.startswith("__") and object.__getattribute__(self, "expired"):
            raise ExpiredInstanceError(f"{name!r} read from an expired user outside the session")
        return object.__getattribute__(self, name)


@dataclass
class FakeClient:
    user_id: UUID
    name: str
    id: UUID = field(default_factory=uuid4)


@dataclass
class FakeItem:
    invoice_id: UUID
    description: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    id: UUID = field(default_factory=uuid4)


@dataclass
class FakeInvoice:
    user_id: UUID
    client: FakeClient
    invoice_number: str
    currency: str
    vat_included: bool
    vat_rate: Decimal
    due_date: datetime
    status: InvoiceStatus = InvoiceStatus.DRAFT
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None
    items: list[FakeItem] = field(default_factory=list)
    id: UUID = field(default_factory=uuid4)

    @property
    def client_id(self) -> UUID:
        return self.client.id


@dataclass
class FakePayment:
    invoice_id: UUID
    amount: Decimal
    method: str
    paid_at: datetime
    reference: Optional[str] = None
    id: UUID = field(default_factory=uuid4)


@dataclass
class FakeExpense:
    user_id: UUID
    description: str
    amount: Decimal
    currency: str
    category: Optional[str]
    date: datetime
    vat_amount: Decimal
    id: UUID = field(default_factory=uuid4)


class InMemoryLedgerRepository:
    """Implements the ledger repository contract on plain lists.

    ``fail_next`` queues exceptions per method name so tests can inject
    transient or fatal failures. ``number_collisions`` makes that many
    invoice inserts report a duplicate number.

    Two switches mimic a PostgreSQL-backed ``AsyncSession`` more closely:
    ``expire_on_rollback`` expires loaded users on rollback, and
    ``abort_on_failure`` refuses every call after an injected failure until
    the transaction is rolled back.
    """

    def __init__(self) -> None:
        self.users: dict[UUID, FakeUser] = {}
        self.clients: list[FakeClient] = []
        self.invoices: list[FakeInvoice] = []
        self.payments: list[FakePayment] = []
        self.expenses: list[FakeExpense] = []
        self.fail_next: dict[str, list[BaseException]] = defaultdict(list)
        self.number_collisions = 0
        self.commits = 0
        self.rollbacks = 0
        self.expire_on_rollback = False
        self.abort_on_failure = False
        self.aborted = False

    def add_user(self, **kwargs: Any) -> FakeUser:
        user = FakeUser(**kwargs)
        self.users[user.id] = user
        return user

    def _maybe_fail(self, operation: str) -> None:
        if self.aborted:
            raise RuntimeError("current transaction is aborted, commands ignored until end of transaction block")
        queued = self.fail_next.get(operation)
        if queued:
            self.aborted = self.abort_on_failure
            raise queued.pop(0)

    def _rolled_back(self) -> None:
        self.rollbacks += 1
        self.aborted = False
        if self.expire_on_rollback:
            for user in self.users.values():
                user.expired = True

    def _snapshot(self) -> tuple:
        return (
            list(self.clients),
            list(self.invoices),
            list(self.payments),
            list(self.expenses),
            {invoice.id: (invoice.status, invoice.paid_at) for invoice in self.invoices},
        )

    def _restore(self, snapshot: tuple) -> None:
        clients, invoices, payments, expenses, states = snapshot
        self.clients, self.invoices, self.payments, self.expenses = clients, invoices, payments, expenses
        for invoice in self.invoices:
            invoice.status, invoice.paid_at = states[invoice.id]

    @asynccontextmanager
    async def unit_of_work(self):
        snapshot = self._snapshot()
        try:
            yield
        except BaseException:
            self._restore(snapshot)
            self._rolled_back()
            raise
        self.commits += 1

    async def rollback(self) -> None:
        self._rolled_back()

    async def get_user(self, user_id: UUID) -> Optional[FakeUser]:
        self._maybe_fail("get_user")
        user = self.users.get(user_id)
        if user is not None:
            user.expired = False
        return user

    async def get_or_create_channel_user(
        self, channel: Channel, handle: str, display_name: Optional[str] = None
    ) -> FakeUser:
        attribute = {
            Channel.TELEGRAM: "telegram_id",
            Channel.WHATSAPP: "whatsapp_number",
            Channel.WEB_CHAT: "email",
        }[channel]
        for user in self.users.values():
            user.expired = False
            if getattr(user, attribute) == handle:
                return user
        return self.add_user(name=display_name or "Business Owner", **{attribute: handle})

    async def create_or_get_client(self, user_id: UUID, name: str) -> FakeClient:
        self._maybe_fail("create_or_get_client")
        for client in self.clients:
            if client.user_id == user_id and client.name == name:
                return client
        client = FakeClient(user_id=user_id, name=name)
        self.clients.append(client)
        return client

    async def next_invoice_number(self, user_id: UUID) -> str:
        self._maybe_fail("next_invoice_number")
        count = sum(1 for invoice in self.invoices if invoice.user_id == user_id)
        # Yield so concurrent callers interleave between counting and inserting.
        await asyncio.sleep(0)
        return calculator.next_invoice_number(count)

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
    ) -> FakeInvoice:
        self._maybe_fail("create_invoice")
        await asyncio.sleep(0)
        if self.number_collisions > 0:
            self.number_collisions -= 1
            raise DuplicateInvoiceNumberError(f"{invoice_number} taken")
        if any(i.user_id == user_id and i.invoice_number == invoice_number for i in self.invoices):
            raise DuplicateInvoiceNumberError(f"{invoice_number} taken")
        client = next(c for c in self.clients if c.id == client_id)
        invoice = FakeInvoice(
            user_id=user_id,
            client=client,
            invoice_number=invoice_number,
            currency=currency,
            vat_included=vat_included,
            vat_rate=vat_rate,
            due_date=due_date,
            notes=notes,
        )
        self.invoices.append(invoice)
        return invoice

    async def create_invoice_item(
        self, *, invoice_id: UUID, description: str, quantity: int, unit_price: Decimal
    ) -> FakeItem:
        self._maybe_fail("create_invoice_item")
        item = FakeItem(
            invoice_id=invoice_id,
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            line_total=calculator.round_price(Decimal(quantity) * unit_price),
        )
        invoice = next(i for i in self.invoices if i.id == invoice_id)
        invoice.items.append(item)
        return item

    async def get_invoice(self, invoice_id: UUID, user_id: UUID) -> Optional[FakeInvoice]:
        for invoice in self.invoices:
            if invoice.id == invoice_id and invoice.user_id == user_id:
                return invoice
        return None

    async def find_invoice_by_number(self, user_id: UUID, invoice_number: str) -> Optional[FakeInvoice]:
        for invoice in self.invoices:
            if invoice.user_id == user_id and invoice.invoice_number == invoice_number:
                return invoice
        return None

    async def list_invoices(self, user_id: UUID, *, statuses=None, limit: int = 20) -> list[FakeInvoice]:
        rows = [
            invoice
            for invoice in reversed(self.invoices)
            if invoice.user_id == user_id and (not statuses or invoice.status in statuses)
        ]
        return rows[:limit]

    async def update_invoice_status(
        self,
        invoice_id: UUID,
        user_id: UUID,
        status: InvoiceStatus,
        paid_at: Optional[datetime] = None,
    ) -> None:
        self._maybe_fail("update_invoice_status")
        invoice = await self.get_invoice(invoice_id, user_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if status is InvoiceStatus.PAID and invoice.status is InvoiceStatus.PAID:
            raise InvoiceAlreadyPaidError(f"Invoice {invoice_id} is already paid")
        invoice.status = status
        invoice.paid_at = paid_at if status is InvoiceStatus.PAID else None

    async def create_payment(
        self,
        *,
        invoice_id: UUID,
        amount: Decimal,
        method: str,
        paid_at: datetime,
        reference: Optional[str] = None,
    ) -> FakePayment:
        self._maybe_fail("create_payment")
        payment = FakePayment(
            invoice_id=invoice_id, amount=amount, method=method, paid_at=paid_at, reference=reference
        )
        self.payments.append(payment)
        return payment

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
    ) -> FakeExpense:
        self._maybe_fail("create_expense")
        expense = FakeExpense(
            user_id=user_id,
            description=description,
            amount=amount,
            currency=currency,
            category=category,
            date=date,
            vat_amount=vat_amount,
        )
        self.expenses.append(expense)
        return expense

    async def query_invoices_paid_in_range(
        self, user_id: UUID, start: datetime, end: datetime
    ) -> list[FakeInvoice]:
        self._maybe_fail("query_invoices_paid_in_range")
        return [
            invoice
            for invoice in self.invoices
            if invoice.user_id == user_id
            and invoice.status is InvoiceStatus.PAID
            and invoice.paid_at is not None
            and start <= invoice.paid_at <= end
        ]

    async def query_expenses_in_range(
        self, user_id: UUID, start: datetime, end: datetime
    ) -> list[FakeExpense]:
        self._maybe_fail("query_expenses_in_range")
        return [
            expense
            for expense in self.expenses
            if expense.user_id == user_id and start <= expense.date <= end
        ]


class ScriptedClassifier:
    """Returns queued raw outputs (or raises queued exceptions) in order."""

    def __init__(self, *outputs: Any, delay: float = 0.0) -> None:
        self.outputs = list(outputs)
        self.delay = delay
        self.calls: list[str] = []

    async def classify(self, message: str) -> str:
        self.calls.append(message)
        if self.delay:
            await asyncio.sleep(self.delay)
        output = self.outputs.pop(0) if self.outputs else '{"intent": "HELP", "confidence": 1}'
        if isinstance(output, BaseException):
            raise output
        return output


class RecordingSleep:
    """Awaitable replacement for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
