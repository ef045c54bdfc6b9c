from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import Select, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..errors import DuplicateInvoiceNumberError, InvoiceAlreadyPaidError, NotFoundError
from ..models import Channel, Client, Expense, Invoice, InvoiceItem, InvoiceStatus, Payment, User
from ..services import calculator

logger = logging.getLogger(__name__)

_CHANNEL_COLUMNS = {
    Channel.WHATSAPP: User.whatsapp_number,
    Channel.TELEGRAM: User.telegram_id,
    Channel.WEB_CHAT: User.email,
}


def _invoice_query() -> Select[tuple[Invoice]]:
    return select(Invoice).options(selectinload(Invoice.items), selectinload(Invoice.client))


class SqlLedgerRepository:
    """Ledger repository bound to one request-scoped ``AsyncSession``."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        default_currency: str = "ZAR",
        default_vat_rate: Decimal = calculator.DEFAULT_VAT_RATE,
    ) -> None:
        self.session = session
        self.default_currency = default_currency
        self.default_vat_rate = default_vat_rate

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[None]:
        try:
            yield
        except BaseException:
            await self.session.rollback()
            raise
        else:
            await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    async def get_user(self, user_id: UUID) -> Optional[User]:
        return await self.session.get(User, user_id)

    async def get_or_create_channel_user(
        self, channel: Channel, handle: str, display_name: Optional[str] = None
    ) -> User:
        column = _CHANNEL_COLUMNS[channel]
        result = await self.session.execute(select(User).where(column == handle))
        user = result.scalars().first()
        if user:
            return user

        user = User(
            name=display_name or "Business Owner",
            business_name="My Business",
            currency=self.default_currency,
            default_vat_rate=self.default_vat_rate,
        )
        setattr(user, column.key, handle)
        self.session.add(user)
        try:
            async with self.session.begin_nested():
                await self.session.flush()
        except IntegrityError:
            # Another request registered the same handle first.
            result = await self.session.execute(select(User).where(column == handle))
            return result.scalar_one()
        await self.session.commit()
        await self.session.refresh(user)
        return user

    async def create_or_get_client(self, user_id: UUID, name: str) -> Client:
        stmt = select(Client).where(Client.user_id == user_id, Client.name == name)
        result = await self.session.execute(stmt)
        client = result.scalars().first()
        if client:
            return client

        client = Client(user_id=user_id, name=name)
        self.session.add(client)
        try:
            async with self.session.begin_nested():
                await self.session.flush()
        except IntegrityError:
            result = await self.session.execute(stmt)
            return result.scalar_one()
        return client

    async def next_invoice_number(self, user_id: UUID) -> str:
        result = await self.session.execute(
            select(func.count()).select_from(Invoice).where(Invoice.user_id == user_id)
        )
        return calculator.next_invoice_number(int(result.scalar_one()))

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
        invoice = Invoice(
            user_id=user_id,
            client_id=client_id,
            invoice_number=invoice_number,
            currency=currency,
            vat_included=vat_included,
            vat_rate=vat_rate,
            status=InvoiceStatus.DRAFT,
            due_date=due_date,
            notes=notes,
        )
        self.session.add(invoice)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            if "uq_invoices_user_number" in str(exc.orig):
                raise DuplicateInvoiceNumberError(
                    f"Invoice number {invoice_number} already exists for user {user_id}"
                ) from exc
            raise
        return invoice

    async def create_invoice_item(
        self,
        *,
        invoice_id: UUID,
        description: str,
        quantity: int,
        unit_price: Decimal,
    ) -> InvoiceItem:
        item = InvoiceItem(
            invoice_id=invoice_id,
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            line_total=calculator.round_price(Decimal(quantity) * unit_price),
        )
        self.session.add(item)
        await self.session.flush()
        return item

    async def get_invoice(self, invoice_id: UUID, user_id: UUID) -> Optional[Invoice]:
        result = await self.session.execute(
            _invoice_query().where(Invoice.id == invoice_id, Invoice.user_id == user_id)
        )
        return result.scalars().first()

    async def find_invoice_by_number(self, user_id: UUID, invoice_number: str) -> Optional[Invoice]:
        result = await self.session.execute(
            _invoice_query().where(
                Invoice.user_id == user_id, Invoice.invoice_number == invoice_number
            )
        )
        return result.scalars().first()

    async def list_invoices(
        self,
        user_id: UUID,
        *,
        statuses: Optional[Sequence[InvoiceStatus]] = None,
        limit: int = 20,
    ) -> Sequence[Invoice]:
        stmt = _invoice_query().where(Invoice.user_id == user_id)
        if statuses:
            stmt = stmt.where(Invoice.status.in_(list(statuses)))
        stmt = stmt.order_by(Invoice.created_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def update_invoice_status(
        self,
        invoice_id: UUID,
        user_id: UUID,
        status: InvoiceStatus,
        paid_at: Optional[datetime] = None,
    ) -> None:
        stmt = (
            update(Invoice)
            .where(Invoice.id == invoice_id, Invoice.user_id == user_id)
            .values(status=status, paid_at=paid_at if status is InvoiceStatus.PAID else None)
        )
        if status is InvoiceStatus.PAID:
            # Only an unpaid row may transition; a concurrent winner leaves rowcount at 0.
            stmt = stmt.where(Invoice.status != InvoiceStatus.PAID)
        result = await self.session.execute(stmt.execution_options(synchronize_session="fetch"))
        if result.rowcount:
            return
        if status is InvoiceStatus.PAID and await self.get_invoice(invoice_id, user_id):
            raise InvoiceAlreadyPaidError(f"Invoice {invoice_id} is already paid")
        raise NotFoundError(f"Invoice {invoice_id} not found for user {user_id}")

    async def create_payment(
        self,
        *,
        invoice_id: UUID,
        amount: Decimal,
        method: str,
        paid_at: datetime,
        reference: Optional[str] = None,
    ) -> Payment:
        payment = Payment(
            invoice_id=invoice_id,
            amount=amount,
            method=method,
            paid_at=paid_at,
            reference=reference,
        )
        self.session.add(payment)
        await self.session.flush()
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
    ) -> Expense:
        expense = Expense(
            user_id=user_id,
            description=description,
            amount=amount,
            currency=currency,
            category=category,
            date=date,
            vat_amount=vat_amount,
        )
        self.session.add(expense)
        await self.session.flush()
        return expense

    async def query_invoices_paid_in_range(
        self, user_id: UUID, start: datetime, end: datetime
    ) -> Sequence[Invoice]:
        result = await self.session.execute(
            _invoice_query()
            .where(
                Invoice.user_id == user_id,
                Invoice.status == InvoiceStatus.PAID,
                Invoice.paid_at >= start,
                Invoice.paid_at <= end,
            )
            .order_by(Invoice.paid_at)
        )
        return result.scalars().all()

    async def query_expenses_in_range(
        self, user_id: UUID, start: datetime, end: datetime
    ) -> Sequence[Expense]:
        result = await self.session.execute(
            select(Expense)
            .where(Expense.user_id == user_id, Expense.date >= start, Expense.date <= end)
            .order_by(Expense.date)
        )
        return result.scalars().all()
