from __future__ import annotations

from decimal import Decimal
from enum import Enum

from sqlalchemy import Enum as SqlEnum, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    PAST_DUE = "PAST_DUE"
    TRIALING = "TRIALING"


class Channel(str, Enum):
    WEB_CHAT = "WEB_CHAT"
    WHATSAPP = "WHATSAPP"
    TELEGRAM = "TELEGRAM"


class User(Base):
    """Business owner; the tenant every ledger record belongs to."""

    __tablename__ = "users"

    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    whatsapp_number: Mapped[str | None] = mapped_column(
        String(32), unique=True, nullable=True, index=True
    )
    telegram_id: Mapped[str | None] = mapped_column(
        String(32), unique=True, nullable=True, index=True
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    business_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="ZAR", nullable=False)
    default_vat_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 4), default=Decimal("0.15"), nullable=False
    )
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        SqlEnum(SubscriptionStatus, name="subscription_status"),
        default=SubscriptionStatus.TRIALING,
        nullable=False,
    )

    clients: Mapped[list["Client"]] = relationship(back_populates="user", cascade="all, delete-orphan")
    invoices: Mapped[list["Invoice"]] = relationship(back_populates="user", cascade="all, delete-orphan")
    expenses: Mapped[list["Expense"]] = relationship(back_populates="user", cascade="all, delete-orphan")


from .client import Client  # noqa: E402
from .expense import Expense  # noqa: E402
from .invoice import Invoice  # noqa: E402
