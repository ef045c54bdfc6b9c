from .base import Base
from .client import Client
from .expense import Expense
from .invoice import Invoice, InvoiceItem, InvoiceStatus
from .payment import Payment
from .user import Channel, SubscriptionStatus, User

__all__ = [
    "Base",
    "Channel",
    "Client",
    "Expense",
    "Invoice",
    "InvoiceItem",
    "InvoiceStatus",
    "Payment",
    "SubscriptionStatus",
    "User",
]
