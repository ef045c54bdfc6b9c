from .base import LedgerRepository
from .sql import SqlLedgerRepository

__all__ = ["LedgerRepository", "SqlLedgerRepository"]
