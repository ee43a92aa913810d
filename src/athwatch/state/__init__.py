"""Ledger interfaces and implementations."""

from .sqlite_store import SqliteLedger
from .store import Ledger

__all__ = ["Ledger", "SqliteLedger"]
