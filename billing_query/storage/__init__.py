"""
Storage layer for Billing Query.

Defines the billing store interface and its SQLite implementation.
"""

from .repository import SQLiteBillingStore
from .store import BillingStore

__all__ = ["BillingStore", "SQLiteBillingStore"]
