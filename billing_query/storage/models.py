"""
Data models for the billing ledger.

Records are owned and written by the billing store; queries only read them.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional


class BillingKind(Enum):
    """Direction of a namespace billing record."""
    CONSUMPTION = "consumption"
    RECHARGE = "recharge"


@dataclass(frozen=True)
class NamespaceBillingRecord:
    """Immutable monetary event billed against one namespace of an owner."""
    owner: str
    namespace: str
    amount: Decimal
    timestamp: datetime
    kind: BillingKind


@dataclass(frozen=True)
class PropertyUsageRecord:
    """Immutable usage-derived cost of a single property (cpu, memory, ...)."""
    owner: str
    namespace: str
    property: str
    amount: Decimal
    timestamp: datetime


@dataclass(frozen=True)
class NamespaceBillingHistoryFilter:
    """Optional filters for the namespace billing history list."""
    kind: Optional[BillingKind] = None
    namespace: Optional[str] = None
    limit: Optional[int] = None

    def __post_init__(self):
        """Validate limit is positive."""
        if self.limit is not None and self.limit <= 0:
            raise ValueError("limit must be > 0")


# Amount per property name, one entry per property observed in a range.
PropertyUsage = Dict[str, Decimal]

# Hour-bucket start (UTC) -> property name -> amount. Sparse.
CostsMap = Dict[datetime, PropertyUsage]
