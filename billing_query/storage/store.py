"""
Billing store capability interface.

Any storage engine able to answer these six queries can back the query
service. Aggregations may run inside the engine itself.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Protocol, runtime_checkable

from billing_query.core.catalog import PropertyDefinition
from .models import CostsMap, NamespaceBillingHistoryFilter, NamespaceBillingRecord


@runtime_checkable
class BillingStore(Protocol):
    """Read-only aggregation backend over the billing ledger.

    All time windows are half-open: a record at ``start`` is included, a
    record at ``end`` is not.
    """

    async def get_billing_history_namespace_list(
        self,
        owner: str,
        start: datetime,
        end: datetime,
        filters: NamespaceBillingHistoryFilter,
    ) -> List[NamespaceBillingRecord]:
        """Billing records of owner in range, newest first."""
        ...

    async def get_properties(self) -> List[PropertyDefinition]:
        """Definitions of all billable properties."""
        ...

    async def get_consumption_amount(self, owner: str, start: datetime, end: datetime) -> Decimal:
        """Sum of CONSUMPTION amounts of owner in range."""
        ...

    async def get_recharge_amount(self, owner: str, start: datetime, end: datetime) -> Decimal:
        """Sum of RECHARGE amounts of owner in range."""
        ...

    async def get_properties_used_amount(self, owner: str, start: datetime, end: datetime) -> Decimal:
        """Sum of usage-derived cost across all properties of owner in range."""
        ...

    async def get_costs(self, owner: str, start: datetime, end: datetime) -> CostsMap:
        """Per-property amounts of owner in range, bucketed by hour."""
        ...
