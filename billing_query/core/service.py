"""
Billing query service.

Enforces the query contract around the billing store: owner scoping,
time range resolution, time limits and error classification. The store
does the actual summation.

Every operation requires an Identity issued by the AuthGate and:
1. Rejects an owner other than the authenticated one (Forbidden)
2. Resolves the time range once, at execution time
3. Calls the store under the caller's timeout/cancel signal
4. Wraps any store error as StorageFailure, never as a zero amount
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, TypeVar

import structlog

from billing_query.storage.models import CostsMap, NamespaceBillingRecord, PropertyUsage
from billing_query.storage.store import BillingStore
from .auth import Identity
from .cancellation import run_cancellable, validate_timeout
from .catalog import PropertyCatalog
from .errors import ForbiddenError, QueryCancelledError, StorageFailureError
from .requests import NamespaceBillingHistoryRequest
from .time_range import ResolvedTimeRange, TimeRange

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QueryService:
    """Answers billing queries for authenticated owners.

    The service keeps no state besides the immutable property catalog,
    so one instance serves any number of concurrent queries.
    """

    def __init__(
        self,
        store: BillingStore,
        catalog: PropertyCatalog,
        timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """Initialize the service.

        Args:
            store: Billing store answering the aggregation queries
            catalog: Property catalog snapshot built at startup
            timeout: Default time limit in seconds for one store call
            clock: Source of "now" for open-ended time ranges
        """
        self.store = store
        self.catalog = catalog
        self.timeout = timeout
        self.clock = clock

    @classmethod
    async def create(
        cls,
        store: BillingStore,
        catalog: Optional[PropertyCatalog] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now
    ) -> "QueryService":
        """Build a service, loading the catalog from the store if none is given.

        Raises:
            StorageFailureError: If the catalog cannot be loaded
        """
        if catalog is None:
            try:
                definitions = await run_cancellable(store.get_properties(), "get_properties", timeout=timeout)
                catalog = PropertyCatalog.from_definitions(definitions)
            except Exception as e:
                raise StorageFailureError("get_properties", e) from e
            logger.info("billing_query.catalog_loaded", properties=catalog.names)
        return cls(store, catalog, timeout=timeout, clock=clock)

    async def get_billing_history_namespace_list(
        self,
        identity: Identity,
        request: NamespaceBillingHistoryRequest,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[NamespaceBillingRecord]:
        """Billing records of the authenticated owner, newest first.

        Filtering and ordering happen in the store; no arithmetic here.
        """
        self._check_owner(identity, request.auth.owner)
        window = self._resolve(request.time_range)
        return await self._call(
            "get_billing_history_namespace_list",
            lambda: self.store.get_billing_history_namespace_list(
                identity.owner, window.start, window.end, request.filters
            ),
            identity.owner,
            timeout,
            cancel_event
        )

    async def get_properties(self, identity: Identity) -> PropertyCatalog:
        """Return the property catalog snapshot.

        Not scoped to an owner; no store access.
        """
        return self.catalog

    async def get_consumption_amount(
        self,
        identity: Identity,
        owner: str,
        time_range: TimeRange,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Decimal:
        """Sum of consumption amounts of owner in [start, end)."""
        return await self._amount(
            "get_consumption_amount", self.store.get_consumption_amount,
            identity, owner, time_range, timeout, cancel_event
        )

    async def get_recharge_amount(
        self,
        identity: Identity,
        owner: str,
        time_range: TimeRange,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Decimal:
        """Sum of recharge amounts of owner in [start, end)."""
        return await self._amount(
            "get_recharge_amount", self.store.get_recharge_amount,
            identity, owner, time_range, timeout, cancel_event
        )

    async def get_properties_used_amount(
        self,
        identity: Identity,
        owner: str,
        time_range: TimeRange,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Decimal:
        """Sum of usage-derived cost across all properties of owner in [start, end)."""
        return await self._amount(
            "get_properties_used_amount", self.store.get_properties_used_amount,
            identity, owner, time_range, timeout, cancel_event
        )

    async def get_costs(
        self,
        identity: Identity,
        owner: str,
        time_range: TimeRange,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> CostsMap:
        """Hourly per-property costs of owner in [start, end).

        Only hours with at least one contributing record appear.
        """
        self._check_owner(identity, owner)
        window = self._resolve(time_range)
        return await self._call(
            "get_costs",
            lambda: self.store.get_costs(owner, window.start, window.end),
            owner,
            timeout,
            cancel_event
        )

    async def get_properties_usage(
        self,
        identity: Identity,
        owner: str,
        time_range: TimeRange,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> PropertyUsage:
        """Per-property totals of owner in [start, end).

        Folds the hourly cost map by property, so the values always add up
        to the properties used amount of the same range.
        """
        costs = await self.get_costs(identity, owner, time_range, timeout, cancel_event)
        usage: PropertyUsage = {}
        for bucket in costs.values():
            for prop, amount in bucket.items():
                usage[prop] = usage.get(prop, Decimal(0)) + amount
        return usage

    async def _amount(
        self,
        operation: str,
        query: Callable[[str, datetime, datetime], Awaitable[Decimal]],
        identity: Identity,
        owner: str,
        time_range: TimeRange,
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event]
    ) -> Decimal:
        self._check_owner(identity, owner)
        window = self._resolve(time_range)
        amount = await self._call(
            operation,
            lambda: query(owner, window.start, window.end),
            owner,
            timeout,
            cancel_event
        )
        return Decimal(amount)

    def _check_owner(self, identity: Identity, owner: str) -> None:
        if owner != identity.owner:
            logger.warning(
                "billing_query.owner_mismatch",
                authenticated_owner=identity.owner,
                requested_owner=owner
            )
            raise ForbiddenError(identity.owner, owner)

    def _resolve(self, time_range: TimeRange) -> ResolvedTimeRange:
        return time_range.resolve(self.clock())

    async def _call(
        self,
        operation: str,
        query: Callable[[], Awaitable[T]],
        owner: str,
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event]
    ) -> T:
        validate_timeout(timeout)
        effective_timeout = timeout if timeout is not None else self.timeout
        try:
            return await run_cancellable(
                query(), operation, timeout=effective_timeout, cancel_event=cancel_event
            )
        except QueryCancelledError:
            logger.info("billing_query.cancelled", operation=operation, owner=owner)
            raise
        except Exception as e:
            logger.error(
                "billing_query.storage_failure",
                operation=operation,
                owner=owner,
                error=type(e).__name__,
                detail=str(e)
            )
            raise StorageFailureError(operation, e) from e
