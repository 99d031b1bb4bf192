"""
SQLite implementation of the billing store.

All sums and groupings run inside SQLite. Amounts are persisted as integer
micro-units so aggregation is exact; timestamps as fixed-width UTC strings
so lexical order equals time order.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

import structlog

from billing_query.core.catalog import DEFAULT_PROPERTY_CATALOG, PropertyCatalog, PropertyDefinition
from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    BillingKind,
    CostsMap,
    NamespaceBillingHistoryFilter,
    NamespaceBillingRecord,
    PropertyUsageRecord,
)

logger = structlog.get_logger(__name__)

MICRO_UNITS = Decimal(1_000_000)
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
# strftime does not zero-pad years below 1000 on every platform
_TIMESTAMP_TAIL_FORMAT = "%m-%dT%H:%M:%S.%fZ"
BUCKET_FORMAT = "%Y-%m-%dT%H"
# Length of the "YYYY-MM-DDTHH" prefix of a stored timestamp
BUCKET_PREFIX_LENGTH = 13


def encode_timestamp(value: datetime) -> str:
    """Encode an aware datetime as a fixed-width UTC string."""
    if value.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")
    utc = value.astimezone(timezone.utc)
    return f"{utc.year:04d}-" + utc.strftime(_TIMESTAMP_TAIL_FORMAT)


def decode_timestamp(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def encode_amount(amount: Decimal) -> int:
    """Convert a decimal amount to integer micro-units.

    Raises:
        ValueError: If amount has more than six fractional digits
    """
    scaled = Decimal(amount) * MICRO_UNITS
    if scaled != scaled.to_integral_value():
        raise ValueError(f"amount {amount} has more than 6 fractional digits")
    return int(scaled)


def decode_amount(value: Optional[int]) -> Decimal:
    if not value:
        return Decimal(0)
    return Decimal(value) / MICRO_UNITS


class SQLiteBillingStore:
    """Billing store backed by a local SQLite database.

    Each query opens its own connection inside a worker thread, so the
    store holds no per-request state and concurrent queries never share
    a connection.
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        catalog: PropertyCatalog = DEFAULT_PROPERTY_CATALOG
    ):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
            catalog: Property definitions returned by get_properties
        """
        self.db_path = db_path
        self.catalog = catalog

    async def get_billing_history_namespace_list(
        self,
        owner: str,
        start: datetime,
        end: datetime,
        filters: NamespaceBillingHistoryFilter,
    ) -> List[NamespaceBillingRecord]:
        return await asyncio.to_thread(self._fetch_billing_history, owner, start, end, filters)

    async def get_properties(self) -> List[PropertyDefinition]:
        return list(self.catalog.properties)

    async def get_consumption_amount(self, owner: str, start: datetime, end: datetime) -> Decimal:
        return await asyncio.to_thread(self._sum_billing, owner, start, end, BillingKind.CONSUMPTION)

    async def get_recharge_amount(self, owner: str, start: datetime, end: datetime) -> Decimal:
        return await asyncio.to_thread(self._sum_billing, owner, start, end, BillingKind.RECHARGE)

    async def get_properties_used_amount(self, owner: str, start: datetime, end: datetime) -> Decimal:
        return await asyncio.to_thread(self._sum_usage, owner, start, end)

    async def get_costs(self, owner: str, start: datetime, end: datetime) -> CostsMap:
        return await asyncio.to_thread(self._fetch_costs, owner, start, end)

    def _fetch_billing_history(
        self,
        owner: str,
        start: datetime,
        end: datetime,
        filters: NamespaceBillingHistoryFilter,
    ) -> List[NamespaceBillingRecord]:
        conn = get_connection(self.db_path, read_only=True)
        try:
            query = """
                SELECT owner, namespace, kind, amount, timestamp
                FROM billing_record
                WHERE owner = ? AND timestamp >= ? AND timestamp < ?
            """
            params: list = [owner, encode_timestamp(start), encode_timestamp(end)]

            if filters.kind is not None:
                query += " AND kind = ?"
                params.append(filters.kind.value)
            if filters.namespace:
                query += " AND namespace = ?"
                params.append(filters.namespace)

            query += " ORDER BY timestamp DESC, id DESC"
            if filters.limit is not None:
                query += " LIMIT ?"
                params.append(filters.limit)

            cursor = conn.execute(query, params)
            return [
                NamespaceBillingRecord(
                    owner=row[0],
                    namespace=row[1],
                    kind=BillingKind(row[2]),
                    amount=decode_amount(row[3]),
                    timestamp=decode_timestamp(row[4])
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def _sum_billing(self, owner: str, start: datetime, end: datetime, kind: BillingKind) -> Decimal:
        conn = get_connection(self.db_path, read_only=True)
        try:
            cursor = conn.execute("""
                SELECT SUM(amount) FROM billing_record
                WHERE owner = ? AND kind = ? AND timestamp >= ? AND timestamp < ?
            """, (owner, kind.value, encode_timestamp(start), encode_timestamp(end)))
            return decode_amount(cursor.fetchone()[0])
        finally:
            conn.close()

    def _sum_usage(self, owner: str, start: datetime, end: datetime) -> Decimal:
        conn = get_connection(self.db_path, read_only=True)
        try:
            cursor = conn.execute("""
                SELECT SUM(amount) FROM property_usage
                WHERE owner = ? AND timestamp >= ? AND timestamp < ?
            """, (owner, encode_timestamp(start), encode_timestamp(end)))
            return decode_amount(cursor.fetchone()[0])
        finally:
            conn.close()

    def _fetch_costs(self, owner: str, start: datetime, end: datetime) -> CostsMap:
        conn = get_connection(self.db_path, read_only=True)
        try:
            cursor = conn.execute(f"""
                SELECT substr(timestamp, 1, {BUCKET_PREFIX_LENGTH}) AS bucket,
                       property,
                       SUM(amount)
                FROM property_usage
                WHERE owner = ? AND timestamp >= ? AND timestamp < ?
                GROUP BY bucket, property
                ORDER BY bucket, property
            """, (owner, encode_timestamp(start), encode_timestamp(end)))
            costs: CostsMap = {}
            for bucket, prop, total in cursor.fetchall():
                bucket_start = datetime.strptime(bucket, BUCKET_FORMAT).replace(tzinfo=timezone.utc)
                costs.setdefault(bucket_start, {})[prop] = decode_amount(total)
            return costs
        finally:
            conn.close()


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the billing ledger tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS billing_record (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner TEXT NOT NULL,
                namespace TEXT NOT NULL,
                kind TEXT NOT NULL CHECK (kind IN ('consumption', 'recharge')),
                amount INTEGER NOT NULL,
                timestamp TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_billing_record_owner_time
                ON billing_record (owner, timestamp);
            CREATE TABLE IF NOT EXISTS property_usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner TEXT NOT NULL,
                namespace TEXT NOT NULL,
                property TEXT NOT NULL,
                amount INTEGER NOT NULL,
                timestamp TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_property_usage_owner_time
                ON property_usage (owner, timestamp);
        """)
        conn.commit()
    finally:
        conn.close()
    logger.info("billing_query.schema_initialized", db_path=db_path)


def insert_billing_records(records: Sequence[NamespaceBillingRecord], db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert billing records atomically.

    Used to set up local databases and demo data; records are never
    updated or deleted afterwards.

    Args:
        records: Billing records to store
        db_path: Path to SQLite database file
    """
    _insert_many(
        """
        INSERT INTO billing_record (owner, namespace, kind, amount, timestamp)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            (r.owner, r.namespace, r.kind.value, encode_amount(r.amount), encode_timestamp(r.timestamp))
            for r in records
        ),
        db_path
    )


def insert_usage_records(records: Sequence[PropertyUsageRecord], db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert property usage records atomically.

    Args:
        records: Property usage records to store
        db_path: Path to SQLite database file
    """
    _insert_many(
        """
        INSERT INTO property_usage (owner, namespace, property, amount, timestamp)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            (r.owner, r.namespace, r.property, encode_amount(r.amount), encode_timestamp(r.timestamp))
            for r in records
        ),
        db_path
    )


def _insert_many(statement: str, rows: Iterable[tuple], db_path: str) -> None:
    rows = list(rows)
    if not rows:
        return

    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN TRANSACTION")
        conn.executemany(statement, rows)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
