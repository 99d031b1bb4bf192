"""
Shared test fixtures.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List
from unittest.mock import AsyncMock

import pytest

from billing_query.core.auth import AuthGate, StaticCredentialValidator
from billing_query.core.catalog import DEFAULT_PROPERTY_CATALOG
from billing_query.core.service import QueryService
from billing_query.storage.models import BillingKind, NamespaceBillingRecord, PropertyUsageRecord
from billing_query.storage.repository import (
    SQLiteBillingStore,
    initialize_schema,
    insert_billing_records,
    insert_usage_records,
)

T1 = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
T2 = datetime(2024, 1, 1, 12, 30, 0, tzinfo=timezone.utc)
NOW = datetime(2024, 1, 2, 0, 0, 0, tzinfo=timezone.utc)

CREDENTIALS: Dict[str, str] = {"alice": "alice-token", "bob": "bob-token"}


def alice_billing_records() -> List[NamespaceBillingRecord]:
    """CONSUMPTION of 10 and 15 at t1 and t2, RECHARGE of 50 at t1, plus noise from bob."""
    return [
        NamespaceBillingRecord("alice", "ns-alice", Decimal("10"), T1, BillingKind.CONSUMPTION),
        NamespaceBillingRecord("alice", "ns-alice-dev", Decimal("15"), T2, BillingKind.CONSUMPTION),
        NamespaceBillingRecord("alice", "ns-alice", Decimal("50"), T1, BillingKind.RECHARGE),
        NamespaceBillingRecord("bob", "ns-bob", Decimal("99"), T1, BillingKind.CONSUMPTION),
    ]


def alice_usage_records() -> List[PropertyUsageRecord]:
    return [
        PropertyUsageRecord("alice", "ns-alice", "cpu", Decimal("6.5"), T1),
        PropertyUsageRecord("alice", "ns-alice", "memory", Decimal("3.5"), T1 + timedelta(minutes=20)),
        PropertyUsageRecord("alice", "ns-alice-dev", "cpu", Decimal("9"), T2),
        PropertyUsageRecord("alice", "ns-alice-dev", "storage", Decimal("6"), T2 + timedelta(minutes=10)),
        PropertyUsageRecord("bob", "ns-bob", "cpu", Decimal("42"), T2),
    ]


@pytest.fixture
def db_path():
    """Path to an initialized, seeded SQLite billing database."""
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "test.db")
        initialize_schema(path)
        insert_billing_records(alice_billing_records(), path)
        insert_usage_records(alice_usage_records(), path)
        yield path


@pytest.fixture
def store(db_path):
    return SQLiteBillingStore(db_path)


@pytest.fixture
def service(store):
    return QueryService(store, DEFAULT_PROPERTY_CATALOG, clock=lambda: NOW)


@pytest.fixture
def gate():
    return AuthGate(StaticCredentialValidator(CREDENTIALS))


@pytest.fixture
def untouchable_store():
    """Store stub that fails the test if any query reaches it."""
    stub = AsyncMock()
    for name in (
        "get_billing_history_namespace_list",
        "get_properties",
        "get_consumption_amount",
        "get_recharge_amount",
        "get_properties_used_amount",
        "get_costs",
    ):
        getattr(stub, name).side_effect = AssertionError(f"store.{name} must not be called")
    return stub
