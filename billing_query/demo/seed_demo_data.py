# billing_query/demo/seed_demo_data.py

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from billing_query.storage.models import BillingKind, NamespaceBillingRecord, PropertyUsageRecord
from billing_query.storage.repository import initialize_schema, insert_billing_records, insert_usage_records

initialize_schema()

now = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
two_hours_ago = now - timedelta(hours=2)

insert_billing_records([
    NamespaceBillingRecord(
        owner="alice",
        namespace="ns-alice",
        amount=Decimal("50"),
        timestamp=two_hours_ago,
        kind=BillingKind.RECHARGE
    ),
    NamespaceBillingRecord(
        owner="alice",
        namespace="ns-alice",
        amount=Decimal("10"),
        timestamp=two_hours_ago + timedelta(minutes=5),
        kind=BillingKind.CONSUMPTION
    ),
    NamespaceBillingRecord(
        owner="alice",
        namespace="ns-alice-dev",
        amount=Decimal("15"),
        timestamp=now - timedelta(minutes=30),
        kind=BillingKind.CONSUMPTION
    ),
])

insert_usage_records([
    PropertyUsageRecord("alice", "ns-alice", "cpu", Decimal("6.5"), two_hours_ago + timedelta(minutes=5)),
    PropertyUsageRecord("alice", "ns-alice", "memory", Decimal("3.5"), two_hours_ago + timedelta(minutes=5)),
    PropertyUsageRecord("alice", "ns-alice-dev", "cpu", Decimal("9"), now - timedelta(minutes=30)),
    PropertyUsageRecord("alice", "ns-alice-dev", "storage", Decimal("6"), now - timedelta(minutes=30)),
])

print("Demo billing data inserted")
