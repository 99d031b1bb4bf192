"""
Request parsing and validation.

Turns raw, already-decoded transport input into typed query requests.
Parsing is pure: nothing here authenticates or touches storage.

Timestamps must be RFC 3339 with an explicit UTC offset, for example
``2024-01-01T12:00:00Z`` or ``2024-01-01T14:00:00+02:00``. Date-only
values, naive times and epoch numbers are rejected.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from billing_query.storage.models import BillingKind, NamespaceBillingHistoryFilter
from .auth import Auth
from .errors import BadRequestError
from .time_range import TimeRange

_RFC3339 = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[Tt](?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<offset>[Zz]|[+-]\d{2}:\d{2})$"
)


@dataclass(frozen=True)
class NamespaceBillingHistoryRequest:
    """Request for the namespace billing history list of the authenticated owner."""
    auth: Auth
    time_range: TimeRange = field(default_factory=TimeRange)
    filters: NamespaceBillingHistoryFilter = field(default_factory=NamespaceBillingHistoryFilter)


@dataclass(frozen=True)
class UserCostsAmountRequest:
    """Request for an amount or cost breakdown of one owner over a time range."""
    auth: Auth
    owner: str
    time_range: TimeRange = field(default_factory=TimeRange)


def parse_timestamp(value: Any, field_name: str) -> datetime:
    """Parse an RFC 3339 timestamp and normalize it to UTC.

    Args:
        value: RFC 3339 string or timezone-aware datetime
        field_name: Field path used in error messages

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        BadRequestError: If value is not a valid RFC 3339 instant
    """
    if isinstance(value, datetime):
        if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
            raise BadRequestError(field_name, "timestamp must carry a UTC offset")
        return _to_utc(value, field_name)

    if not isinstance(value, str):
        raise BadRequestError(field_name, "timestamp must be an RFC 3339 string")

    match = _RFC3339.match(value.strip())
    if not match:
        raise BadRequestError(field_name, f"'{value}' is not an RFC 3339 timestamp")

    # fromisoformat only takes up to microseconds and no "Z" on older interpreters
    fraction = (match.group("fraction") or "")[:6]
    offset = match.group("offset")
    if offset in ("Z", "z"):
        offset = "+00:00"
    normalized = f"{match.group('date')}T{match.group('time')}"
    if fraction:
        normalized += f".{fraction.ljust(6, '0')}"
    normalized += offset

    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        raise BadRequestError(field_name, f"'{value}' is not a valid instant")
    return _to_utc(parsed, field_name)


def _to_utc(value: datetime, field_name: str) -> datetime:
    # Instants near year 1 or 9999 can fall outside datetime once shifted to UTC
    try:
        return value.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        raise BadRequestError(field_name, f"'{value.isoformat()}' is out of range")


def parse_auth(raw: Any, field_name: str = "auth") -> Auth:
    """Parse the auth section of a request.

    Raises:
        BadRequestError: If owner or credential is missing or empty
    """
    if not isinstance(raw, Mapping):
        raise BadRequestError(field_name, "must be an object with owner and credential")

    owner = raw.get("owner")
    if not isinstance(owner, str) or not owner.strip():
        raise BadRequestError(f"{field_name}.owner", "is required and cannot be empty")

    credential = raw.get("credential")
    if not isinstance(credential, str) or not credential:
        raise BadRequestError(f"{field_name}.credential", "is required and cannot be empty")

    return Auth(owner=owner.strip(), credential=credential)


def parse_time_range(raw: Any, field_name: str = "timeRange") -> TimeRange:
    """Parse an optional ``{"startTime", "endTime"}`` section.

    Raises:
        BadRequestError: If a bound is malformed or start is after end
    """
    if raw is None:
        return TimeRange()
    if not isinstance(raw, Mapping):
        raise BadRequestError(field_name, "must be an object")

    start = end = None
    if raw.get("startTime") is not None:
        start = parse_timestamp(raw["startTime"], f"{field_name}.startTime")
    if raw.get("endTime") is not None:
        end = parse_timestamp(raw["endTime"], f"{field_name}.endTime")

    if start is not None and end is not None and start > end:
        raise BadRequestError(field_name, "startTime must not be after endTime")
    return TimeRange(start=start, end=end)


def parse_namespace_billing_history_request(raw: Any) -> NamespaceBillingHistoryRequest:
    """Parse a namespace billing history list request.

    Accepted fields: ``auth``, ``timeRange``, and the optional filters
    ``kind`` (consumption | recharge), ``namespace`` and ``limit``.

    Raises:
        BadRequestError: Naming the first invalid field
    """
    raw = _require_object(raw)
    auth = parse_auth(raw.get("auth"))
    time_range = parse_time_range(raw.get("timeRange"))

    kind = None
    if raw.get("kind") is not None:
        kind_value = raw["kind"]
        if not isinstance(kind_value, str):
            raise BadRequestError("kind", "must be a string")
        try:
            kind = BillingKind(kind_value.strip().lower())
        except ValueError:
            valid_kinds = [k.value for k in BillingKind]
            raise BadRequestError("kind", f"must be one of: {valid_kinds}")

    namespace = raw.get("namespace")
    if namespace is not None:
        if not isinstance(namespace, str) or not namespace.strip():
            raise BadRequestError("namespace", "cannot be empty")
        namespace = namespace.strip()

    limit = raw.get("limit")
    if limit is not None:
        # bool is an int subclass
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise BadRequestError("limit", "must be a positive integer")

    return NamespaceBillingHistoryRequest(
        auth=auth,
        time_range=time_range,
        filters=NamespaceBillingHistoryFilter(kind=kind, namespace=namespace, limit=limit)
    )


def parse_user_costs_amount_request(raw: Any) -> UserCostsAmountRequest:
    """Parse a user costs amount request.

    ``owner`` defaults to the owner named in ``auth`` when omitted.

    Raises:
        BadRequestError: Naming the first invalid field
    """
    raw = _require_object(raw)
    auth = parse_auth(raw.get("auth"))

    owner: Optional[Any] = raw.get("owner")
    if owner is None:
        owner = auth.owner
    elif not isinstance(owner, str) or not owner.strip():
        raise BadRequestError("owner", "cannot be empty")
    else:
        owner = owner.strip()

    time_range = parse_time_range(raw.get("timeRange"))
    return UserCostsAmountRequest(auth=auth, owner=owner, time_range=time_range)


def _require_object(raw: Any) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        raise BadRequestError("body", "request body must be an object")
    return raw
