"""
Request handling and response shaping.

One method per inbound query surface: parse, authenticate, query, and
turn the outcome into a uniform envelope. Classified errors never escape
a handler method; they become ``{"error": ...}`` bodies with the
matching status.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from billing_query.config.loader import AppConfig, build_validator
from billing_query.storage.models import CostsMap, NamespaceBillingRecord
from billing_query.storage.repository import SQLiteBillingStore
from .auth import AuthGate, Identity
from .cancellation import validate_timeout
from .catalog import PropertyCatalog
from .errors import BadRequestError, BillingQueryError
from .requests import (
    UserCostsAmountRequest,
    parse_namespace_billing_history_request,
    parse_user_costs_amount_request,
)
from .service import QueryService

logger = structlog.get_logger(__name__)

STATUS_OK = 200
REDACTED = "[REDACTED]"
SPACED_SEPARATOR = " : "


@dataclass(frozen=True)
class Response:
    """Status code plus JSON-ready body."""
    status: int
    body: Dict[str, Any]

    @property
    def success(self) -> bool:
        return self.status == STATUS_OK


def success_response(data: Dict[str, Any], message: str) -> Response:
    return Response(status=STATUS_OK, body={"data": data, "message": message})


def error_response(
    error: BillingQueryError,
    message: str,
    credential: Optional[str] = None,
    separator: str = ": "
) -> Response:
    """Shape a classified error as a failure envelope.

    The error text is ``message + separator + error.message``. Authentication
    and amount failures pass SPACED_SEPARATOR, giving "authenticate error : ...".
    The credential of the request, if known, is redacted from the text.
    """
    text = f"{message}{separator}{error.message}"
    if credential:
        text = text.replace(credential, REDACTED)
    return Response(status=error.status, body={"error": text})


def format_amount(amount: Decimal) -> str:
    return str(amount)


def format_timestamp(value: datetime) -> str:
    """Format an aware datetime as RFC 3339 in UTC with a "Z" suffix."""
    value = value.astimezone(timezone.utc)
    year = f"{value.year:04d}-"
    if value.microsecond:
        return year + value.strftime("%m-%dT%H:%M:%S.%fZ")
    return year + value.strftime("%m-%dT%H:%M:%SZ")


def format_records(records: List[NamespaceBillingRecord]) -> List[Dict[str, Any]]:
    return [
        {
            "namespace": r.namespace,
            "amount": format_amount(r.amount),
            "timestamp": format_timestamp(r.timestamp),
            "kind": r.kind.value,
        }
        for r in records
    ]


def format_costs(costs: CostsMap) -> Dict[str, Dict[str, str]]:
    return {
        format_timestamp(bucket): {prop: format_amount(amount) for prop, amount in sorted(by_property.items())}
        for bucket, by_property in sorted(costs.items())
    }


class BillingQueryHandler:
    """Transport-facing entry points for the billing queries.

    Each method takes the already-decoded request body and returns a
    Response. Parsing happens before authentication, and authentication
    before any store access.
    """

    def __init__(self, gate: AuthGate, service: QueryService):
        self.gate = gate
        self.service = service

    async def billing_history_list(
        self,
        raw: Any,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Response:
        """Namespace billing history list of the authenticated owner."""
        try:
            validate_timeout(timeout)
            request = parse_namespace_billing_history_request(raw)
        except BadRequestError as e:
            return error_response(e, "failed to parse namespace billing history request")

        credential = request.auth.credential
        try:
            identity = await self.gate.authenticate(request.auth, timeout=timeout, cancel_event=cancel_event)
        except BillingQueryError as e:
            return error_response(e, "authenticate error", credential, separator=SPACED_SEPARATOR)

        try:
            records = await self.service.get_billing_history_namespace_list(
                identity, request, timeout=timeout, cancel_event=cancel_event
            )
        except BillingQueryError as e:
            return error_response(e, "failed to get namespace billing history list", credential)

        return success_response(
            {"list": format_records(records)},
            "successfully retrieved namespace billing history list"
        )

    async def get_properties(
        self,
        raw: Any,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Response:
        """Property catalog; the body is nothing but the auth envelope."""
        try:
            validate_timeout(timeout)
        except BadRequestError as e:
            return error_response(e, "failed to parse properties request")

        credential = raw.get("credential") if isinstance(raw, Mapping) else None
        try:
            identity = await self.gate.authenticate_from_request_envelope(
                raw, timeout=timeout, cancel_event=cancel_event
            )
        except BillingQueryError as e:
            if not isinstance(credential, str):
                credential = None
            return error_response(e, "authenticate error", credential, separator=SPACED_SEPARATOR)

        catalog: PropertyCatalog = await self.service.get_properties(identity)
        return success_response({"properties": catalog.to_dicts()}, "successfully retrieved properties")

    async def get_consumption_amount(
        self,
        raw: Any,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Response:
        return await self._amount_query(
            raw, "user consumption amount", "consumption amount",
            self.service.get_consumption_amount, timeout, cancel_event
        )

    async def get_recharge_amount(
        self,
        raw: Any,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Response:
        return await self._amount_query(
            raw, "user recharge amount", "recharge amount",
            self.service.get_recharge_amount, timeout, cancel_event
        )

    async def get_properties_used_amount(
        self,
        raw: Any,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Response:
        return await self._amount_query(
            raw, "user properties used amount", "properties used amount",
            self.service.get_properties_used_amount, timeout, cancel_event
        )

    async def get_costs(
        self,
        raw: Any,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Response:
        """Hourly cost breakdown by property."""
        request, identity, failure = await self._authenticated_costs_request(
            raw, "user costs", timeout, cancel_event
        )
        if failure is not None:
            return failure

        try:
            costs = await self.service.get_costs(
                identity, request.owner, request.time_range, timeout=timeout, cancel_event=cancel_event
            )
        except BillingQueryError as e:
            return error_response(e, "failed to get costs", request.auth.credential)

        return success_response({"costs": format_costs(costs)}, "successfully retrieved user costs")

    async def _amount_query(
        self,
        raw: Any,
        request_name: str,
        result_name: str,
        query: Callable[..., Awaitable[Decimal]],
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event]
    ) -> Response:
        request, identity, failure = await self._authenticated_costs_request(
            raw, request_name, timeout, cancel_event
        )
        if failure is not None:
            return failure

        try:
            amount = await query(
                identity, request.owner, request.time_range, timeout=timeout, cancel_event=cancel_event
            )
        except BillingQueryError as e:
            return error_response(
                e, f"failed to get {result_name}", request.auth.credential, separator=SPACED_SEPARATOR
            )

        return success_response({"amount": format_amount(amount)}, f"successfully retrieved {request_name}")

    async def _authenticated_costs_request(
        self,
        raw: Any,
        request_name: str,
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event]
    ) -> Tuple[Optional[UserCostsAmountRequest], Optional[Identity], Optional[Response]]:
        """Parse and authenticate; returns (request, identity, failure response)."""
        try:
            validate_timeout(timeout)
            request: UserCostsAmountRequest = parse_user_costs_amount_request(raw)
        except BadRequestError as e:
            logger.info("billing_query.bad_request", request=request_name, field=e.field)
            return None, None, error_response(e, f"failed to parse {request_name} request")

        try:
            identity: Identity = await self.gate.authenticate(
                request.auth, timeout=timeout, cancel_event=cancel_event
            )
        except BillingQueryError as e:
            return None, None, error_response(
                e, "authenticate error", request.auth.credential, separator=SPACED_SEPARATOR
            )

        return request, identity, None


async def create_handler(config: AppConfig) -> BillingQueryHandler:
    """Wire store, validator, gate and service from an AppConfig.

    Args:
        config: Loaded application configuration

    Returns:
        Ready-to-use BillingQueryHandler
    """
    store = SQLiteBillingStore(config.database.path, catalog=config.catalog)
    gate = AuthGate(build_validator(config.auth), timeout=config.auth.timeout_seconds)
    service = await QueryService.create(
        store,
        catalog=config.catalog,
        timeout=config.query.timeout_seconds
    )
    return BillingQueryHandler(gate, service)
