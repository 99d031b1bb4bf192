"""
Tests for request handling and response shaping.

Runs raw request bodies through parse, authenticate and query, and checks
the resulting envelopes and status codes.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from billing_query.config.loader import AppConfig, AuthConfig, DatabaseConfig
from billing_query.core.auth import AuthGate
from billing_query.core.catalog import DEFAULT_PROPERTY_CATALOG
from billing_query.core.errors import BadRequestError, UnauthorizedError
from billing_query.core.handler import (
    BillingQueryHandler,
    create_handler,
    error_response,
    format_costs,
    format_timestamp,
)
from billing_query.core.service import QueryService
from conftest import CREDENTIALS, NOW, T1, T2

ALICE_AUTH = {"owner": "alice", "credential": "alice-token"}
RANGE = {"startTime": "2024-01-01T10:00:00Z", "endTime": "2024-01-01T12:30:01Z"}


@pytest.fixture
def handler(gate, service):
    return BillingQueryHandler(gate, service)


@pytest.fixture
def guarded_handler(gate, untouchable_store):
    """Handler whose store fails the test when reached."""
    return BillingQueryHandler(gate, QueryService(untouchable_store, DEFAULT_PROPERTY_CATALOG))


class TestAmountEnvelopes:
    """Test successful amount responses."""

    async def test_consumption_amount(self, handler):
        response = await handler.get_consumption_amount({"auth": ALICE_AUTH, "timeRange": RANGE})

        assert response.status == 200
        assert response.success
        assert response.body == {
            "data": {"amount": "25"},
            "message": "successfully retrieved user consumption amount"
        }

    async def test_recharge_amount(self, handler):
        response = await handler.get_recharge_amount({"auth": ALICE_AUTH, "timeRange": RANGE})
        assert response.body["data"] == {"amount": "50"}

    async def test_properties_used_amount(self, handler):
        response = await handler.get_properties_used_amount({"auth": ALICE_AUTH})
        assert response.body["data"] == {"amount": "25"}

    async def test_range_starting_before_year_1000(self, handler):
        response = await handler.get_consumption_amount({
            "auth": ALICE_AUTH,
            "timeRange": {"startTime": "0999-01-01T00:00:00Z", "endTime": "2025-01-01T00:00:00Z"}
        })
        assert response.body["data"] == {"amount": "25"}

    async def test_zero_amount_is_success(self, handler):
        """No usage in range is success with a zero amount."""
        response = await handler.get_consumption_amount({
            "auth": ALICE_AUTH,
            "timeRange": {"startTime": "2020-01-01T00:00:00Z", "endTime": "2020-01-02T00:00:00Z"}
        })
        assert response.status == 200
        assert Decimal(response.body["data"]["amount"]) == 0


class TestCostsEnvelope:
    """Test the costs breakdown response."""

    async def test_costs(self, handler):
        response = await handler.get_costs({"auth": ALICE_AUTH})

        assert response.status == 200
        assert response.body["message"] == "successfully retrieved user costs"
        assert response.body["data"]["costs"] == {
            "2024-01-01T10:00:00Z": {"cpu": "6.5", "memory": "3.5"},
            "2024-01-01T12:00:00Z": {"cpu": "9", "storage": "6"},
        }

    def test_format_costs_sorted(self):
        costs = {
            T2: {"storage": Decimal("1"), "cpu": Decimal("2")},
            T1: {"memory": Decimal("3")},
        }
        formatted = format_costs(costs)
        assert list(formatted) == ["2024-01-01T10:00:00Z", "2024-01-01T12:30:00Z"]
        assert list(formatted["2024-01-01T12:30:00Z"]) == ["cpu", "storage"]

    def test_format_timestamp_fraction(self):
        assert format_timestamp(NOW.replace(microsecond=500)) == "2024-01-02T00:00:00.000500Z"

    def test_format_timestamp_early_year_padded(self):
        assert format_timestamp(datetime(999, 1, 1, tzinfo=timezone.utc)) == "0999-01-01T00:00:00Z"


class TestHistoryAndProperties:
    """Test the list and catalog responses."""

    async def test_billing_history_list(self, handler):
        response = await handler.billing_history_list({"auth": ALICE_AUTH, "kind": "consumption"})

        assert response.status == 200
        assert response.body["message"] == "successfully retrieved namespace billing history list"
        assert response.body["data"]["list"] == [
            {"namespace": "ns-alice-dev", "amount": "15", "timestamp": "2024-01-01T12:30:00Z", "kind": "consumption"},
            {"namespace": "ns-alice", "amount": "10", "timestamp": "2024-01-01T10:00:00Z", "kind": "consumption"},
        ]

    async def test_get_properties(self, handler):
        response = await handler.get_properties(ALICE_AUTH)

        assert response.status == 200
        names = [p["name"] for p in response.body["data"]["properties"]]
        assert names == DEFAULT_PROPERTY_CATALOG.names
        assert response.body["data"]["properties"][0] == {
            "name": "cpu", "enum": 0, "unit": "millicore", "displayName": "CPU"
        }

    async def test_get_properties_bad_envelope_unauthorized(self, handler):
        response = await handler.get_properties({"owner": "alice"})
        assert response.status == 401
        assert response.body["error"].startswith("authenticate error : ")


class TestErrorEnvelopes:
    """Test classification of failures and short-circuiting."""

    async def test_bad_request(self, guarded_handler):
        response = await guarded_handler.get_consumption_amount({
            "auth": ALICE_AUTH,
            "timeRange": {"startTime": "2024-02-01T00:00:00Z", "endTime": "2024-01-01T00:00:00Z"}
        })
        assert response.status == 400
        assert not response.success
        assert response.body == {
            "error": "failed to parse user consumption amount request: "
                     "timeRange: startTime must not be after endTime"
        }

    async def test_bad_request_before_authentication(self, untouchable_store):
        """Malformed input is rejected without calling the validator."""
        validator = AsyncMock()
        handler = BillingQueryHandler(
            AuthGate(validator), QueryService(untouchable_store, DEFAULT_PROPERTY_CATALOG)
        )
        response = await handler.get_costs({"auth": ALICE_AUTH, "timeRange": {"startTime": "yesterday"}})
        assert response.status == 400
        validator.validate.assert_not_called()

    @pytest.mark.parametrize("operation", [
        "billing_history_list",
        "get_properties",
        "get_consumption_amount",
        "get_recharge_amount",
        "get_properties_used_amount",
        "get_costs",
    ])
    async def test_invalid_credential_never_reaches_store(self, guarded_handler, operation):
        bad_auth = {"owner": "alice", "credential": "wrong"}
        raw = bad_auth if operation == "get_properties" else {"auth": bad_auth}

        response = await getattr(guarded_handler, operation)(raw)

        assert response.status == 401
        assert response.body["error"] == "authenticate error : invalid credential"

    @pytest.mark.parametrize("operation", [
        "get_consumption_amount",
        "get_recharge_amount",
        "get_properties_used_amount",
        "get_costs",
    ])
    async def test_other_owner_forbidden(self, guarded_handler, operation):
        """alice's valid credential cannot read bob's figures."""
        response = await getattr(guarded_handler, operation)({"auth": ALICE_AUTH, "owner": "bob"})
        assert response.status == 403
        assert "may not query billing data of 'bob'" in response.body["error"]

    async def test_storage_failure_not_zero(self, gate):
        store = AsyncMock()
        store.get_recharge_amount.side_effect = RuntimeError("database is locked")
        handler = BillingQueryHandler(gate, QueryService(store, DEFAULT_PROPERTY_CATALOG))

        response = await handler.get_recharge_amount({"auth": ALICE_AUTH})

        assert response.status == 500
        assert "data" not in response.body
        assert response.body["error"].startswith("failed to get recharge amount : ")
        assert "database is locked" in response.body["error"]

    async def test_credential_redacted_from_errors(self, gate):
        store = AsyncMock()
        store.get_costs.side_effect = RuntimeError("bad token alice-token in query")
        handler = BillingQueryHandler(gate, QueryService(store, DEFAULT_PROPERTY_CATALOG))

        response = await handler.get_costs({"auth": ALICE_AUTH})

        assert response.status == 500
        assert "alice-token" not in response.body["error"]
        assert "[REDACTED]" in response.body["error"]

    @pytest.mark.parametrize("time_range", [
        {"startTime": "0001-01-01T00:00:00+01:00"},
        {"endTime": "9999-12-31T23:59:59-01:00"},
    ])
    async def test_instant_beyond_datetime_range_is_bad_request(self, guarded_handler, time_range):
        response = await guarded_handler.get_consumption_amount({"auth": ALICE_AUTH, "timeRange": time_range})
        assert response.status == 400
        assert "out of range" in response.body["error"]

    @pytest.mark.parametrize("timeout", [0, -1])
    @pytest.mark.parametrize("operation", [
        "billing_history_list",
        "get_properties",
        "get_consumption_amount",
        "get_costs",
    ])
    async def test_non_positive_timeout_is_bad_request(self, untouchable_store, operation, timeout):
        """An unmeetable time limit is rejected before the validator runs."""
        validator = AsyncMock()
        handler = BillingQueryHandler(
            AuthGate(validator), QueryService(untouchable_store, DEFAULT_PROPERTY_CATALOG)
        )
        raw = ALICE_AUTH if operation == "get_properties" else {"auth": ALICE_AUTH}

        response = await getattr(handler, operation)(raw, timeout=timeout)

        assert response.status == 400
        assert response.body["error"].endswith("request: timeout: must be > 0")
        validator.validate.assert_not_called()

    async def test_timeout_is_cancelled(self, gate):
        async def slow(*args):
            await asyncio.sleep(10)

        store = AsyncMock()
        store.get_consumption_amount.side_effect = slow
        handler = BillingQueryHandler(gate, QueryService(store, DEFAULT_PROPERTY_CATALOG))

        response = await handler.get_consumption_amount({"auth": ALICE_AUTH}, timeout=0.01)

        assert response.status == 408
        assert "timed out" in response.body["error"]


class TestCreateHandler:
    """Test wiring from configuration."""

    async def test_create_handler_from_config(self, db_path):
        config = AppConfig(
            database=DatabaseConfig(path=db_path),
            auth=AuthConfig(credentials=CREDENTIALS)
        )
        handler = await create_handler(config)

        response = await handler.get_recharge_amount({"auth": ALICE_AUTH})
        assert response.body["data"] == {"amount": "50"}


class TestErrorResponse:
    """Test failure envelope text."""

    def test_default_separator(self):
        response = error_response(BadRequestError("limit", "must be > 0"), "failed to parse costs request")
        assert response.status == 400
        assert response.body == {"error": "failed to parse costs request: limit: must be > 0"}

    def test_spaced_separator(self):
        response = error_response(UnauthorizedError("invalid credential"), "authenticate error", separator=" : ")
        assert response.status == 401
        assert response.body == {"error": "authenticate error : invalid credential"}
