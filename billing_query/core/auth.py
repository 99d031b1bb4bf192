"""
Authentication gate.

Every query passes through the gate before touching the billing store.
The gate delegates credential checks to an external validator and fails
closed on anything other than a positive answer.
"""

import asyncio
import hmac
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol

import httpx
import structlog

from .cancellation import run_cancellable, validate_timeout
from .errors import QueryCancelledError, UnauthorizedError

logger = structlog.get_logger(__name__)


class ValidationOutcome(Enum):
    """Answer of an external credential validator."""
    VALID = "valid"
    INVALID = "invalid"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Auth:
    """Claimed owner identity plus opaque proof, scoped to one request."""
    owner: str
    credential: str = field(repr=False)


@dataclass(frozen=True)
class Identity:
    """Owner identity confirmed by the authentication gate."""
    owner: str


class CredentialValidator(Protocol):
    """External service that checks a credential against an owner."""

    async def validate(self, owner: str, credential: str) -> ValidationOutcome:
        ...


class StaticCredentialValidator:
    """Validator over a fixed owner -> token mapping loaded from config."""

    def __init__(self, credentials: Mapping[str, str]):
        self._credentials: Dict[str, str] = dict(credentials)

    async def validate(self, owner: str, credential: str) -> ValidationOutcome:
        expected = self._credentials.get(owner)
        if expected is None:
            return ValidationOutcome.INVALID
        if hmac.compare_digest(expected.encode("utf-8"), credential.encode("utf-8")):
            return ValidationOutcome.VALID
        return ValidationOutcome.INVALID


class HttpCredentialValidator:
    """Validator that asks a remote credential service over HTTP.

    POSTs ``{"owner", "credential"}`` to the configured URL. A 2xx reply
    means valid, 401/403 means invalid, and any other status or transport
    error means the validator is unavailable.

    Args:
        url: Endpoint of the credential service.
        timeout: Per-request timeout in seconds.
        client: Optional pre-built client (tests inject a mock transport).
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def validate(self, owner: str, credential: str) -> ValidationOutcome:
        payload = {"owner": owner, "credential": credential}
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("billing_query.validator_unreachable", url=self.url, error=type(e).__name__)
            return ValidationOutcome.UNAVAILABLE

        if response.is_success:
            return ValidationOutcome.VALID
        if response.status_code in (401, 403):
            return ValidationOutcome.INVALID
        logger.warning("billing_query.validator_error", url=self.url, status=response.status_code)
        return ValidationOutcome.UNAVAILABLE


class AuthGate:
    """Authenticates requests before any query executes."""

    def __init__(self, validator: CredentialValidator, timeout: Optional[float] = None):
        """Initialize the gate.

        Args:
            validator: External credential validator
            timeout: Default time limit in seconds for one validation
        """
        self.validator = validator
        self.timeout = timeout

    async def authenticate(
        self,
        auth: Auth,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Identity:
        """Verify the credential against the claimed owner.

        Args:
            auth: Owner and credential of the request
            timeout: Time limit overriding the gate default
            cancel_event: Event that aborts validation when set

        Returns:
            Identity of the authenticated owner

        Raises:
            UnauthorizedError: If the credential is invalid, the validator is
                unavailable, or the validator fails in any way
            QueryCancelledError: If the timeout or cancel signal fires first
            BadRequestError: If timeout is not positive
        """
        if not auth.owner or not auth.credential:
            raise UnauthorizedError("owner and credential are required")
        validate_timeout(timeout)

        try:
            outcome = await run_cancellable(
                self.validator.validate(auth.owner, auth.credential),
                "credential validation",
                timeout=timeout if timeout is not None else self.timeout,
                cancel_event=cancel_event
            )
        except QueryCancelledError:
            raise
        except Exception as e:
            # Fail closed on any validator error
            logger.warning("billing_query.auth_failed", owner=auth.owner, reason=type(e).__name__)
            raise UnauthorizedError(f"credential validator failed: {type(e).__name__}") from e

        if outcome == ValidationOutcome.VALID:
            return Identity(owner=auth.owner)

        logger.info("billing_query.auth_rejected", owner=auth.owner, outcome=outcome.value)
        if outcome == ValidationOutcome.UNAVAILABLE:
            raise UnauthorizedError("credential validator unavailable")
        raise UnauthorizedError("invalid credential")

    async def authenticate_from_request_envelope(
        self,
        envelope: Any,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Identity:
        """Bind owner and credential from inbound input and authenticate.

        Used by requests that carry nothing but authentication. A binding
        failure is reported as UnauthorizedError.
        """
        auth = bind_auth(envelope)
        return await self.authenticate(auth, timeout=timeout, cancel_event=cancel_event)


def bind_auth(envelope: Any) -> Auth:
    """Bind an Auth value from a raw ``{"owner", "credential"}`` mapping.

    Raises:
        UnauthorizedError: If the envelope cannot be bound
    """
    if not isinstance(envelope, Mapping):
        raise UnauthorizedError("failed to bind auth: request body must be an object")

    owner = envelope.get("owner")
    credential = envelope.get("credential")
    if not isinstance(owner, str) or not owner.strip():
        raise UnauthorizedError("failed to bind auth: owner is required")
    if not isinstance(credential, str) or not credential:
        raise UnauthorizedError("failed to bind auth: credential is required")
    return Auth(owner=owner.strip(), credential=credential)
