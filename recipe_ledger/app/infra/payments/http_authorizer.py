from __future__ import annotations

import logging
from typing import Mapping, Optional

import httpx

from recipe_ledger.app.domain.errors import (
    AuthorizationDeclinedError,
    AuthorizationTimeoutError,
    AuthorizerUnavailableError,
)
from recipe_ledger.app.domain.models import AuthorizationResult
from recipe_ledger.app.infra.payments.base import Authorizer

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DECLINE_STATUS_CODES = (402, 422)


class HttpAuthorizer(Authorizer):
    """
    Calls ``POST {base_url}/authorize`` with the token and amount.

    The endpoint answers 200 with ``{"authorization_id": ..., "amount": ...}``
    on approval, where ``amount`` is what was actually authorized,
    and 402 with ``{"reason": ...}`` on decline.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ):
        if not base_url:
            raise ValueError("Authorizer base_url is required")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def authorize(
        self,
        token: str,
        amount: int,
        currency: str,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> AuthorizationResult:
        payload = {
            "token": token,
            "amount": amount,
            "currency": currency,
            "metadata": dict(metadata or {}),
        }

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    f"{self.base_url}/authorize",
                    json=payload,
                    headers=self._headers(),
                )
        except httpx.TimeoutException as error:
            raise AuthorizationTimeoutError(self.timeout) from error
        except httpx.HTTPError as error:
            raise AuthorizerUnavailableError(str(error)) from error

        if response.status_code in DECLINE_STATUS_CODES:
            reason = self._read_reason(response) or "Payment declined"
            logger.info("Authorization declined: amount=%d %s, reason=%s", amount, currency, reason)
            raise AuthorizationDeclinedError(reason)

        if response.status_code >= 400:
            raise AuthorizerUnavailableError(f"HTTP {response.status_code}")

        try:
            body = response.json()
            authorization_id = str(body["authorization_id"])
            authorized_amount = int(body["amount"])
        except (ValueError, KeyError, TypeError) as error:
            raise AuthorizerUnavailableError(f"Malformed authorizer response: {error}") from error

        if authorized_amount != amount:
            logger.warning(
                "Authorizer approved a different amount: requested=%d, authorized=%d, id=%s",
                amount, authorized_amount, authorization_id,
            )

        return AuthorizationResult(authorization_id=authorization_id, amount=authorized_amount)

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}"}

    @staticmethod
    def _read_reason(response: httpx.Response) -> str | None:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict) and body.get("reason"):
            return str(body["reason"])
        return None
