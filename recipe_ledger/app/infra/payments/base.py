# recipe_ledger/app/infra/payments/base.py
"""
Abstract base class for payment authorizers.
Any real gateway implements this interface so the ledger never sees vendor specifics.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Mapping, Optional

from recipe_ledger.app.domain.models import AuthorizationResult


class Authorizer(ABC):
    """
    Approves or declines a one-time charge.

    Implementations:
    - SimulatedAuthorizer: approves everything except decline test tokens
    - HttpAuthorizer: delegates to an HTTP authorization endpoint
    """

    @abstractmethod
    def authorize(
        self,
        token: str,
        amount: int,
        currency: str,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> AuthorizationResult:
        """
        Authorize a charge of ``amount`` minor units.

        Args:
            token: Payment authorization token collected by the client
            amount: Exact amount in minor units
            currency: ISO currency code, lowercase
            metadata: Reference data forwarded to the gateway

        Returns:
            AuthorizationResult on approval

        Raises:
            AuthorizationDeclinedError: the charge was declined
            AuthorizationTimeoutError: the gateway did not answer in time
            AuthorizerUnavailableError: the gateway could not be reached
        """
        pass
