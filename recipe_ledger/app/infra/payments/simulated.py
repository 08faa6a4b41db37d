from __future__ import annotations

import logging
import time
from typing import Mapping, Optional
from uuid import uuid4

from recipe_ledger.app.domain.errors import AuthorizationDeclinedError
from recipe_ledger.app.domain.models import AuthorizationResult
from recipe_ledger.app.infra.payments.base import Authorizer

logger = logging.getLogger(__name__)

DECLINE_TOKEN_PREFIX = "tok_decline"


class SimulatedAuthorizer(Authorizer):
    """
    Stand-in gateway for local development: waits ``delay_seconds`` and
    approves, unless the token starts with ``tok_decline``.
    """

    def __init__(self, delay_seconds: float = 0.0):
        self.delay_seconds = delay_seconds

    def authorize(
        self,
        token: str,
        amount: int,
        currency: str,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> AuthorizationResult:
        if self.delay_seconds > 0:
            time.sleep(self.delay_seconds)

        if not token or token.startswith(DECLINE_TOKEN_PREFIX):
            logger.info("Simulated authorization declined: amount=%d %s", amount, currency)
            raise AuthorizationDeclinedError("Card declined")

        authorization_id = f"sim_{uuid4().hex}"
        logger.info("Simulated authorization approved: id=%s, amount=%d %s", authorization_id, amount, currency)
        return AuthorizationResult(authorization_id=authorization_id, amount=amount)
