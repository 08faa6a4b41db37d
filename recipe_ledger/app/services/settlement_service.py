# recipe_ledger/app/services/settlement_service.py
"""
Settlement queries.
Read-side views over COMPLETED unlock records for creators and buyers.
"""
from __future__ import annotations

import logging
from uuid import UUID

from recipe_ledger.app.domain.models import DEFAULT_CURRENCY, CreatorEarnings, UnlockRecord
from recipe_ledger.app.infra.db.base import UnlockLedgerRepository

logger = logging.getLogger(__name__)

EARNINGS_PAGE_SIZE = 500


class SettlementService:
    def __init__(self, ledger: UnlockLedgerRepository, currency: str = DEFAULT_CURRENCY):
        self._ledger = ledger
        self.currency = currency

    def list_settlements(self, creator_id: UUID, limit: int = 50, offset: int = 0) -> list[UnlockRecord]:
        return self._ledger.list_settlements(creator_id, limit=limit, offset=offset)

    def list_purchases(self, user_id: UUID) -> list[UnlockRecord]:
        return self._ledger.list_for_user(user_id)

    def creator_earnings(self, creator_id: UUID) -> CreatorEarnings:
        """
        Totals over every completed sale of a creator's recipes.

        Args:
            creator_id: The creator

        Returns:
            CreatorEarnings in minor units
        """
        earnings = CreatorEarnings(creator_id=creator_id, currency=self.currency)
        offset = 0

        while True:
            page = self._ledger.list_settlements(creator_id, limit=EARNINGS_PAGE_SIZE, offset=offset)
            for record in page:
                earnings.total_sales += 1
                earnings.gross_amount += record.amount_paid
                earnings.platform_fees += record.platform_fee or 0
                earnings.total_earnings += record.creator_payout or 0

            if len(page) < EARNINGS_PAGE_SIZE:
                break
            offset += EARNINGS_PAGE_SIZE

        logger.debug(
            "Creator earnings: creator=%s, sales=%d, earnings=%d",
            creator_id, earnings.total_sales, earnings.total_earnings,
        )
        return earnings
