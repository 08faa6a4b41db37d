from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from recipe_ledger.app.domain.models import UnlockStatus
from recipe_ledger.app.infra.db.base import UnlockLedgerRepository

logger = logging.getLogger(__name__)

DEFAULT_PENDING_STALE_SECONDS = 60
DEFAULT_BATCH_SIZE = 100
STALE_FAILURE_REASON = "Authorization did not complete in time"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class LedgerSweeper:
    """
    Fails PENDING unlock records that outlived the stale threshold.

    Uses the ledger's PENDING-guarded transition, so several sweepers and
    live unlock calls can run at the same time without double transitions.
    """

    def __init__(
        self,
        ledger: UnlockLedgerRepository,
        stale_after_seconds: int = DEFAULT_PENDING_STALE_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = _now_utc,
    ):
        self._ledger = ledger
        self.stale_after_seconds = stale_after_seconds
        self.batch_size = batch_size
        self._clock = clock

    def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Returns:
            Number of records this call moved to FAILED
        """
        now = now or self._clock()
        cutoff = now - timedelta(seconds=self.stale_after_seconds)
        reclaimed = 0

        while True:
            stale = self._ledger.find_stale_pending(cutoff, limit=self.batch_size)
            batch_reclaimed = 0

            for record in stale:
                failed = self._ledger.transition(
                    record,
                    UnlockStatus.FAILED,
                    failure_reason=STALE_FAILURE_REASON,
                    now=now,
                )
                if failed is not None:
                    batch_reclaimed += 1
                    logger.warning(
                        "Reclaimed stale unlock: record=%s, user=%s, recipe=%s, created_at=%s",
                        record.id, record.user_id, record.recipe_id, record.created_at,
                    )

            reclaimed += batch_reclaimed
            if len(stale) < self.batch_size or batch_reclaimed == 0:
                break

        if reclaimed:
            logger.info("Sweep reclaimed %d stale unlock records", reclaimed)
        return reclaimed
