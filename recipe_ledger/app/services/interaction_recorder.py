# recipe_ledger/app/services/interaction_recorder.py
"""
Interaction recorder.
Appends view/favorite/diary-log events to the interaction log.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID

from recipe_ledger.app.domain.errors import ClockSkewTooLargeError, InteractionRepositoryError
from recipe_ledger.app.domain.models import (
    InteractionEvent,
    InteractionType,
    current_favorite_state,
    ensure_utc,
)
from recipe_ledger.app.infra.db.base import InteractionEventRepository

logger = logging.getLogger(__name__)

DEFAULT_MAX_CLOCK_SKEW_SECONDS = 300

EventListener = Callable[[InteractionEvent], None]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class InteractionRecorder:
    """
    Append-only recorder. It never deduplicates: two FAVORITE events in a
    row are both stored, and readers derive current state from the log.
    """

    def __init__(
        self,
        repository: InteractionEventRepository,
        max_clock_skew_seconds: int = DEFAULT_MAX_CLOCK_SKEW_SECONDS,
        clock: Callable[[], datetime] = _now_utc,
    ):
        self._repo = repository
        self.max_clock_skew_seconds = max_clock_skew_seconds
        self._clock = clock
        self._listeners: list[EventListener] = []

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def record(
        self,
        user_id: UUID,
        recipe_id: UUID,
        event_type: InteractionType,
        occurred_at: Optional[datetime] = None,
    ) -> InteractionEvent:
        """
        Append an event.

        Raises:
            ClockSkewTooLargeError: occurred_at is too far in the future
            InteractionRepositoryError: the log could not be written
        """
        now = self._clock()
        occurred = ensure_utc(occurred_at) if occurred_at else now

        if occurred - now > timedelta(seconds=self.max_clock_skew_seconds):
            raise ClockSkewTooLargeError(occurred, self.max_clock_skew_seconds)

        event = self._repo.append(
            InteractionEvent(
                user_id=user_id,
                recipe_id=recipe_id,
                event_type=InteractionType(event_type),
                occurred_at=occurred,
                recorded_at=now,
            )
        )
        self._notify(event)
        return event

    def record_best_effort(
        self,
        user_id: UUID,
        recipe_id: UUID,
        event_type: InteractionType,
        occurred_at: Optional[datetime] = None,
    ) -> Optional[InteractionEvent]:
        """
        Like record(), but storage failures only degrade recommendations:
        they are logged and None is returned.
        """
        try:
            return self.record(user_id, recipe_id, event_type, occurred_at)
        except InteractionRepositoryError as error:
            logger.warning(
                "Interaction not recorded: user=%s, recipe=%s, type=%s, error=%s",
                user_id, recipe_id, event_type, error,
            )
            return None

    def is_favorited(self, user_id: UUID, recipe_id: UUID) -> bool:
        return current_favorite_state(self._repo.list_events(user_id, [recipe_id]))

    def _notify(self, event: InteractionEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Interaction listener failed for event %s", event.id)
