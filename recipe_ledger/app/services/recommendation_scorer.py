# recipe_ledger/app/services/recommendation_scorer.py
"""
Recommendation scorer.

score(user, recipe) = sum(weight(type) * exp(-decay_rate * age_days))
over every interaction event for the pair. The score is a pure function of
the set of timestamped events, so arrival order never matters and a full
replay of the log is always the reference result.
"""
from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Mapping, Optional, Sequence
from uuid import UUID

from recipe_ledger.app.domain.models import InteractionEvent, InteractionType, RankedRecipe
from recipe_ledger.app.infra.db.base import InteractionEventRepository

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0
DEFAULT_HALF_LIFE_DAYS = 14.0
DEFAULT_CACHE_TTL_SECONDS = 300

INTERACTION_WEIGHTS: Mapping[InteractionType, float] = {
    InteractionType.VIEW: 1.0,
    InteractionType.FAVORITE: 5.0,
    InteractionType.UNFAVORITE: -5.0,
    InteractionType.DIARY_LOG: 8.0,
}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def decay_rate_for_half_life(half_life_days: float) -> float:
    if half_life_days <= 0:
        raise ValueError("half_life_days must be positive")
    return math.log(2) / half_life_days


def _days_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / SECONDS_PER_DAY


def score_events(
    events: Iterable[InteractionEvent],
    now: datetime,
    decay_rate: float,
    weights: Mapping[InteractionType, float] = INTERACTION_WEIGHTS,
) -> tuple[float, Optional[datetime]]:
    """Score a set of events for one pair. Returns (score, latest occurred_at)."""
    score = 0.0
    last_event_at: Optional[datetime] = None

    for event in events:
        age_days = _days_between(event.occurred_at, now)
        score += weights[event.event_type] * math.exp(-decay_rate * age_days)
        if last_event_at is None or event.occurred_at > last_event_at:
            last_event_at = event.occurred_at

    return score, last_event_at


def _rank_key(item: RankedRecipe) -> tuple[float, int, float, str]:
    if item.last_event_at is None:
        return (-item.score, 1, 0.0, str(item.recipe_id))
    return (-item.score, 0, -item.last_event_at.timestamp(), str(item.recipe_id))


def order_ranked(items: Iterable[RankedRecipe]) -> list[RankedRecipe]:
    """Score desc, then most recent event desc, then recipe id."""
    return sorted(items, key=_rank_key)


@dataclass
class AffinityEntry:
    """
    Decayed sum expressed at ``anchor``: the score at any time t is
    ``anchored_sum * exp(-rate * days(t - anchor))``.

    ``folded`` holds the ids of every event already summed, so replaying an
    event that also arrives through the listener counts it once.
    """
    anchor: datetime
    anchored_sum: float
    last_event_at: Optional[datetime]
    expires_at: datetime
    ready: bool = False
    folded: set[UUID] = field(default_factory=set)

    def fold(self, event: InteractionEvent, decay_rate: float, weights: Mapping[InteractionType, float]) -> bool:
        if event.id in self.folded:
            return False
        self.folded.add(event.id)

        weight = weights[event.event_type]
        occurred = event.occurred_at

        if occurred > self.anchor:
            self.anchored_sum = self.anchored_sum * math.exp(-decay_rate * _days_between(self.anchor, occurred)) + weight
            self.anchor = occurred
        else:
            self.anchored_sum += weight * math.exp(-decay_rate * _days_between(occurred, self.anchor))

        if self.last_event_at is None or occurred > self.last_event_at:
            self.last_event_at = occurred
        return True

    def score_at(self, now: datetime, decay_rate: float) -> float:
        return self.anchored_sum * math.exp(-decay_rate * _days_between(self.anchor, now))


class AffinityCache:
    """
    In-process materialized view of affinity scores keyed by (user, recipe).

    A miss first reserves an empty entry so live events start folding into
    it, then the entry is filled from a replay of the log. Entries expire
    after ``ttl_seconds`` so events written by other processes are picked up
    by the next replay; expired entries are dropped on every reservation.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS, clock: Callable[[], datetime] = _now_utc):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[tuple[UUID, UUID], AffinityEntry] = {}

    def lookup(self, user_id: UUID, recipe_id: UUID, now: datetime, decay_rate: float) -> Optional[RankedRecipe]:
        """Snapshot of a filled, unexpired entry, or None."""
        with self._lock:
            entry = self._live_entry((user_id, recipe_id))
            if entry is None or not entry.ready:
                return None
            return RankedRecipe(recipe_id, entry.score_at(now, decay_rate), entry.last_event_at)

    def reserve(self, user_id: UUID, recipe_ids: Iterable[UUID], anchor: datetime) -> None:
        with self._lock:
            self._evict_expired()
            expires_at = self._clock() + timedelta(seconds=self.ttl_seconds)
            for recipe_id in recipe_ids:
                self._entries.setdefault(
                    (user_id, recipe_id),
                    AffinityEntry(anchor=anchor, anchored_sum=0.0, last_event_at=None, expires_at=expires_at),
                )

    def fill(
        self,
        user_id: UUID,
        recipe_id: UUID,
        events: Iterable[InteractionEvent],
        now: datetime,
        decay_rate: float,
        weights: Mapping[InteractionType, float],
    ) -> RankedRecipe:
        """
        Fold a replay into a reserved entry and mark it ready. If the
        reservation was invalidated meanwhile, the replay is scored without
        being stored.
        """
        with self._lock:
            entry = self._live_entry((user_id, recipe_id))
            if entry is None:
                entry = AffinityEntry(anchor=now, anchored_sum=0.0, last_event_at=None, expires_at=now)
            for event in events:
                entry.fold(event, decay_rate, weights)
            entry.ready = True
            return RankedRecipe(recipe_id, entry.score_at(now, decay_rate), entry.last_event_at)

    def apply(self, event: InteractionEvent, decay_rate: float, weights: Mapping[InteractionType, float]) -> bool:
        """Fold an event into a cached entry. Returns False if the key is not cached or already has it."""
        with self._lock:
            entry = self._live_entry((event.user_id, event.recipe_id))
            if entry is None:
                return False
            return entry.fold(event, decay_rate, weights)

    def prune(self) -> int:
        with self._lock:
            return self._evict_expired()

    def invalidate(self, user_id: UUID) -> int:
        with self._lock:
            keys = [key for key in self._entries if key[0] == user_id]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # Callers hold self._lock
    def _live_entry(self, key: tuple[UUID, UUID]) -> Optional[AffinityEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _evict_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Affinity cache evicted %d expired entries", len(expired))
        return len(expired)


class RecommendationScorer:
    def __init__(
        self,
        repository: InteractionEventRepository,
        half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
        weights: Optional[Mapping[InteractionType, float]] = None,
        cache: Optional[AffinityCache] = None,
        clock: Callable[[], datetime] = _now_utc,
    ):
        self._repo = repository
        self.decay_rate = decay_rate_for_half_life(half_life_days)
        self.weights = dict(weights or INTERACTION_WEIGHTS)
        self.cache = cache
        self._clock = clock

    def rank(
        self,
        user_id: UUID,
        candidate_recipe_ids: Sequence[UUID],
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[RankedRecipe]:
        """
        Rank candidates for a user. Candidates without events score 0 and
        sort after any candidate with events at equal score.
        """
        now = now or self._clock()
        candidates = list(dict.fromkeys(candidate_recipe_ids))
        if not candidates:
            return []

        if self.cache is None:
            ranked = list(self.recompute(user_id, candidates, now).values())
        else:
            ranked = self._rank_with_cache(user_id, candidates, now)

        ordered = order_ranked(ranked)
        return ordered[:limit] if limit is not None else ordered

    def recompute(
        self,
        user_id: UUID,
        recipe_ids: Sequence[UUID],
        now: Optional[datetime] = None,
    ) -> dict[UUID, RankedRecipe]:
        """Full replay of the log for the given recipes."""
        now = now or self._clock()
        by_recipe = self._events_by_recipe(user_id, recipe_ids)

        results: dict[UUID, RankedRecipe] = {}
        for recipe_id in recipe_ids:
            score, last_event_at = score_events(by_recipe.get(recipe_id, []), now, self.decay_rate, self.weights)
            results[recipe_id] = RankedRecipe(recipe_id=recipe_id, score=score, last_event_at=last_event_at)
        return results

    def observe(self, event: InteractionEvent) -> None:
        """Recorder listener: keep cached entries current."""
        if self.cache is not None:
            self.cache.apply(event, self.decay_rate, self.weights)

    def _rank_with_cache(self, user_id: UUID, candidates: list[UUID], now: datetime) -> list[RankedRecipe]:
        ranked: list[RankedRecipe] = []
        misses: list[UUID] = []

        for recipe_id in candidates:
            hit = self.cache.lookup(user_id, recipe_id, now, self.decay_rate)
            if hit is None:
                misses.append(recipe_id)
            else:
                ranked.append(hit)

        if misses:
            # Reserve first: events recorded during the replay fold into the reserved entry
            self.cache.reserve(user_id, misses, now)
            by_recipe = self._events_by_recipe(user_id, misses)
            for recipe_id in misses:
                ranked.append(self.cache.fill(
                    user_id, recipe_id, by_recipe.get(recipe_id, []), now, self.decay_rate, self.weights,
                ))
            logger.debug("Affinity cache seeded %d entries for user %s", len(misses), user_id)

        return ranked

    def _events_by_recipe(self, user_id: UUID, recipe_ids: Sequence[UUID]) -> dict[UUID, list[InteractionEvent]]:
        by_recipe: dict[UUID, list[InteractionEvent]] = {}
        for event in self._repo.list_events(user_id, list(recipe_ids)):
            by_recipe.setdefault(event.recipe_id, []).append(event)
        return by_recipe
