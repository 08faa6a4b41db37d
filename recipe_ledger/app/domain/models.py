# recipe_ledger/app/domain/models.py
"""
Domain models for the unlock ledger and the interaction log.
These are pure data structures with no infrastructure dependencies.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Iterable, Mapping, Optional
from uuid import UUID, uuid4

from recipe_ledger.app.domain.errors import InvalidSettlementError

DEFAULT_CURRENCY = "usd"
DEFAULT_PLATFORM_FEE_PERCENT = 15


class UnlockStatus(str, Enum):
    """Status of a single unlock attempt in the ledger."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class UnlockOutcome(str, Enum):
    """Result status returned to the caller of unlock()."""
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ALREADY_UNLOCKED = "ALREADY_UNLOCKED"


class InteractionType(str, Enum):
    VIEW = "VIEW"
    FAVORITE = "FAVORITE"
    UNFAVORITE = "UNFAVORITE"
    DIARY_LOG = "DIARY_LOG"


def to_minor_units(price: Decimal | float | int | str) -> int:
    """Convert a decimal price (e.g. 4.99) to integer minor units (499)."""
    amount = Decimal(str(price)) * 100
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Recipe:
    """Read-only recipe metadata owned by the catalog."""
    id: UUID
    creator_id: UUID
    price_minor: int
    is_paid: bool

    @property
    def requires_purchase(self) -> bool:
        return self.is_paid and self.price_minor > 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Recipe":
        """Build from a ``recipes`` row: ``id``, ``user_id``, decimal ``price``, ``is_paid``."""
        price = row.get("price")
        return cls(
            id=UUID(str(row["id"])),
            creator_id=UUID(str(row["user_id"])),
            price_minor=to_minor_units(price) if price is not None else 0,
            is_paid=bool(row.get("is_paid")),
        )


@dataclass(frozen=True)
class RevenueSplit:
    amount_paid: int
    platform_fee: int
    creator_payout: int

    def verify(self, fee_percent: int = DEFAULT_PLATFORM_FEE_PERCENT) -> None:
        """
        Check the split is the one the ledger would compute.

        Raises:
            InvalidSettlementError: if the parts do not add up or the fee
                is not round(amount * fee_percent / 100)
        """
        if self.platform_fee + self.creator_payout != self.amount_paid:
            raise InvalidSettlementError(
                self.amount_paid, self.platform_fee, self.creator_payout,
                "fee and payout do not sum to amount paid",
            )
        expected = split_revenue(self.amount_paid, fee_percent)
        if expected.platform_fee != self.platform_fee:
            raise InvalidSettlementError(
                self.amount_paid, self.platform_fee, self.creator_payout,
                f"expected platform fee {expected.platform_fee}",
            )


def split_revenue(amount_paid: int, fee_percent: int = DEFAULT_PLATFORM_FEE_PERCENT) -> RevenueSplit:
    """
    Split an amount in minor units between platform and creator.

    The fee is rounded half-up in integer arithmetic and the payout is the
    remainder, so the two parts always sum to the amount exactly.
    """
    if amount_paid < 0:
        raise InvalidSettlementError(amount_paid, 0, 0, "amount cannot be negative")
    if not 0 <= fee_percent <= 100:
        raise InvalidSettlementError(amount_paid, 0, 0, f"fee percent out of range: {fee_percent}")

    platform_fee = (amount_paid * fee_percent + 50) // 100
    return RevenueSplit(
        amount_paid=amount_paid,
        platform_fee=platform_fee,
        creator_payout=amount_paid - platform_fee,
    )


@dataclass
class UnlockRecord:
    """
    One unlock attempt for a (user, recipe) pair.
    At most one COMPLETED record exists per pair; FAILED records are kept.
    """
    id: UUID
    user_id: UUID
    recipe_id: UUID
    creator_id: UUID
    amount_paid: int
    status: UnlockStatus
    currency: str = DEFAULT_CURRENCY
    platform_fee: Optional[int] = None
    creator_payout: Optional[int] = None
    external_authorization_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def pending(
        cls,
        user_id: UUID,
        recipe_id: UUID,
        creator_id: UUID,
        amount_paid: int,
        created_at: datetime,
        currency: str = DEFAULT_CURRENCY,
    ) -> "UnlockRecord":
        return cls(
            id=uuid4(),
            user_id=user_id,
            recipe_id=recipe_id,
            creator_id=creator_id,
            amount_paid=amount_paid,
            status=UnlockStatus.PENDING,
            currency=currency,
            created_at=created_at,
        )

    @property
    def is_live(self) -> bool:
        """PENDING and COMPLETED records block a new attempt for the same key."""
        return self.status in (UnlockStatus.PENDING, UnlockStatus.COMPLETED)

    @property
    def is_terminal(self) -> bool:
        return self.status in (UnlockStatus.COMPLETED, UnlockStatus.FAILED)

    @property
    def split(self) -> Optional[RevenueSplit]:
        if self.platform_fee is None or self.creator_payout is None:
            return None
        return RevenueSplit(self.amount_paid, self.platform_fee, self.creator_payout)


@dataclass
class UnlockResult:
    """What the caller of unlock() gets back."""
    status: UnlockOutcome
    amount_paid: int = 0
    platform_fee: int = 0
    creator_payout: int = 0
    record_id: Optional[UUID] = None
    authorization_id: Optional[str] = None
    failure_reason: Optional[str] = None
    retryable: bool = False

    @property
    def is_unlocked(self) -> bool:
        return self.status in (UnlockOutcome.COMPLETED, UnlockOutcome.ALREADY_UNLOCKED)

    @classmethod
    def from_record(cls, record: UnlockRecord, status: UnlockOutcome) -> "UnlockResult":
        return cls(
            status=status,
            amount_paid=record.amount_paid,
            platform_fee=record.platform_fee or 0,
            creator_payout=record.creator_payout or 0,
            record_id=record.id,
            authorization_id=record.external_authorization_id,
            failure_reason=record.failure_reason,
        )


@dataclass(frozen=True)
class AuthorizationResult:
    """Successful response from an Authorizer."""
    authorization_id: str
    amount: int


@dataclass(frozen=True)
class InteractionEvent:
    user_id: UUID
    recipe_id: UUID
    event_type: InteractionType
    occurred_at: datetime
    id: UUID = field(default_factory=uuid4)
    recorded_at: Optional[datetime] = None


@dataclass(frozen=True)
class RankedRecipe:
    recipe_id: UUID
    score: float
    last_event_at: Optional[datetime] = None


@dataclass
class CreatorEarnings:
    creator_id: UUID
    total_sales: int = 0
    gross_amount: int = 0
    platform_fees: int = 0
    total_earnings: int = 0
    currency: str = DEFAULT_CURRENCY


def current_favorite_state(events: Iterable[InteractionEvent]) -> bool:
    """
    Derive whether a recipe is currently favorited from its event history.
    The latest FAVORITE/UNFAVORITE by occurred_at wins.
    """
    toggles = [
        event for event in events
        if event.event_type in (InteractionType.FAVORITE, InteractionType.UNFAVORITE)
    ]
    if not toggles:
        return False

    epoch = datetime.min.replace(tzinfo=timezone.utc)
    latest = max(toggles, key=lambda event: (event.occurred_at, event.recorded_at or epoch))
    return latest.event_type == InteractionType.FAVORITE
