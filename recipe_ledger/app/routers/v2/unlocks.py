# recipe_ledger/app/routers/v2/unlocks.py
"""
Unlock routes: purchase a paid recipe, check entitlement, creator settlements.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from recipe_ledger.app.deps import (
    CurrentUser,
    get_current_user,
    get_entitlement_gate,
    get_settlement_service,
    get_unlock_service,
)
from recipe_ledger.app.domain.errors import (
    InvalidSettlementError,
    LedgerConflictError,
    LedgerRepositoryError,
    RecipeNotFoundError,
    UnlockInProgressError,
)
from recipe_ledger.app.domain.models import UnlockRecord, UnlockResult
from recipe_ledger.app.services.entitlement_gate import EntitlementGate
from recipe_ledger.app.services.settlement_service import SettlementService
from recipe_ledger.app.services.unlock_service import UnlockService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v2/unlocks", tags=["Unlocks V2"])


# =============================================================================
# Request/Response Models
# =============================================================================

class UnlockRequest(BaseModel):
    """Request to unlock a paid recipe."""
    authorization_token: str = Field(..., min_length=1, description="Token from the payment flow")


class UnlockResponse(BaseModel):
    """Outcome of an unlock attempt. Amounts are in minor units."""
    status: str = Field(..., description="COMPLETED, FAILED or ALREADY_UNLOCKED")
    unlocked: bool
    amount_paid: int = 0
    platform_fee: int = 0
    creator_payout: int = 0
    record_id: Optional[str] = None
    authorization_id: Optional[str] = None
    failure_reason: Optional[str] = None
    retryable: bool = False


class UnlockRecordResponse(BaseModel):
    id: str
    user_id: str
    recipe_id: str
    creator_id: str
    status: str
    amount_paid: int
    platform_fee: Optional[int] = None
    creator_payout: Optional[int] = None
    currency: str
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class EntitlementResponse(BaseModel):
    recipe_id: str
    unlocked: bool
    record: Optional[UnlockRecordResponse] = None


class SettlementListResponse(BaseModel):
    settlements: List[UnlockRecordResponse]
    limit: int
    offset: int


class EarningsResponse(BaseModel):
    """Totals over completed sales of the creator's recipes."""
    creator_id: str
    total_sales: int
    gross_amount: int
    platform_fees: int
    total_earnings: int
    currency: str


# =============================================================================
# Helper Functions
# =============================================================================

def _parse_uuid(value: str, what: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {what} format",
        )


def _result_to_response(result: UnlockResult) -> UnlockResponse:
    return UnlockResponse(
        status=result.status.value,
        unlocked=result.is_unlocked,
        amount_paid=result.amount_paid,
        platform_fee=result.platform_fee,
        creator_payout=result.creator_payout,
        record_id=str(result.record_id) if result.record_id else None,
        authorization_id=result.authorization_id,
        failure_reason=result.failure_reason,
        retryable=result.retryable,
    )


def _record_to_response(record: UnlockRecord) -> UnlockRecordResponse:
    return UnlockRecordResponse(
        id=str(record.id),
        user_id=str(record.user_id),
        recipe_id=str(record.recipe_id),
        creator_id=str(record.creator_id),
        status=record.status.value,
        amount_paid=record.amount_paid,
        platform_fee=record.platform_fee,
        creator_payout=record.creator_payout,
        currency=record.currency,
        failure_reason=record.failure_reason,
        created_at=record.created_at,
        completed_at=record.completed_at,
    )


# =============================================================================
# Routes
# =============================================================================

@router.get("/settlements", response_model=SettlementListResponse)
def list_settlements(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    current_user: CurrentUser = Depends(get_current_user),
    settlements: SettlementService = Depends(get_settlement_service),
):
    """
    Completed sales of the current user's recipes, newest first.
    """
    creator_id = _parse_uuid(current_user.id, "user ID")

    try:
        records = settlements.list_settlements(creator_id, limit=limit, offset=offset)
    except LedgerRepositoryError as e:
        logger.error("Failed to list settlements: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ledger unavailable",
        )

    return SettlementListResponse(
        settlements=[_record_to_response(r) for r in records],
        limit=limit,
        offset=offset,
    )


@router.get("/earnings", response_model=EarningsResponse)
def get_earnings(
    current_user: CurrentUser = Depends(get_current_user),
    settlements: SettlementService = Depends(get_settlement_service),
):
    creator_id = _parse_uuid(current_user.id, "user ID")

    try:
        earnings = settlements.creator_earnings(creator_id)
    except LedgerRepositoryError as e:
        logger.error("Failed to compute earnings: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ledger unavailable",
        )

    return EarningsResponse(
        creator_id=str(earnings.creator_id),
        total_sales=earnings.total_sales,
        gross_amount=earnings.gross_amount,
        platform_fees=earnings.platform_fees,
        total_earnings=earnings.total_earnings,
        currency=earnings.currency,
    )


@router.post("/{recipe_id}", response_model=UnlockResponse)
def unlock_recipe(
    recipe_id: str,
    request: UnlockRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: UnlockService = Depends(get_unlock_service),
):
    """
    Unlock a paid recipe for the current user.

    Safe to retry: a second call after success returns ALREADY_UNLOCKED
    and never charges again. A FAILED result with retryable=true may be
    retried with a fresh token.
    """
    user_id = _parse_uuid(current_user.id, "user ID")
    recipe_uuid = _parse_uuid(recipe_id, "recipe ID")

    try:
        result = service.unlock(user_id, recipe_uuid, request.authorization_token)
    except RecipeNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Recipe not found",
        )
    except UnlockInProgressError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Unlock already in progress",
        )
    except LedgerConflictError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Unlock already resolved, re-check entitlement",
        )
    except (LedgerRepositoryError, InvalidSettlementError) as e:
        logger.error("Unlock could not be recorded: user=%s, recipe=%s, error=%s", user_id, recipe_id, e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ledger unavailable",
        )

    return _result_to_response(result)


@router.get("/{recipe_id}", response_model=EntitlementResponse)
def get_entitlement(
    recipe_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    gate: EntitlementGate = Depends(get_entitlement_gate),
    service: UnlockService = Depends(get_unlock_service),
):
    """
    Whether the current user may see the recipe's full content, plus the
    latest unlock attempt if there is one.
    """
    user_id = _parse_uuid(current_user.id, "user ID")
    recipe_uuid = _parse_uuid(recipe_id, "recipe ID")

    try:
        unlocked = gate.is_unlocked(user_id, recipe_uuid)
        record = service.get_status(user_id, recipe_uuid)
    except RecipeNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Recipe not found",
        )
    except LedgerRepositoryError as e:
        logger.error("Entitlement check failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ledger unavailable",
        )

    return EntitlementResponse(
        recipe_id=recipe_id,
        unlocked=unlocked,
        record=_record_to_response(record) if record else None,
    )
