# recipe_ledger/app/routers/v2/interactions.py
"""
Interaction routes. Recording is best-effort: a storage failure never
fails the user action that produced the event.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from recipe_ledger.app.deps import CurrentUser, get_current_user, get_interaction_recorder
from recipe_ledger.app.domain.errors import ClockSkewTooLargeError
from recipe_ledger.app.domain.models import InteractionType
from recipe_ledger.app.services.interaction_recorder import InteractionRecorder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v2/interactions", tags=["Interactions V2"])


class RecordInteractionRequest(BaseModel):
    recipe_id: UUID
    event_type: InteractionType = Field(..., description="VIEW, FAVORITE, UNFAVORITE or DIARY_LOG")
    occurred_at: Optional[datetime] = Field(None, description="Client timestamp, defaults to now")


class RecordInteractionResponse(BaseModel):
    recorded: bool
    event_id: Optional[str] = None


@router.post("", response_model=RecordInteractionResponse, status_code=status.HTTP_202_ACCEPTED)
def record_interaction(
    request: RecordInteractionRequest,
    current_user: CurrentUser = Depends(get_current_user),
    recorder: InteractionRecorder = Depends(get_interaction_recorder),
):
    try:
        user_id = UUID(current_user.id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid user ID format")

    try:
        event = recorder.record_best_effort(
            user_id,
            request.recipe_id,
            request.event_type,
            request.occurred_at,
        )
    except ClockSkewTooLargeError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"occurred_at is more than {e.max_skew_seconds}s in the future",
        )

    if event is None:
        return RecordInteractionResponse(recorded=False)
    return RecordInteractionResponse(recorded=True, event_id=str(event.id))
