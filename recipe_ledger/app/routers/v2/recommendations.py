# recipe_ledger/app/routers/v2/recommendations.py
"""
Recommendation routes: rank candidate recipes by decayed interaction affinity.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from recipe_ledger.app.deps import CurrentUser, get_current_user, get_recommendation_scorer
from recipe_ledger.app.domain.errors import InteractionRepositoryError
from recipe_ledger.app.services.recommendation_scorer import RecommendationScorer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v2/recommendations", tags=["Recommendations V2"])

MAX_CANDIDATES = 500


class RankRequest(BaseModel):
    candidate_recipe_ids: List[UUID] = Field(..., max_length=MAX_CANDIDATES)
    limit: Optional[int] = Field(None, ge=1, le=MAX_CANDIDATES)


class RankedRecipeResponse(BaseModel):
    recipe_id: str
    score: float
    last_event_at: Optional[datetime] = None


class RankResponse(BaseModel):
    recipes: List[RankedRecipeResponse]


@router.post("/rank", response_model=RankResponse)
def rank_recipes(
    request: RankRequest,
    current_user: CurrentUser = Depends(get_current_user),
    scorer: RecommendationScorer = Depends(get_recommendation_scorer),
):
    """
    Order the candidates by affinity for the current user. Candidates the
    user never interacted with score 0 and come after equal-scored ones
    that have history.
    """
    try:
        user_id = UUID(current_user.id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid user ID format")

    try:
        ranked = scorer.rank(user_id, request.candidate_recipe_ids, limit=request.limit)
    except InteractionRepositoryError as e:
        logger.error("Ranking failed for user %s: %s", user_id, e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Interaction log unavailable",
        )

    return RankResponse(
        recipes=[
            RankedRecipeResponse(
                recipe_id=str(item.recipe_id),
                score=item.score,
                last_event_at=item.last_event_at,
            )
            for item in ranked
        ]
    )
