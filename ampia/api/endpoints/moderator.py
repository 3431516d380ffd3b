"""
Moderator challenge management API endpoints
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from ampia.core.auth import require_moderator
from ampia.models.challenges import ChallengeTargetIn
from ampia.services.challenge_catalog import challenge_catalog

router = APIRouter(redirect_slashes=False)


class ChallengeCreate(BaseModel):
    """
    Request body for creating a challenge.

    Challenges are always created as drafts. ``rule_type`` only matters for
    automatic challenges (count_favorites, count_tickets,
    count_events_created, count_followers) and reads ``rule_payload.target``.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None  # manual (default) or automatic
    reward_type: Optional[str] = None  # points (default), badge, boost_score
    reward_payload: Optional[Dict[str, Any]] = None
    rule_type: Optional[str] = None
    rule_payload: Optional[Dict[str, Any]] = None
    targets: Optional[List[ChallengeTargetIn]] = None


class ChallengeUpdate(ChallengeCreate):
    status: Optional[str] = None  # draft, published, archived


def _body(data: BaseModel) -> Dict[str, Any]:
    return data.model_dump(exclude_unset=True)


@router.get("/challenges")
async def list_challenges(
    status: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    current_user: dict = Depends(require_moderator),
):
    """All challenges (any status) with their targets"""
    return await challenge_catalog.list_challenges(status=status, challenge_type=type)


@router.post("/challenges", status_code=status.HTTP_201_CREATED)
async def create_challenge(
    challenge_data: ChallengeCreate,
    current_user: dict = Depends(require_moderator),
):
    """Create a draft challenge"""
    return await challenge_catalog.create_challenge(
        current_user["id"], _body(challenge_data)
    )


@router.put("/challenges/{challenge_id}")
async def update_challenge(
    challenge_id: str,
    challenge_data: ChallengeUpdate,
    current_user: dict = Depends(require_moderator),
):
    """Patch a challenge; a ``targets`` list replaces the existing targets"""
    return await challenge_catalog.update_challenge(challenge_id, _body(challenge_data))


@router.post("/challenges/{challenge_id}/publish")
async def publish_challenge(
    challenge_id: str,
    current_user: dict = Depends(require_moderator),
):
    return await challenge_catalog.publish_challenge(challenge_id)
