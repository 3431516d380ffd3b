"""
Current user API endpoints: challenges, data export and account deletion
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from ampia.core.auth import get_current_user
from ampia.core.errors import AmpiaError
from ampia.models.challenges import ClaimResponse, UserChallengesResponse
from ampia.services.account_service import account_service
from ampia.services.challenge_service import challenge_service
from ampia.services.logger import logger

router = APIRouter(redirect_slashes=False)


class AccountDeletion(BaseModel):
    confirmPassword: Optional[str] = None


@router.get("/challenges", response_model=UserChallengesResponse)
async def get_my_challenges(current_user: dict = Depends(get_current_user)):
    """Published challenges the user is eligible for, with progress and claim state"""
    return await challenge_service.list_user_challenges(current_user["id"])


@router.post("/challenges/{challenge_id}/claim", response_model=ClaimResponse)
async def claim_challenge(
    challenge_id: str,
    current_user: dict = Depends(get_current_user),
):
    """Claim the reward of a completed automatic challenge (once)"""
    return await challenge_service.claim_challenge(current_user["id"], challenge_id)


@router.get("/export")
async def export_my_data(current_user: dict = Depends(get_current_user)):
    """Export user data (GDPR Art. 15 and 20)"""
    try:
        return await account_service.export_user_data(current_user["id"])
    except AmpiaError:
        raise
    except Exception as e:
        logger.error(f"Data export failed for user {current_user['id']}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur serveur lors de l'export des données",
        )


@router.delete("/account")
async def delete_my_account(
    deletion: Optional[AccountDeletion] = None,
    current_user: dict = Depends(get_current_user),
):
    """Delete (anonymize) the user's account (GDPR Art. 17)"""
    confirm_password = deletion.confirmPassword if deletion else None
    try:
        return await account_service.delete_account(current_user["id"], confirm_password)
    except AmpiaError:
        raise
    except Exception as e:
        logger.error(f"Account deletion failed for user {current_user['id']}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur serveur lors de la suppression du compte",
        )
