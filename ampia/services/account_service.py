"""
Account Service

Personal data export and account deletion (GDPR Art. 15, 17, 20). Deleting an
account anonymizes the Users row instead of removing it, so tickets, payments
and comments keep a valid owner.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ampia.core.auth import verify_password
from ampia.core.database import get_store
from ampia.core.errors import AuthenticationFailed, NotFound
from ampia.services.logger import logger

EXPORT_VERSION = "1.0"
DELETION_REASON = "User requested account deletion (GDPR Art. 17)"

# Export key -> (table, owner column)
EXPORT_SECTIONS = {
    "tickets": ("Tickets", "user_id"),
    "eventsCreated": ("Events", "organizer_id"),
    "favorites": ("Favorites", "user_id"),
    "following": ("Follows", "follower_id"),
    "followers": ("Follows", "following_id"),
    "comments": ("Comments", "user_id"),
    "stories": ("Stories", "user_id"),
    "notifications": ("Notifications", "user_id"),
}

# Cleared on deletion, besides email and name
PERSONAL_FIELDS = ("password", "bio", "avatar_url", "phone", "push_token")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AccountService:
    """Service for the user's own account data"""

    async def _get_user(self, user_id: Any) -> Dict[str, Any]:
        users = await asyncio.to_thread(get_store().select, "Users", {"id": user_id})
        if not users:
            raise NotFound("Utilisateur non trouvé")
        return users[0]

    async def _audit(self, user_id: Any, action: str, details: Dict[str, Any]) -> None:
        await asyncio.to_thread(
            get_store().insert,
            "AuditLogs",
            {
                "user_id": user_id,
                "action": action,
                "entity_type": "user",
                "entity_id": user_id,
                "details": details,
                "created_at": _now(),
            },
        )

    async def export_user_data(self, user_id: Any) -> Dict[str, Any]:
        """Everything stored about the user, without the password hash."""
        store = get_store()

        user, *sections = await asyncio.gather(
            self._get_user(user_id),
            *(
                asyncio.to_thread(store.select, table, {column: user_id})
                for table, column in EXPORT_SECTIONS.values()
            ),
        )
        user = {key: value for key, value in user.items() if key != "password"}

        exported_at = _now()
        await self._audit(user_id, "data_export", {"exportedAt": exported_at})
        logger.info(f"Data export for user {user_id}")

        return {
            "exportedAt": exported_at,
            "exportVersion": EXPORT_VERSION,
            "user": user,
            **dict(zip(EXPORT_SECTIONS, sections)),
        }

    async def delete_account(
        self, user_id: Any, confirm_password: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Anonymize the user and revoke their sessions.

        When a confirmation password is given it must match the stored hash.
        Stories and notifications are removed; everything else stays, owned by
        the anonymized row.
        """
        store = get_store()
        user = await self._get_user(user_id)

        if confirm_password and not verify_password(confirm_password, user.get("password")):
            raise AuthenticationFailed("Mot de passe incorrect", status_code=401)

        deleted_at = _now()
        anonymized_email = f"deleted_{user_id}_{int(time.time() * 1000)}@anonymous.local"

        await asyncio.to_thread(
            store.update,
            "Users",
            {
                "email": anonymized_email,
                "name": "Compte supprimé",
                **{field: None for field in PERSONAL_FIELDS},
                "deleted_at": deleted_at,
                "updated_at": deleted_at,
            },
            {"id": user_id},
        )

        await asyncio.gather(
            asyncio.to_thread(
                store.update,
                "RefreshTokens",
                {"revoked": True, "revoked_at": deleted_at},
                {"user_id": user_id},
            ),
            asyncio.to_thread(store.delete, "Stories", {"user_id": user_id}),
            asyncio.to_thread(store.delete, "Notifications", {"user_id": user_id}),
        )

        await self._audit(
            user_id,
            "account_deleted",
            {
                "deletedAt": deleted_at,
                "anonymizedEmail": anonymized_email,
                "reason": DELETION_REASON,
            },
        )
        logger.info(f"Account {user_id} deleted", {"anonymized_email": anonymized_email})

        return {"message": "Compte supprimé avec succès", "deletedAt": deleted_at}


# Global instance
account_service = AccountService()
