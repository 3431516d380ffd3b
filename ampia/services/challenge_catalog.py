"""
Challenge Catalog

Moderator-side management of challenge definitions and their audience
targets. New challenges start as drafts; users only ever see published ones.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ampia.core.config import settings
from ampia.core.database import get_store
from ampia.core.errors import InvalidRequest, NotFound
from ampia.models.challenges import (
    CHALLENGE_STATUSES,
    CHALLENGE_TYPES,
    REWARD_TYPES,
    as_payload,
)
from ampia.services.eligibility import group_targets_by_challenge
from ampia.services.logger import logger


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_choice(field: str, value: Optional[str], allowed) -> None:
    if value is not None and value not in allowed:
        raise InvalidRequest(
            f"Valeur invalide pour {field} (attendu: {', '.join(allowed)})"
        )


def normalize_target(challenge_id: Any, target: Any) -> Dict[str, Any]:
    target = target if isinstance(target, dict) else {}

    min_level = target.get("min_level")
    if isinstance(min_level, bool):
        min_level = None
    elif isinstance(min_level, (int, float)):
        min_level = int(min_level)
    elif min_level:
        try:
            min_level = int(str(min_level).strip())
        except ValueError:
            min_level = None
    else:
        min_level = None

    required_badge = target.get("required_badge")
    if not isinstance(required_badge, str) or not required_badge:
        required_badge = None

    return {
        "challenge_id": challenge_id,
        "min_level": min_level,
        "required_badge": required_badge,
        "created_at": _now(),
    }


class ChallengeCatalog:
    """Service for moderator challenge management"""

    async def _save_targets(self, challenge_id: Any, targets: List[Any]) -> None:
        store = get_store()
        for target in targets[: int(settings.CHALLENGE_TARGETS_MAX)]:
            await asyncio.to_thread(
                store.insert, "ChallengeTargets", normalize_target(challenge_id, target)
            )

    async def _targets_for(self, challenge_id: Any) -> List[Dict[str, Any]]:
        store = get_store()
        return await asyncio.to_thread(
            store.select, "ChallengeTargets", {"challenge_id": challenge_id}
        )

    async def list_challenges(
        self, status: Optional[str] = None, challenge_type: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        store = get_store()
        challenges = await asyncio.to_thread(
            store.select,
            "Challenges",
            {"status": status or None, "type": challenge_type or None},
            order="created_at.desc",
            limit=int(settings.CHALLENGES_LIST_LIMIT),
        )

        ids = [c["id"] for c in challenges if c.get("id")]
        targets = (
            await asyncio.to_thread(
                store.select, "ChallengeTargets", {"challenge_id": {"in": ids}}
            )
            if ids
            else []
        )
        by_challenge = group_targets_by_challenge(targets)

        return [
            {**c, "targets": by_challenge.get(str(c.get("id")), [])} for c in challenges
        ]

    async def create_challenge(
        self, created_by: Any, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        title = data.get("title")
        if not isinstance(title, str) or len(title.strip()) < 3:
            raise InvalidRequest("Titre invalide (min 3 caractères)")

        challenge_type = data.get("type") if isinstance(data.get("type"), str) else "manual"
        reward_type = (
            data.get("reward_type") if isinstance(data.get("reward_type"), str) else "points"
        )
        _check_choice("type", challenge_type, CHALLENGE_TYPES)
        _check_choice("reward_type", reward_type, REWARD_TYPES)

        description = data.get("description")
        rule_type = data.get("rule_type")
        now = _now()

        store = get_store()
        created = await asyncio.to_thread(
            store.insert,
            "Challenges",
            {
                "title": title.strip(),
                "description": description if isinstance(description, str) else None,
                "type": challenge_type,
                "status": "draft",
                "reward_type": reward_type,
                "reward_payload": as_payload(data.get("reward_payload")),
                "rule_type": rule_type if isinstance(rule_type, str) else None,
                "rule_payload": as_payload(data.get("rule_payload")),
                "created_by": created_by,
                "created_at": now,
                "updated_at": now,
            },
        )

        challenge_id = (created or {}).get("id")
        targets = data.get("targets")
        if challenge_id and isinstance(targets, list) and targets:
            await self._save_targets(challenge_id, targets)

        saved_targets = await self._targets_for(challenge_id) if challenge_id else []

        logger.info(f"Challenge {challenge_id} created by moderator {created_by}")
        return {**(created or {}), "targets": saved_targets}

    async def update_challenge(
        self, challenge_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        if not challenge_id:
            raise InvalidRequest("ID défi manquant")

        patch: Dict[str, Any] = {"updated_at": _now()}

        if isinstance(data.get("title"), str):
            title = data["title"].strip()
            if len(title) < 3:
                raise InvalidRequest("Titre invalide (min 3 caractères)")
            patch["title"] = title
        if "description" in data:
            description = data["description"]
            patch["description"] = description if isinstance(description, str) else None
        for field, allowed in (
            ("type", CHALLENGE_TYPES),
            ("status", CHALLENGE_STATUSES),
            ("reward_type", REWARD_TYPES),
        ):
            if isinstance(data.get(field), str):
                _check_choice(field, data[field], allowed)
                patch[field] = data[field]
        if "reward_payload" in data:
            patch["reward_payload"] = as_payload(data["reward_payload"])
        if "rule_type" in data:
            rule_type = data["rule_type"]
            patch["rule_type"] = rule_type if isinstance(rule_type, str) else None
        if "rule_payload" in data:
            patch["rule_payload"] = as_payload(data["rule_payload"])

        store = get_store()
        updated = await asyncio.to_thread(
            store.update, "Challenges", patch, {"id": challenge_id}
        )
        if not updated:
            raise NotFound("Défi introuvable")

        targets = data.get("targets")
        if isinstance(targets, list):
            await asyncio.to_thread(
                store.delete, "ChallengeTargets", {"challenge_id": challenge_id}
            )
            await self._save_targets(challenge_id, targets)

        saved_targets = await self._targets_for(challenge_id)
        return {**updated, "targets": saved_targets}

    async def publish_challenge(self, challenge_id: str) -> Dict[str, Any]:
        if not challenge_id:
            raise InvalidRequest("ID défi manquant")

        store = get_store()
        updated = await asyncio.to_thread(
            store.update,
            "Challenges",
            {"status": "published", "updated_at": _now()},
            {"id": challenge_id},
        )
        if not updated:
            raise NotFound("Défi introuvable")

        logger.info(f"Challenge {challenge_id} published")
        return {"message": "Défi publié", "challenge": updated}


# Global instance
challenge_catalog = ChallengeCatalog()
