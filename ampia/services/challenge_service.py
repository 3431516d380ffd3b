"""
Challenge Service

Lists the published challenges a user can see, with their progress, and
processes reward claims.

A claim is granted at most once per (user, challenge): the UserChallenges row
is written before any reward so the table's unique constraint rejects a
concurrent duplicate, and points/boost scores are applied with atomic
increments instead of read-modify-write.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ampia.core.config import settings
from ampia.core.database import DuplicateRowError, get_store
from ampia.core.errors import AlreadyClaimed, Forbidden, NotCompletable, NotFound
from ampia.models.challenges import (
    BadgeReward,
    BoostScoreReward,
    PointsReward,
    Reward,
    as_payload,
    parse_reward,
    to_number,
)
from ampia.services.eligibility import group_targets_by_challenge, is_eligible_for_targets
from ampia.services.levels import calc_level_from_points, normalize_badges
from ampia.services.logger import logger
from ampia.services.progress import compute_progress_for_rule


def user_state(user_row: Optional[Dict[str, Any]]) -> Tuple[int, int, List[str]]:
    """(points, level, badges) for a Users row, tolerating a missing row."""
    user_row = user_row or {}
    points = int(to_number(user_row.get("points")))
    return points, calc_level_from_points(points), normalize_badges(user_row.get("badges"))


def reward_summary(challenge: Dict[str, Any]) -> Dict[str, Any]:
    payload = as_payload(challenge.get("reward_payload"))
    reward_type = challenge.get("reward_type")

    if payload.get("label"):
        label = payload["label"]
    elif reward_type == "points":
        label = f"+{to_number(payload.get('points'))} points"
    else:
        label = "Récompense"

    return {
        "type": reward_type,
        "amount": to_number(payload.get("amount") or payload.get("points")),
        "label": label,
    }


class ChallengeService:
    """Service for user-facing challenges"""

    async def get_claimed_map(self, user_id: Any) -> Dict[str, Dict[str, Any]]:
        store = get_store()
        rows = await asyncio.to_thread(store.select, "UserChallenges", {"user_id": user_id})
        return {str(row.get("challenge_id")): row for row in rows}

    async def _challenge_progress(
        self, challenge: Dict[str, Any], user_id: Any
    ) -> Tuple[Dict[str, Any], bool]:
        if challenge.get("type") == "automatic":
            computed = await compute_progress_for_rule(
                challenge.get("rule_type"), challenge.get("rule_payload"), user_id
            )
            return {"value": computed["value"], "max": computed["max"]}, computed[
                "isCompleted"
            ]

        # Manual challenges have no completion path here.
        return {"value": 0, "max": 1}, False

    async def _build_item(
        self,
        challenge: Dict[str, Any],
        user_id: Any,
        claimed_map: Dict[str, Dict[str, Any]],
    ) -> Dict[str, Any]:
        claimed = claimed_map.get(str(challenge.get("id")))
        progress, is_completed = await self._challenge_progress(challenge, user_id)

        if claimed:
            status = "claimed"
        elif is_completed:
            status = "completed"
        else:
            status = "active"

        badge = None
        if challenge.get("reward_type") == "badge":
            badge = as_payload(challenge.get("reward_payload")).get("badge") or None

        return {
            "id": str(challenge.get("id")),
            "title": challenge.get("title"),
            "description": challenge.get("description"),
            "reward": reward_summary(challenge),
            "progress": progress,
            "status": status,
            "canClaim": not claimed and is_completed,
            "claimedAt": (claimed or {}).get("claimed_at"),
            "badge": badge,
        }

    async def list_user_challenges(self, user_id: Any) -> Dict[str, Any]:
        """
        Published challenges the user is eligible for, newest first.

        Returns:
            {"challenges": [...], "user": {"level", "points", "badges"}}
        """
        store = get_store()

        users, claimed_map, challenges = await asyncio.gather(
            asyncio.to_thread(store.select, "Users", {"id": user_id}),
            self.get_claimed_map(user_id),
            asyncio.to_thread(
                store.select,
                "Challenges",
                {"status": "published"},
                order="created_at.desc",
                limit=int(settings.CHALLENGES_LIST_LIMIT),
            ),
        )

        points, level, badges = user_state(users[0] if users else None)

        challenge_ids = [c["id"] for c in challenges if c.get("id")]
        targets = (
            await asyncio.to_thread(
                store.select, "ChallengeTargets", {"challenge_id": {"in": challenge_ids}}
            )
            if challenge_ids
            else []
        )
        targets_by_challenge = group_targets_by_challenge(targets)

        eligible = [
            c
            for c in challenges
            if is_eligible_for_targets(
                targets_by_challenge.get(str(c.get("id")), []), level, badges
            )
        ]

        items = await asyncio.gather(
            *(self._build_item(c, user_id, claimed_map) for c in eligible)
        )

        return {
            "challenges": list(items),
            "user": {"level": level, "points": points, "badges": badges},
        }

    async def _resolve_boost_event(
        self, user_id: Any, reward: BoostScoreReward
    ) -> Dict[str, Any]:
        store = get_store()

        if reward.event_id:
            events = await asyncio.to_thread(store.select, "Events", {"id": reward.event_id})
            event = events[0] if events else None
            if not event:
                raise NotFound("Événement introuvable pour le boost")
            if str(event.get("organizer_id")) != str(user_id):
                raise Forbidden("Tu ne peux booster que tes événements")
            return event

        # Without an explicit event, boost the organizer's latest event
        events = await asyncio.to_thread(
            store.select,
            "Events",
            {"organizer_id": user_id},
            order="created_at.desc",
            limit=1,
        )
        if not events:
            raise NotFound("Aucun événement à booster")
        return events[0]

    async def _apply_reward(
        self,
        user_id: Any,
        points: int,
        badges: List[str],
        reward: Reward,
        boost_event: Optional[Dict[str, Any]],
    ) -> Tuple[int, List[str], Optional[Dict[str, Any]]]:
        store = get_store()

        if isinstance(reward, PointsReward) and reward.amount:
            points = await asyncio.to_thread(
                store.increment, "Users", "points", user_id, reward.amount
            )

        elif isinstance(reward, BadgeReward) and reward.badge:
            # Appended in the database so concurrent badge claims all land
            updated = await asyncio.to_thread(
                store.rpc,
                "append_badge",
                {"p_user_id": str(user_id), "p_badge": reward.badge},
            )
            if updated is None:
                raise NotFound("Utilisateur non trouvé")
            badges = normalize_badges(updated)

        elif isinstance(reward, BoostScoreReward) and boost_event is not None:
            boost_score = boost_event.get("boost_score")
            if reward.amount:
                boost_score = await asyncio.to_thread(
                    store.increment, "Events", "boost_score", boost_event["id"], reward.amount
                )
            return points, badges, {**boost_event, "boost_score": boost_score}

        return points, badges, None

    async def claim_challenge(self, user_id: Any, challenge_id: str) -> Dict[str, Any]:
        """
        Grant a completed automatic challenge's reward, once.

        Raises:
            AlreadyClaimed: a claim row exists (or was inserted concurrently)
            NotFound: challenge missing/unpublished, or no event to boost
            Forbidden: user not targeted, or boosting someone else's event
            NotCompletable: manual challenge, or rule not yet satisfied
        """
        store = get_store()
        challenge_id = str(challenge_id or "")

        already_claimed, rows, users = await asyncio.gather(
            asyncio.to_thread(
                store.select,
                "UserChallenges",
                {"user_id": user_id, "challenge_id": challenge_id},
            ),
            asyncio.to_thread(store.select, "Challenges", {"id": challenge_id}),
            asyncio.to_thread(store.select, "Users", {"id": user_id}),
        )

        if already_claimed:
            raise AlreadyClaimed()

        challenge = rows[0] if rows else None
        if not challenge or challenge.get("status") != "published":
            raise NotFound("Défi introuvable")

        points, level, badges = user_state(users[0] if users else None)

        targets = await asyncio.to_thread(
            store.select, "ChallengeTargets", {"challenge_id": challenge_id}
        )
        if not is_eligible_for_targets(targets, level, badges):
            raise Forbidden("Défi non disponible pour cet utilisateur")

        if challenge.get("type") != "automatic":
            raise NotCompletable("Ce défi ne peut pas être réclamé automatiquement")

        progress = await compute_progress_for_rule(
            challenge.get("rule_type"), challenge.get("rule_payload"), user_id
        )
        if not progress["isCompleted"]:
            raise NotCompletable("Défi pas encore complété")

        reward_type = challenge.get("reward_type")
        reward_payload = as_payload(challenge.get("reward_payload"))
        reward = parse_reward(reward_type, reward_payload)

        boost_event = None
        if isinstance(reward, BoostScoreReward):
            boost_event = await self._resolve_boost_event(user_id, reward)

        claim_filter = {"user_id": user_id, "challenge_id": challenge_id}
        try:
            await asyncio.to_thread(
                store.insert,
                "UserChallenges",
                {
                    **claim_filter,
                    "claimed_at": datetime.now(timezone.utc).isoformat(),
                    "reward": {"type": reward_type, "payload": reward_payload},
                },
            )
        except DuplicateRowError:
            raise AlreadyClaimed()

        try:
            next_points, next_badges, boosted_event = await self._apply_reward(
                user_id, points, badges, reward, boost_event
            )
        except Exception as e:
            logger.error(
                f"Reward application failed for challenge {challenge_id}, releasing claim",
                {"error": str(e), "user_id": user_id, "challenge_id": challenge_id},
            )
            await asyncio.to_thread(store.delete, "UserChallenges", claim_filter)
            raise

        logger.info(
            f"Challenge {challenge_id} claimed by user {user_id}",
            {"reward_type": reward_type, "points": next_points},
        )

        return {
            "ok": True,
            "points": next_points,
            "badges": next_badges,
            "boostedEvent": boosted_event,
        }


# Global instance
challenge_service = ChallengeService()
