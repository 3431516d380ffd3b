from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


Number = Union[int, float]

CHALLENGE_TYPES = ("manual", "automatic")
CHALLENGE_STATUSES = ("draft", "published", "archived")
REWARD_TYPES = ("points", "badge", "boost_score")


def to_number(value: Any, default: Number = 0) -> Number:
    """Loose numeric coercion: anything unparsable (or falsy) becomes ``default``."""
    if isinstance(value, bool):
        return int(value) or default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number or number in (float("inf"), float("-inf")):
        return default
    if not number:
        return default
    return int(number) if number.is_integer() else number


def to_int(value: Any, default: int = 0) -> int:
    return int(to_number(value, default))


def as_payload(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


class PointsReward(BaseModel):
    type: Literal["points"] = "points"
    amount: int = 0


class BadgeReward(BaseModel):
    type: Literal["badge"] = "badge"
    badge: Optional[str] = None


class BoostScoreReward(BaseModel):
    type: Literal["boost_score"] = "boost_score"
    amount: int = 0
    event_id: Optional[int] = None


class NoReward(BaseModel):
    """Reward type the API does not know how to apply."""

    type: Optional[str] = None


Reward = Union[PointsReward, BadgeReward, BoostScoreReward, NoReward]


def parse_reward(reward_type: Optional[str], reward_payload: Any) -> Reward:
    payload = as_payload(reward_payload)

    if reward_type == "points":
        return PointsReward(amount=to_int(payload.get("points") or payload.get("amount")))

    if reward_type == "badge":
        badge = payload.get("badge")
        return BadgeReward(badge=badge if isinstance(badge, str) and badge else None)

    if reward_type == "boost_score":
        event_id = to_int(payload.get("event_id")) or None
        return BoostScoreReward(
            amount=to_int(payload.get("boost_score") or payload.get("amount")),
            event_id=event_id,
        )

    return NoReward(type=reward_type)


class CountRule(BaseModel):
    """Automatic completion rule: a counter reaching ``target``."""

    rule_type: Optional[str] = None
    target: Number = 0


def parse_rule(rule_type: Optional[str], rule_payload: Any) -> CountRule:
    payload = as_payload(rule_payload)
    return CountRule(rule_type=rule_type or None, target=to_number(payload.get("target")))


class ChallengeTargetIn(BaseModel):
    min_level: Optional[Any] = None
    required_badge: Optional[Any] = None


class ChallengeReward(BaseModel):
    type: Optional[str] = None
    amount: Number = 0
    label: str


class ChallengeProgress(BaseModel):
    value: Number
    max: Number


class UserChallengeItem(BaseModel):
    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    reward: ChallengeReward
    progress: ChallengeProgress
    status: Literal["active", "completed", "claimed"]
    canClaim: bool
    claimedAt: Optional[str] = None
    badge: Optional[str] = None


class UserGamificationSummary(BaseModel):
    level: int
    points: int
    badges: List[str] = Field(default_factory=list)


class UserChallengesResponse(BaseModel):
    challenges: List[UserChallengeItem]
    user: UserGamificationSummary


class ClaimResponse(BaseModel):
    ok: bool = True
    points: int
    badges: List[str]
    boostedEvent: Optional[Dict[str, Any]] = None
