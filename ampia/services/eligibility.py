"""
Challenge audience targeting

A challenge with no target rows is visible to everyone. With target rows,
the user only needs to satisfy one of them: each row is a minimum level
and/or a required badge, and a missing field puts no constraint on that
dimension.
"""

import math
from typing import Any, Dict, Iterable, List, Optional, Sequence


def _min_level(target: Dict[str, Any]) -> Optional[float]:
    value = target.get("min_level")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value if math.isfinite(value) else None


def target_matches(
    target: Optional[Dict[str, Any]], user_level: int, user_badges: Sequence[str]
) -> bool:
    target = target or {}

    min_level = _min_level(target)
    if min_level is not None and user_level < min_level:
        return False

    required_badge = target.get("required_badge")
    if required_badge and required_badge not in user_badges:
        return False

    return True


def is_eligible_for_targets(
    targets: Optional[Iterable[Dict[str, Any]]],
    user_level: int,
    user_badges: Sequence[str],
) -> bool:
    targets = list(targets or [])
    if not targets:
        return True
    return any(target_matches(t, user_level, user_badges) for t in targets)


def group_targets_by_challenge(
    targets: Iterable[Dict[str, Any]],
) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for target in targets:
        grouped.setdefault(str(target.get("challenge_id")), []).append(target)
    return grouped
