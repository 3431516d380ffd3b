"""
Levels and badges

A user's level is never stored: it is derived from their points every time.
"""

from typing import Any, List

from ampia.models.challenges import to_number

# Lower bound (inclusive) of each level; index + 1 is the level.
LEVEL_THRESHOLDS = (0, 100, 250, 500, 900, 1400)


def calc_level_from_points(points: Any) -> int:
    """Map points to a level in 1..6 (negative or non-numeric points count as 0)."""
    p = max(0, to_number(points))
    level = 1
    for index, threshold in enumerate(LEVEL_THRESHOLDS):
        if p >= threshold:
            level = index + 1
    return level


def normalize_badges(badges: Any) -> List[str]:
    if isinstance(badges, (list, tuple)):
        return [b for b in badges if isinstance(b, str)]
    if isinstance(badges, str):
        return [badges]
    return []
