"""
Automatic challenge progress

Each rule type counts rows the user owns in one table; the challenge is
completed once the count reaches the rule's target.
"""

import asyncio
from typing import Any, Dict, Optional

from ampia.core.database import get_store
from ampia.models.challenges import parse_rule

# rule_type -> (table, column holding the user id)
RULE_COUNTERS: Dict[str, tuple] = {
    "count_favorites": ("Favorites", "user_id"),
    "count_tickets": ("Tickets", "user_id"),
    "count_events_created": ("Events", "organizer_id"),
    "count_followers": ("Follows", "following_id"),
}


def progress_from_count(current: int, target) -> Dict[str, Any]:
    return {
        "value": min(current, target),
        "max": target,
        "isCompleted": current >= target,
    }


async def compute_progress_for_rule(
    rule_type: Optional[str], rule_payload: Any, user_id: Any
) -> Dict[str, Any]:
    """
    Compute ``{value, max, isCompleted}`` for an automatic challenge rule.

    Unknown or missing rule types never complete.
    """
    rule = parse_rule(rule_type, rule_payload)
    counter = RULE_COUNTERS.get(rule.rule_type or "")

    if counter is None:
        return {"value": 0, "max": rule.target or 1, "isCompleted": False}

    table, column = counter
    store = get_store()
    current = await asyncio.to_thread(store.count, table, {column: user_id})
    return progress_from_count(int(current or 0), rule.target)
