"""Votes required to lynch a player."""

import math
from typing import Optional

from .models import RosterEntry
from .roster import Roster


def threshold(living_count: int, lynch_modifier: int = 0) -> int:
    """Votes needed to lynch a target with `lynch_modifier` among `living_count` players.

    A simple majority, with ties going to the lynch, shifted by the target's
    modifier and never below 1.
    """
    base = math.ceil((living_count + 1) / 2)
    return max(base - lynch_modifier, 1)


async def votes_to_lynch(roster: Roster, target: Optional[RosterEntry] = None) -> int:
    """Threshold for `target` in the current game, or the unmodified one if no target."""
    modifier = target.lynch_modifier if target else 0
    return threshold(await roster.living_count(), modifier)
