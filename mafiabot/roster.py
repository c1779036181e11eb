"""Per-game player membership and status."""

import logging
from typing import List, Optional

from .config import NO_LYNCH_NICKS, PLAYER_PROPERTIES, UNVOTE_NICKS
from .errors import ValidationError
from .models import PlayerStatus, RosterEntry
from .storage import Transaction


logger = logging.getLogger(__name__)


class Roster:
    """Reads and updates the roster of one game inside a transaction."""

    def __init__(self, tx: Transaction, game_id: int):
        self.tx = tx
        self.game_id = game_id

    async def get(self, name: str) -> Optional[RosterEntry]:
        """Get the roster entry for a player name, or None if they are not in the game."""
        player = await self.tx.get_player_by_name(name)
        if not player:
            return None
        return await self.tx.get_roster_entry(self.game_id, player.id)

    async def require(self, name: str, reason: str) -> RosterEntry:
        entry = await self.get(name)
        if not entry:
            raise ValidationError(reason)
        return entry

    async def add(self, name: str, status: PlayerStatus = PlayerStatus.ALIVE) -> RosterEntry:
        player = await self.tx.find_or_create_player(name)
        return await self.tx.find_or_create_roster_entry(self.game_id, player, status)

    async def add_placeholders(self):
        """Register the reserved unvote/no-lynch targets."""
        for nick in UNVOTE_NICKS:
            status = PlayerStatus.NOLYNCH if nick in NO_LYNCH_NICKS else PlayerStatus.UNVOTE
            await self.add(nick, status)

    async def entries(self, *statuses: PlayerStatus) -> List[RosterEntry]:
        return await self.tx.list_roster(self.game_id, statuses or None)

    async def living(self) -> List[RosterEntry]:
        return await self.entries(PlayerStatus.ALIVE)

    async def living_count(self) -> int:
        return len(await self.living())

    async def is_mod(self, name: str) -> bool:
        entry = await self.get(name)
        return bool(entry and entry.is_mod)

    async def require_mod(self, name: str):
        if not await self.is_mod(name):
            raise ValidationError("Poster is not mod")

    async def kill(self, entry: RosterEntry) -> RosterEntry:
        if not entry.is_alive:
            raise ValidationError("Target not alive")
        entry.status = PlayerStatus.DEAD
        await self.tx.update_roster_entry(entry)
        logger.info(f"Game {self.game_id}: {entry.player.name} is now dead")
        return entry

    async def set_property(self, entry: RosterEntry, prop: str) -> RosterEntry:
        """Apply a named property (loved, hated, doubleVoter, vanilla) to an entry."""
        try:
            vote_weight, lynch_modifier = PLAYER_PROPERTIES[prop.lower()]
        except KeyError:
            raise ValidationError(f"Unknown property {prop}")

        if vote_weight is not None:
            entry.vote_weight = vote_weight
        if lynch_modifier is not None:
            entry.lynch_modifier = lynch_modifier
        await self.tx.update_roster_entry(entry)
        return entry
