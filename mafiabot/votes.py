"""Vote tallies and vote history for a game-day."""

from collections import defaultdict
from typing import Dict, List

from .actions import ActionLog
from .config import NO_LYNCH_TARGET
from .lynch import threshold
from .models import (
    ActionKind, Action, Game, Player, PlayerStatus, RosterEntry,
    TargetVotes, VoteRecord, VoteSummary,
)
from .roster import Roster


class VoteResolver:
    """Derives current votes and tallies from the action log."""

    def __init__(self, actions: ActionLog, roster: Roster):
        self.actions = actions
        self.roster = roster

    async def _entries_by_player(self) -> Dict[int, RosterEntry]:
        return {entry.player_id: entry for entry in await self.roster.entries()}

    @staticmethod
    def _bucket(action: Action, entries: Dict[int, RosterEntry]):
        """Tally bucket for a vote-type action, or None if it does not count."""
        if action.kind == ActionKind.NO_LYNCH:
            return NO_LYNCH_TARGET

        target = entries.get(action.target_id)
        if target is None or target.status == PlayerStatus.UNVOTE:
            return None
        if target.status == PlayerStatus.NOLYNCH:
            return NO_LYNCH_TARGET
        return target.player.name

    async def current_actions(self, game: Game, day: int) -> List[Action]:
        return [action for action in await self.actions.all_actions_for_day(game, day) if action.is_current]

    async def tally(self, game: Game, day: int) -> Dict[str, int]:
        """Weighted current votes per target name; no-lynch votes go to "No lynch"."""
        entries = await self._entries_by_player()
        counts: Dict[str, int] = defaultdict(int)

        for action in await self.current_actions(game, day):
            if not action.is_vote:
                continue
            bucket = self._bucket(action, entries)
            if bucket is None:
                continue
            voter = entries.get(action.player_id)
            counts[bucket] += voter.vote_weight if voter else 1

        return dict(counts)

    async def votes_for(self, game: Game, day: int, target: str) -> int:
        """Current votes for a canonical player name or the "No lynch" bucket."""
        return (await self.tally(game, day)).get(target, 0)

    async def players_without_current_vote(self, game: Game, day: int) -> List[Player]:
        entries = await self._entries_by_player()
        voting = {
            action.player_id for action in await self.current_actions(game, day)
            if action.is_vote and self._bucket(action, entries) is not None
        }
        return [entry.player for entry in await self.roster.living() if entry.player_id not in voting]

    async def vote_summary(self, game: Game, day: int) -> VoteSummary:
        """Vote history for the day, oldest first, with retracted votes kept for audit."""
        entries = await self._entries_by_player()
        living = [entry for entry in entries.values() if entry.is_alive]
        targets: Dict[str, TargetVotes] = {}

        for action in await self.actions.all_actions_for_day(game, day):
            if not action.is_vote:
                continue
            bucket = self._bucket(action, entries)
            if bucket is None:
                continue

            if bucket not in targets:
                target = entries.get(action.target_id)
                modifier = target.lynch_modifier if target and bucket != NO_LYNCH_TARGET else 0
                to_lynch = None if bucket == NO_LYNCH_TARGET else threshold(len(living), modifier)
                targets[bucket] = TargetVotes(target=bucket, count=0, threshold=to_lynch)

            voter = entries.get(action.player_id)
            if action.is_current:
                targets[bucket].count += voter.vote_weight if voter else 1
            targets[bucket].records.append(VoteRecord(
                voter=voter.player.proper_name if voter else str(action.player_id),
                post=action.post,
                retracted_in_post=action.retracted_in_post,
            ))

        not_voting = await self.players_without_current_vote(game, day)
        return VoteSummary(
            day=day,
            num_players=len(living),
            to_lynch=threshold(len(living)),
            targets=list(targets.values()),
            not_voting=[player.proper_name for player in not_voting],
        )
