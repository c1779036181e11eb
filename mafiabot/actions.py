"""Append-only log of player actions, scoped to a game-day."""

import logging
from typing import Iterable, List, Optional

from .errors import NotFoundError, ValidationError
from .models import VOTE_KINDS, Action, ActionKind, Game, Player
from .storage import Transaction


logger = logging.getLogger(__name__)


class ActionLog:
    """Records, retracts and lists actions inside a transaction."""

    def __init__(self, tx: Transaction):
        self.tx = tx

    async def record_action(self, game: Game, day: int, post: int, player: Player,
                            kind: ActionKind, target: Optional[Player] = None) -> Action:
        """Record an action.

        Raises ValidationError if `day` is not the game's current day and
        ConflictError if the same action was already recorded for this post.
        """
        if day != game.day:
            raise ValidationError(f"Action is for day {day} but it is day {game.day}")

        action = Action(
            game_id=game.id,
            day=day,
            post=post,
            player_id=player.id,
            kind=kind,
            target_id=target.id if target else None,
        )
        return await self.tx.insert_action(action)

    async def retract(self, action: Action, retracting_post: int) -> bool:
        """Retract one action. Returns False if it was already retracted."""
        if not action.is_current:
            return False
        if retracting_post < action.post:
            raise ValidationError(
                f"Post {retracting_post} cannot retract an action from later post {action.post}"
            )

        await self.tx.set_action_retracted(action.id, retracting_post)
        action.retracted_in_post = retracting_post
        return True

    async def retract_action(self, game: Game, post: int, retracting_post: int):
        """Retract every action recorded at `post`.

        Actions that are already retracted keep their first retracting post.
        """
        actions = await self.tx.get_actions_at_post(game.id, post)
        if not actions:
            raise NotFoundError(f"No action recorded in post {post}")

        for action in actions:
            await self.retract(action, retracting_post)

    async def all_actions_for_day(self, game: Game, day: int) -> List[Action]:
        return await self.tx.list_actions(game.id, day)

    async def current_actions_for_player(self, game: Game, day: int, player: Player,
                                         kinds: Optional[Iterable[ActionKind]] = None) -> List[Action]:
        kinds = tuple(kinds) if kinds is not None else None
        return [
            action for action in await self.all_actions_for_day(game, day)
            if action.player_id == player.id
            and action.is_current
            and (kinds is None or action.kind in kinds)
        ]

    async def revoke_votes(self, game: Game, day: int, player: Player, retracting_post: int) -> List[Action]:
        """Retract every current vote-type action of a player for the day.

        Must run in the same transaction as the insert that follows it so a
        player never holds two current votes.
        """
        revoked = []
        for action in await self.current_actions_for_player(game, day, player, VOTE_KINDS):
            if await self.retract(action, retracting_post):
                revoked.append(action)

        if revoked:
            logger.debug(f"Game {game.id}: post {retracting_post} revoked {len(revoked)} vote(s) by {player.name}")
        return revoked
