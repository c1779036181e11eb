"""Core game logic: phase transitions, voting and automatic lynches."""

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Iterable, List, Optional, Protocol, Tuple

from .actions import ActionLog
from .config import NO_LYNCH_NICKS, PLAYER_PROPERTIES, UNVOTE_NICKS
from .errors import MafiaError, NotFoundError, PersistenceError, ValidationError
from .lynch import votes_to_lynch
from .models import (
    ActionKind, CommandResult, Game, GameStatus, InboundCommand, PlayerList,
    PlayerStatus, RosterEntry, TimeOfDay, VoteSummary,
)
from .roster import Roster
from .storage import GameStorage, Transaction
from .votes import VoteResolver


logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Delivers command outcomes back to the game thread."""

    async def emit(self, game_id: int, post: Optional[int], message: CommandResult) -> None:
        ...


class GameLocks:
    """One lock per game so commands for the same game never interleave.

    A game's lock is dropped once no command holds or waits for it.
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._users: Dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, game_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(game_id, asyncio.Lock())
        self._users[game_id] = self._users.get(game_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[game_id] -= 1
            if not self._users[game_id]:
                del self._users[game_id]
                del self._locks[game_id]


@dataclass
class GameSession:
    """Components bound to one game and one open transaction."""
    tx: Transaction
    roster: Roster
    actions: ActionLog
    votes: VoteResolver


def normalize_name(arg: str) -> str:
    """Strip a leading @ and one trailing punctuation mark from a player name."""
    return re.sub(r"^@?(.*?)[.!?,]?$", r"\1", arg.strip())


class PhaseController:
    """Runs game commands, each under its game's lock and in one transaction."""

    def __init__(self, storage: GameStorage, notifier: Optional[Notifier] = None):
        self.storage = storage
        self.notifier = notifier
        self.locks = GameLocks()

    @asynccontextmanager
    async def session(self, game_id: int) -> AsyncIterator[GameSession]:
        async with self.locks.hold(game_id):
            async with self.storage.transaction() as tx:
                roster = Roster(tx, game_id)
                actions = ActionLog(tx)
                yield GameSession(tx, roster, actions, VoteResolver(actions, roster))

    async def _require_game(self, s: GameSession, game_id: int) -> Game:
        game = await s.tx.get_game(game_id)
        if not game:
            raise NotFoundError("Game does not exist")
        return game

    async def _require_running(self, s: GameSession, game_id: int) -> Game:
        game = await self._require_game(s, game_id)
        if game.status != GameStatus.RUNNING:
            raise ValidationError("Game not running")
        return game

    async def _require_voter(self, s: GameSession, game_id: int, actor: str) -> Tuple[Game, RosterEntry]:
        game = await self._require_running(s, game_id)
        if game.time_of_day != TimeOfDay.DAY:
            raise ValidationError("It is not day")
        voter = await s.roster.require(actor, "Voter not in game")
        if not voter.is_alive:
            raise ValidationError("Voter not alive")
        return game, voter

    async def _player_list(self, s: GameSession) -> PlayerList:
        entries = await s.roster.entries()
        return PlayerList(
            living=[e.player.proper_name for e in entries if e.status == PlayerStatus.ALIVE],
            dead=[e.player.proper_name for e in entries if e.status == PlayerStatus.DEAD],
            mods=[e.player.proper_name for e in entries if e.status == PlayerStatus.MOD],
        )

    # Mod commands

    async def prepare(self, game_id: int, post: int, actor: str, name: Optional[str] = None) -> CommandResult:
        """Create a game in the prep phase with `actor` as its mod."""
        async with self.session(game_id) as s:
            game = await s.tx.get_game(game_id)
            if game:
                raise ValidationError(f"Game already {game.status.value}")
            if name and await s.tx.get_game_by_name(name):
                raise ValidationError(f'A game named "{name}" already exists')

            await s.tx.create_game(Game(
                id=game_id,
                status=GameStatus.PREPARING,
                day=0,
                time_of_day=TimeOfDay.NIGHT,
                name=name,
            ))
            mod = await s.roster.add(actor, PlayerStatus.MOD)
            await s.roster.add_placeholders()

        logger.info(f"Game {game_id} ({name}) prepared by {actor}")
        return CommandResult(True, f'Game "{name or game_id}" created! The mod is @{mod.player.proper_name}')

    async def start(self, game_id: int, post: int, actor: str) -> CommandResult:
        """Move a game from the prep phase to day 1."""
        async with self.session(game_id) as s:
            game = await self._require_game(s, game_id)
            if game.status != GameStatus.PREPARING:
                raise ValidationError("Game not in prep phase")
            await s.roster.require_mod(actor)

            game.status = GameStatus.RUNNING
            game.day = 1
            game.time_of_day = TimeOfDay.DAY
            await s.tx.update_game(game)
            players = await self._player_list(s)

        logger.info(f"Game {game_id} started with {len(players.living)} players")
        return CommandResult(True, "The game has started! It is now Day 1.", data=players)

    async def new_day(self, game_id: int, post: int, actor: str) -> CommandResult:
        """Advance a game from night to the next day."""
        async with self.session(game_id) as s:
            game = await self._require_running(s, game_id)
            await s.roster.require_mod(actor)
            if game.time_of_day != TimeOfDay.NIGHT:
                raise ValidationError("Cannot move to a new day until night")

            game.day += 1
            game.time_of_day = TimeOfDay.DAY
            await s.tx.update_game(game)
            players = await self._player_list(s)
            to_lynch = await votes_to_lynch(s.roster)

        logger.info(f"Game {game_id} moved to day {game.day}")
        return CommandResult(
            True,
            f"It is now Day {game.day}. With {len(players.living)} players alive, "
            f"it takes {to_lynch} votes to lynch.",
            data=players,
        )

    async def kill(self, game_id: int, post: int, actor: str, target: str) -> CommandResult:
        """Kill a player outside of the vote. Does not change the phase."""
        async with self.session(game_id) as s:
            game = await self._require_running(s, game_id)
            await s.roster.require_mod(actor)
            victim = await s.roster.require(target, "Target not in game")
            if not victim.is_alive:
                raise ValidationError("Target not alive")

            mod = await s.roster.get(actor)
            await s.actions.record_action(game, game.day, post, mod.player, ActionKind.KILL, victim.player)
            await s.roster.kill(victim)

        logger.info(f"Game {game_id}: {actor} killed {victim.player.name}")
        return CommandResult(True, f"Killed @{victim.player.proper_name} in game {game.name or game_id}")

    async def end(self, game_id: int, post: int, actor: str) -> CommandResult:
        """Finish a running game."""
        async with self.session(game_id) as s:
            game = await self._require_running(s, game_id)
            await s.roster.require_mod(actor)

            game.day += 1
            game.status = GameStatus.FINISHED
            await s.tx.update_game(game)
            players = await self._player_list(s)

        logger.info(f"Game {game_id} finished")
        return CommandResult(True, "Game now finished.", data=players)

    async def set_player_property(self, game_id: int, post: int, actor: str,
                                  target: str, prop: str) -> CommandResult:
        """Make a player loved, hated, a double voter, or vanilla again."""
        async with self.session(game_id) as s:
            await self._require_game(s, game_id)
            await s.roster.require_mod(actor)
            if prop.lower() not in PLAYER_PROPERTIES:
                raise ValidationError(f"Unknown property {prop}")
            entry = await s.roster.require(target, "Target not in game")
            if entry.is_placeholder:
                raise ValidationError("Target not in game")

            await s.roster.set_property(entry, prop)

        return CommandResult(True, f"@{entry.player.proper_name} is now {prop}")

    # Player commands

    async def join(self, game_id: int, post: int, actor: str) -> CommandResult:
        async with self.session(game_id) as s:
            game = await self._require_game(s, game_id)
            if game.status in (GameStatus.FINISHED, GameStatus.ABANDONED):
                raise ValidationError(f"Game already {game.status.value}")
            if await s.roster.get(actor):
                raise ValidationError(f"You are already in this game, @{actor}!")

            entry = await s.roster.add(actor, PlayerStatus.ALIVE)

        return CommandResult(True, f"Welcome to the game, @{entry.player.proper_name}")

    async def cast_vote(self, game_id: int, post: int, actor: str, target: str) -> CommandResult:
        """Vote to lynch `target`, lynching them if the vote reaches the threshold.

        A vote for one of the reserved names is handled as an unvote or a
        no-lynch vote instead.
        """
        if target.lower() in NO_LYNCH_NICKS:
            return await self.cast_no_lynch(game_id, post, actor)
        if target.lower() in UNVOTE_NICKS:
            return await self.unvote(game_id, post, actor)

        async with self.session(game_id) as s:
            game, voter = await self._require_voter(s, game_id, actor)
            votee = await s.roster.require(target, "Target not in game")
            if votee.is_placeholder:
                raise ValidationError("Target not in game")
            if not votee.is_alive:
                raise ValidationError("Target not alive")

            kind = ActionKind.DOUBLE_VOTE if voter.vote_weight > 1 else ActionKind.VOTE
            await s.actions.revoke_votes(game, game.day, voter.player, post)
            await s.actions.record_action(game, game.day, post, voter.player, kind, votee.player)

            votes = await s.votes.votes_for(game, game.day, votee.player.name)
            to_lynch = await votes_to_lynch(s.roster, votee)
            result = CommandResult(
                True,
                f"@{voter.player.proper_name} voted for @{votee.player.proper_name} in post #{post}.",
                data={"votes": votes, "to_lynch": to_lynch},
            )

            if votes >= to_lynch:
                await s.roster.kill(votee)
                game.time_of_day = TimeOfDay.NIGHT
                await s.tx.update_game(game)
                result.lynched = votee.player.proper_name

        if result.lynched:
            logger.info(f"Game {game_id}: {votee.player.name} lynched on day {game.day} with {votes}/{to_lynch} votes")
        return result

    async def cast_no_lynch(self, game_id: int, post: int, actor: str) -> CommandResult:
        """Vote to lynch nobody today. Never triggers a lynch."""
        async with self.session(game_id) as s:
            game, voter = await self._require_voter(s, game_id, actor)
            placeholder = await s.roster.require(NO_LYNCH_NICKS[0], "No-lynch is not available in this game")

            await s.actions.revoke_votes(game, game.day, voter.player, post)
            await s.actions.record_action(game, game.day, post, voter.player, ActionKind.NO_LYNCH, placeholder.player)

        return CommandResult(True, f"@{voter.player.proper_name} voted for no lynch in post #{post}.")

    async def unvote(self, game_id: int, post: int, actor: str) -> CommandResult:
        """Rescind the actor's current vote, if any."""
        async with self.session(game_id) as s:
            game, voter = await self._require_voter(s, game_id, actor)
            placeholder = await s.roster.require(UNVOTE_NICKS[0], "Unvote is not available in this game")

            revoked = await s.actions.revoke_votes(game, game.day, voter.player, post)
            # An earlier unvote marker is not a vote
            if not any(action.target_id != placeholder.player_id for action in revoked):
                return CommandResult(True, f"@{voter.player.proper_name} has no vote to rescind.")
            await s.actions.record_action(game, game.day, post, voter.player, ActionKind.VOTE, placeholder.player)

        return CommandResult(True, f"@{voter.player.proper_name} rescinded their vote in post #{post}.")

    # Read views

    async def list_players(self, game_id: int) -> CommandResult:
        async with self.session(game_id) as s:
            await self._require_game(s, game_id)
            players = await self._player_list(s)
        return CommandResult(True, f"{len(players.living)} players alive", data=players)

    async def list_votes(self, game_id: int, day: Optional[int] = None) -> CommandResult:
        async with self.session(game_id) as s:
            game = await self._require_game(s, game_id)
            summary: VoteSummary = await s.votes.vote_summary(game, game.day if day is None else day)
        return CommandResult(True, f"Votes for day {summary.day}", data=summary)

    # Setup

    async def register_players(self, game_id: int, names: Iterable[str], game_name: Optional[str] = None) -> List[str]:
        """Seed a game's roster, creating the game in the prep phase if needed.

        Returns the names that were added; names already on the roster are skipped.
        """
        added = []
        async with self.session(game_id) as s:
            if not await s.tx.get_game(game_id):
                await s.tx.create_game(Game(
                    id=game_id,
                    status=GameStatus.PREPARING,
                    day=0,
                    time_of_day=TimeOfDay.NIGHT,
                    name=game_name,
                ))
            await s.roster.add_placeholders()

            for name in names:
                if await s.roster.get(name):
                    logger.info(f"Game {game_id}: {name} is already on the roster, skipping")
                    continue
                logger.info(f"Game {game_id}: adding player {name}")
                await s.roster.add(name, PlayerStatus.ALIVE)
                added.append(name)
        return added

    # Inbound commands

    async def dispatch(self, command: InboundCommand) -> CommandResult:
        """Run one command relayed from a post and emit its outcome.

        Typed errors become a failed CommandResult; nothing is partially applied.
        """
        name = command.command.lower()
        try:
            result = await self._route(command, name)
        except PersistenceError as e:
            logger.error(f"Game {command.game_id}: {name} from {command.actor} failed: {e.reason}")
            result = CommandResult(False, e.reason, error=e)
        except MafiaError as e:
            logger.info(f"Game {command.game_id}: rejected {name} from {command.actor}: {e.reason}")
            result = CommandResult(False, e.reason, error=e)
        result.command = name

        await self._emit(command.game_id, command.post, result)
        if result.lynched:
            await self._emit(command.game_id, None, CommandResult(
                True,
                f"@{result.lynched} has been lynched! Stay tuned for the flip. It is now Night.",
                command=name,
                lynched=result.lynched,
            ))
        return result

    async def _route(self, c: InboundCommand, name: str) -> CommandResult:
        args = [normalize_name(arg) for arg in c.args]

        def arg(index: int, usage: str) -> str:
            if len(args) <= index or not args[index]:
                raise ValidationError(f"Usage: {name} {usage}")
            return args[index]

        if name == "join":
            return await self.join(c.game_id, c.post, c.actor)
        if name in ("vote", "for"):
            return await self.cast_vote(c.game_id, c.post, c.actor, arg(0, "<player>"))
        if name == "unvote":
            return await self.unvote(c.game_id, c.post, c.actor)
        if name in ("no-lynch", "nolynch"):
            return await self.cast_no_lynch(c.game_id, c.post, c.actor)
        if name in ("list-players", "list-all-players"):
            return await self.list_players(c.game_id)
        if name == "list-votes":
            return await self.list_votes(c.game_id)
        if name == "prepare":
            return await self.prepare(c.game_id, c.post, c.actor, " ".join(c.args).strip() or None)
        if name == "start":
            return await self.start(c.game_id, c.post, c.actor)
        if name == "new-day":
            return await self.new_day(c.game_id, c.post, c.actor)
        if name == "kill":
            return await self.kill(c.game_id, c.post, c.actor, arg(0, "<player>"))
        if name == "end":
            return await self.end(c.game_id, c.post, c.actor)
        if name == "set":
            return await self.set_player_property(c.game_id, c.post, c.actor, arg(0, "<player> <property>"),
                                                  arg(1, "<player> <property>"))
        raise ValidationError(f"Unknown command {name}")

    async def _emit(self, game_id: int, post: Optional[int], result: CommandResult):
        if self.notifier:
            await self.notifier.emit(game_id, post, result)
