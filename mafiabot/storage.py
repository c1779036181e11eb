"""Database storage layer for the Mafia bot."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Optional

import aiosqlite

from .config import DATABASE_PATH
from .errors import ConflictError, PersistenceError
from .models import Action, ActionKind, Game, GameStatus, Player, PlayerStatus, RosterEntry, TimeOfDay


logger = logging.getLogger(__name__)


def _game_from_row(row) -> Game:
    return Game(
        id=row["id"],
        status=GameStatus(row["status"]),
        day=row["day"],
        time_of_day=TimeOfDay(row["time_of_day"]),
        name=row["name"],
    )


def _roster_from_row(row) -> RosterEntry:
    return RosterEntry(
        game_id=row["game_id"],
        player_id=row["player_id"],
        status=PlayerStatus(row["status"]),
        vote_weight=row["vote_weight"],
        lynch_modifier=row["lynch_modifier"],
        player=Player(id=row["player_id"], name=row["name"], proper_name=row["proper_name"]),
    )


def _action_from_row(row) -> Action:
    return Action(
        id=row["id"],
        game_id=row["game_id"],
        day=row["day"],
        post=row["post"],
        player_id=row["player_id"],
        kind=ActionKind(row["kind"]),
        target_id=row["target_id"],
        retracted_in_post=row["retracted_in_post"],
    )


class GameStorage:
    """Handles all database operations for the bot."""

    def __init__(self, db_path: str = DATABASE_PATH):
        self.db_path = db_path

    async def initialize(self):
        """Initialize the database with required tables."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS games (
                    id INTEGER PRIMARY KEY,
                    status TEXT NOT NULL,
                    day INTEGER NOT NULL DEFAULT 0,
                    time_of_day TEXT NOT NULL,
                    name TEXT UNIQUE
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS players (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    proper_name TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS roster (
                    game_id INTEGER NOT NULL REFERENCES games(id),
                    player_id INTEGER NOT NULL REFERENCES players(id),
                    status TEXT NOT NULL,
                    vote_weight INTEGER NOT NULL DEFAULT 1,
                    lynch_modifier INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY(game_id, player_id)
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS actions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    game_id INTEGER NOT NULL REFERENCES games(id),
                    day INTEGER NOT NULL,
                    post INTEGER NOT NULL,
                    player_id INTEGER NOT NULL REFERENCES players(id),
                    kind TEXT NOT NULL,
                    target_id INTEGER REFERENCES players(id),
                    retracted_in_post INTEGER,
                    CHECK(retracted_in_post IS NULL OR retracted_in_post >= post)
                )
            """)

            # NULL targets would never collide in a plain UNIQUE index
            await db.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS actions_unique_per_post
                ON actions (game_id, post, player_id, kind, IFNULL(target_id, -1))
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS actions_by_day
                ON actions (game_id, day, post)
            """)

            await db.commit()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Transaction"]:
        """Run a block of operations in one transaction.

        Commits when the block exits normally and rolls back on any exception.
        Database failures surface as PersistenceError.
        """
        try:
            async with aiosqlite.connect(self.db_path, isolation_level=None) as db:
                db.row_factory = aiosqlite.Row
                await db.execute("BEGIN IMMEDIATE")
                try:
                    yield Transaction(db)
                except BaseException:
                    await db.rollback()
                    raise
                await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"Database error, transaction rolled back: {e}", exc_info=True)
            raise PersistenceError(f"Database error: {e}") from e


class Transaction:
    """Game, player, roster and action operations bound to one open transaction."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    # Games

    async def get_game(self, game_id: int) -> Optional[Game]:
        async with self.db.execute("SELECT * FROM games WHERE id = ?", (game_id,)) as cursor:
            row = await cursor.fetchone()
            return _game_from_row(row) if row else None

    async def get_game_by_name(self, name: str) -> Optional[Game]:
        async with self.db.execute("SELECT * FROM games WHERE name = ?", (name,)) as cursor:
            row = await cursor.fetchone()
            return _game_from_row(row) if row else None

    async def create_game(self, game: Game) -> Game:
        await self.db.execute(
            "INSERT INTO games (id, status, day, time_of_day, name) VALUES (?, ?, ?, ?, ?)",
            (game.id, game.status.value, game.day, game.time_of_day.value, game.name)
        )
        return game

    async def update_game(self, game: Game):
        await self.db.execute(
            "UPDATE games SET status = ?, day = ?, time_of_day = ?, name = ? WHERE id = ?",
            (game.status.value, game.day, game.time_of_day.value, game.name, game.id)
        )

    # Players

    async def get_player(self, player_id: int) -> Optional[Player]:
        async with self.db.execute("SELECT * FROM players WHERE id = ?", (player_id,)) as cursor:
            row = await cursor.fetchone()
            return Player(**dict(row)) if row else None

    async def get_player_by_name(self, name: str) -> Optional[Player]:
        async with self.db.execute("SELECT * FROM players WHERE name = ?", (name.lower(),)) as cursor:
            row = await cursor.fetchone()
            return Player(**dict(row)) if row else None

    async def find_or_create_player(self, name: str) -> Player:
        """Get a player by name, creating it with `name` as the display name."""
        player = await self.get_player_by_name(name)
        if player:
            return player

        cursor = await self.db.execute(
            "INSERT INTO players (name, proper_name) VALUES (?, ?)",
            (name.lower(), name)
        )
        return Player(id=cursor.lastrowid, name=name.lower(), proper_name=name)

    # Roster

    async def get_roster_entry(self, game_id: int, player_id: int) -> Optional[RosterEntry]:
        async with self.db.execute("""
            SELECT roster.*, players.name, players.proper_name
            FROM roster JOIN players ON players.id = roster.player_id
            WHERE roster.game_id = ? AND roster.player_id = ?
        """, (game_id, player_id)) as cursor:
            row = await cursor.fetchone()
            return _roster_from_row(row) if row else None

    async def find_or_create_roster_entry(self, game_id: int, player: Player,
                                          status: PlayerStatus) -> RosterEntry:
        """Get a roster entry, adding the player with `status` if missing."""
        entry = await self.get_roster_entry(game_id, player.id)
        if entry:
            return entry

        await self.db.execute(
            "INSERT INTO roster (game_id, player_id, status) VALUES (?, ?, ?)",
            (game_id, player.id, status.value)
        )
        return RosterEntry(game_id=game_id, player_id=player.id, status=status, player=player)

    async def update_roster_entry(self, entry: RosterEntry):
        await self.db.execute("""
            UPDATE roster SET status = ?, vote_weight = ?, lynch_modifier = ?
            WHERE game_id = ? AND player_id = ?
        """, (entry.status.value, entry.vote_weight, entry.lynch_modifier, entry.game_id, entry.player_id))

    async def list_roster(self, game_id: int,
                          statuses: Optional[Iterable[PlayerStatus]] = None) -> List[RosterEntry]:
        """List roster entries for a game, optionally filtered by status, in join order."""
        query = """
            SELECT roster.*, players.name, players.proper_name
            FROM roster JOIN players ON players.id = roster.player_id
            WHERE roster.game_id = ?
        """
        params: list = [game_id]
        if statuses is not None:
            statuses = list(statuses)
            query += f" AND roster.status IN ({', '.join('?' for _ in statuses)})"
            params.extend(status.value for status in statuses)
        query += " ORDER BY roster.rowid"

        async with self.db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return [_roster_from_row(row) for row in rows]

    # Actions

    async def insert_action(self, action: Action) -> Action:
        try:
            cursor = await self.db.execute("""
                INSERT INTO actions (game_id, day, post, player_id, kind, target_id, retracted_in_post)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (action.game_id, action.day, action.post, action.player_id, action.kind.value,
                  action.target_id, action.retracted_in_post))
        except aiosqlite.IntegrityError as e:
            raise ConflictError(
                f"Action {action.kind.value} already recorded for post {action.post}"
            ) from e
        action.id = cursor.lastrowid
        return action

    async def set_action_retracted(self, action_id: int, retracted_in_post: int):
        """Mark an action retracted. A set value is never overwritten."""
        await self.db.execute(
            "UPDATE actions SET retracted_in_post = ? WHERE id = ? AND retracted_in_post IS NULL",
            (retracted_in_post, action_id)
        )

    async def get_actions_at_post(self, game_id: int, post: int) -> List[Action]:
        async with self.db.execute(
            "SELECT * FROM actions WHERE game_id = ? AND post = ? ORDER BY id",
            (game_id, post)
        ) as cursor:
            rows = await cursor.fetchall()
            return [_action_from_row(row) for row in rows]

    async def list_actions(self, game_id: int, day: int) -> List[Action]:
        """List every action of a game-day ordered by post."""
        async with self.db.execute(
            "SELECT * FROM actions WHERE game_id = ? AND day = ? ORDER BY post, id",
            (game_id, day)
        ) as cursor:
            rows = await cursor.fetchall()
            return [_action_from_row(row) for row in rows]
