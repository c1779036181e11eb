"""Bot configuration constants and settings."""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from .models import HATED, LOVED, VANILLA

DATABASE_PATH = "mafiabot.db"
COMMAND_PREFIX = "!"

# Reserved roster names. Votes for these never count against a player.
UNVOTE_NICKS = ("unvote", "no-lynch", "nolynch")
NO_LYNCH_NICKS = ("no-lynch", "nolynch")
NO_LYNCH_TARGET = "No lynch"

# Player properties a mod can set: (vote weight, lynch modifier)
PLAYER_PROPERTIES = {
    "loved": (None, LOVED),
    "hated": (None, HATED),
    "doublevoter": (2, None),
    "vanilla": (1, VANILLA),
}


@dataclass(frozen=True)
class Settings:
    """Runtime settings, read from the environment."""
    db_path: str = DATABASE_PATH
    command_prefix: str = COMMAND_PREFIX
    owner_id: int = 0
    thread: Optional[int] = None  # game channel seeded on startup
    game_name: Optional[str] = None
    players: Tuple[str, ...] = ()


def load_settings() -> Settings:
    """Build Settings from environment variables (call after load_dotenv)."""
    thread = os.getenv("MAFIA_THREAD")
    players = os.getenv("MAFIA_PLAYERS", "")
    return Settings(
        db_path=os.getenv("MAFIA_DB_PATH", DATABASE_PATH),
        command_prefix=os.getenv("MAFIA_COMMAND_PREFIX", COMMAND_PREFIX),
        owner_id=int(os.getenv("BOT_OWNER_ID", "0")),
        thread=int(thread) if thread else None,
        game_name=os.getenv("MAFIA_GAME_NAME") or None,
        players=tuple(name.strip() for name in players.split(",") if name.strip()),
    )
