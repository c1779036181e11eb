"""
Pytest fixtures for Mafia bot tests.
"""

import pytest

from mafiabot.logic import PhaseController
from mafiabot.storage import GameStorage

GAME_ID = 1001
MOD = "Mod"
PLAYERS = ("Alice", "Bob", "Carol", "Dave", "Eve")


class RecordingNotifier:
    """Collects emitted outcomes instead of posting them."""

    def __init__(self):
        self.messages = []

    async def emit(self, game_id, post, message):
        self.messages.append((game_id, post, message))

    @property
    def texts(self):
        return [message.message for _, _, message in self.messages]


async def make_storage(path) -> GameStorage:
    storage = GameStorage(str(path))
    await storage.initialize()
    return storage


@pytest.fixture
async def storage(tmp_path):
    """A fresh database in a temporary directory."""
    return await make_storage(tmp_path / "mafia.db")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def controller(storage, notifier):
    return PhaseController(storage, notifier)


async def start_game(controller, players=PLAYERS, game_id=GAME_ID):
    """Prepare a game run by MOD, join `players` and start day 1."""
    await controller.prepare(game_id, 1, MOD, f"Game {game_id}")
    for post, name in enumerate(players, start=2):
        await controller.join(game_id, post, name)
    await controller.start(game_id, 9, MOD)
    return game_id


@pytest.fixture
def running_game(controller):
    """Factory that starts a game on day 1; defaults to five players."""
    async def make(players=PLAYERS, game_id=GAME_ID):
        return await start_game(controller, players, game_id)
    return make
