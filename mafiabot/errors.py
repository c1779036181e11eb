"""Exceptions raised by the game engine."""


class MafiaError(Exception):
    """Base class for errors the engine reports back to the thread."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ValidationError(MafiaError):
    """Raised when a command is not allowed in the current game state."""


class NotFoundError(MafiaError):
    """Raised when a referenced game, player or action does not exist."""


class ConflictError(MafiaError):
    """Raised when an identical action was already recorded for a post."""


class PersistenceError(MafiaError):
    """Raised when the database fails; the command's transaction is rolled back."""
