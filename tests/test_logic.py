"""
Tests for the phase state machine, voting and automatic lynches.
"""

import asyncio

import aiosqlite
import pytest

from mafiabot.actions import ActionLog
from mafiabot.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from mafiabot.models import VOTE_KINDS, ActionKind, GameStatus, PlayerStatus, TimeOfDay
from mafiabot.roster import Roster
from mafiabot.storage import Transaction

from conftest import GAME_ID, MOD, PLAYERS


async def get_game(storage):
    async with storage.transaction() as tx:
        return await tx.get_game(GAME_ID)


async def get_entry(storage, name):
    async with storage.transaction() as tx:
        return await Roster(tx, GAME_ID).get(name)


async def current_votes(storage, name):
    async with storage.transaction() as tx:
        game = await tx.get_game(GAME_ID)
        player = await tx.get_player_by_name(name)
        return await ActionLog(tx).current_actions_for_player(game, game.day, player, VOTE_KINDS)


# Setup and moderator transitions

async def test_prepare_creates_game(controller, storage):
    result = await controller.prepare(GAME_ID, 1, MOD, "Town of Tests")

    assert result.success
    game = await get_game(storage)
    assert game.status == GameStatus.PREPARING
    assert game.day == 0
    assert game.name == "Town of Tests"
    assert (await get_entry(storage, MOD)).status == PlayerStatus.MOD
    assert (await get_entry(storage, "unvote")).status == PlayerStatus.UNVOTE
    assert (await get_entry(storage, "nolynch")).status == PlayerStatus.NOLYNCH


async def test_prepare_twice_is_rejected(controller):
    await controller.prepare(GAME_ID, 1, MOD, "First")
    with pytest.raises(ValidationError, match="Game already preparing"):
        await controller.prepare(GAME_ID, 2, MOD, "Second")


async def test_game_names_are_unique(controller):
    await controller.prepare(GAME_ID, 1, MOD, "Same")
    with pytest.raises(ValidationError):
        await controller.prepare(GAME_ID + 1, 1, MOD, "Same")


async def test_start_moves_to_day_one(controller, running_game, storage):
    await running_game()

    game = await get_game(storage)
    assert game.status == GameStatus.RUNNING
    assert game.day == 1
    assert game.time_of_day == TimeOfDay.DAY


async def test_start_requires_mod(controller, storage):
    await controller.prepare(GAME_ID, 1, MOD, "Test")
    await controller.join(GAME_ID, 2, "Alice")

    with pytest.raises(ValidationError, match="not mod"):
        await controller.start(GAME_ID, 3, "Alice")
    assert (await get_game(storage)).status == GameStatus.PREPARING


async def test_start_requires_prep_phase(controller, running_game):
    await running_game()
    with pytest.raises(ValidationError, match="not in prep phase"):
        await controller.start(GAME_ID, 20, MOD)


async def test_start_unknown_game(controller):
    with pytest.raises(NotFoundError):
        await controller.start(4242, 1, MOD)


async def test_new_day_during_day_is_rejected(controller, running_game, storage):
    await running_game()
    with pytest.raises(ValidationError, match="new day until night"):
        await controller.new_day(GAME_ID, 20, MOD)
    assert (await get_game(storage)).day == 1


async def test_new_day_requires_mod(controller, running_game):
    await running_game()
    await controller.kill(GAME_ID, 20, MOD, "Eve")
    with pytest.raises(ValidationError, match="not mod"):
        await controller.new_day(GAME_ID, 21, "Alice")


async def test_new_day_after_lynch(controller, running_game, storage):
    await running_game()
    for post, voter in enumerate(("Alice", "Carol", "Dave"), start=10):
        await controller.cast_vote(GAME_ID, post, voter, "Bob")

    result = await controller.new_day(GAME_ID, 20, MOD)

    game = await get_game(storage)
    assert game.day == 2
    assert game.time_of_day == TimeOfDay.DAY
    assert "it takes 3 votes" in result.message
    assert sorted(result.data.living) == ["Alice", "Carol", "Dave", "Eve"]


async def test_kill_marks_player_dead_without_phase_change(controller, running_game, storage):
    await running_game()

    await controller.kill(GAME_ID, 20, MOD, "Eve")

    assert (await get_entry(storage, "eve")).status == PlayerStatus.DEAD
    assert (await get_game(storage)).time_of_day == TimeOfDay.DAY
    with pytest.raises(ValidationError, match="Target not alive"):
        await controller.kill(GAME_ID, 21, MOD, "Eve")


async def test_kill_requires_mod(controller, running_game, storage):
    await running_game()
    with pytest.raises(ValidationError, match="not mod"):
        await controller.kill(GAME_ID, 20, "Alice", "Eve")
    assert (await get_entry(storage, "eve")).is_alive


async def test_end_finishes_game(controller, running_game, storage):
    await running_game()

    result = await controller.end(GAME_ID, 30, MOD)

    game = await get_game(storage)
    assert game.status == GameStatus.FINISHED
    assert game.day == 2
    assert result.data.mods == [MOD]
    with pytest.raises(ValidationError, match="Game not running"):
        await controller.cast_vote(GAME_ID, 31, "Alice", "Bob")


async def test_set_property(controller, running_game, storage):
    await running_game()

    await controller.set_player_property(GAME_ID, 20, MOD, "Bob", "loved")
    await controller.set_player_property(GAME_ID, 21, MOD, "Carol", "doubleVoter")
    bob = await get_entry(storage, "bob")
    carol = await get_entry(storage, "carol")
    assert (bob.lynch_modifier, bob.vote_weight) == (1, 1)
    assert (carol.lynch_modifier, carol.vote_weight) == (0, 2)

    await controller.set_player_property(GAME_ID, 22, MOD, "Carol", "vanilla")
    carol = await get_entry(storage, "carol")
    assert (carol.lynch_modifier, carol.vote_weight) == (0, 1)


async def test_set_unknown_property(controller, running_game, storage):
    await running_game()
    with pytest.raises(ValidationError, match="Unknown property"):
        await controller.set_player_property(GAME_ID, 20, MOD, "Bob", "bulletproof")
    bob = await get_entry(storage, "bob")
    assert (bob.lynch_modifier, bob.vote_weight) == (0, 1)


# Joining

async def test_join_twice_is_rejected(controller, running_game):
    await running_game()
    with pytest.raises(ValidationError, match="already in this game"):
        await controller.join(GAME_ID, 20, "alice")


async def test_cannot_join_as_placeholder(controller, running_game):
    await running_game()
    with pytest.raises(ValidationError):
        await controller.join(GAME_ID, 20, "unvote")


# Voting

async def test_auto_lynch_at_threshold(controller, running_game, storage):
    await running_game()

    first = await controller.cast_vote(GAME_ID, 10, "Alice", "Bob")
    assert first.data == {"votes": 1, "to_lynch": 3}
    assert first.lynched is None

    await controller.cast_vote(GAME_ID, 11, "Carol", "Bob")
    third = await controller.cast_vote(GAME_ID, 12, "Dave", "Bob")

    assert third.lynched == "Bob"
    assert (await get_entry(storage, "bob")).status == PlayerStatus.DEAD
    assert (await get_game(storage)).time_of_day == TimeOfDay.NIGHT

    with pytest.raises(ValidationError, match="It is not day"):
        await controller.cast_vote(GAME_ID, 13, "Eve", "Bob")
    with pytest.raises(ValidationError, match="It is not day"):
        await controller.cast_vote(GAME_ID, 14, "Eve", "Alice")


async def test_loved_player_in_small_game(controller, running_game, storage):
    await running_game(players=("Alice", "Bob", "Carol"))
    await controller.set_player_property(GAME_ID, 10, MOD, "Bob", "loved")

    result = await controller.cast_vote(GAME_ID, 11, "Alice", "Bob")

    assert result.data == {"votes": 1, "to_lynch": 1}
    assert result.lynched == "Bob"


async def test_hated_player_needs_more_votes(controller, running_game, storage):
    await running_game()
    await controller.set_player_property(GAME_ID, 10, MOD, "Bob", "hated")

    for post, voter in enumerate(("Alice", "Carol", "Dave"), start=11):
        result = await controller.cast_vote(GAME_ID, post, voter, "Bob")
    assert result.lynched is None
    assert result.data == {"votes": 3, "to_lynch": 4}

    result = await controller.cast_vote(GAME_ID, 14, "Eve", "Bob")
    assert result.lynched == "Bob"


async def test_double_voter_adds_two(controller, running_game, storage):
    await running_game()
    await controller.set_player_property(GAME_ID, 10, MOD, "Alice", "doubleVoter")

    result = await controller.cast_vote(GAME_ID, 11, "Alice", "Bob")

    assert result.data["votes"] == 2
    [vote] = await current_votes(storage, "alice")
    assert vote.kind == ActionKind.DOUBLE_VOTE


@pytest.mark.parametrize("voter, target, reason", [
    ("Zed", "Bob", "Voter not in game"),
    ("Alice", "Zed", "Target not in game"),
    (MOD, "Bob", "Voter not alive"),
])
async def test_vote_validation(controller, running_game, voter, target, reason):
    await running_game()
    with pytest.raises(ValidationError, match=reason):
        await controller.cast_vote(GAME_ID, 10, voter, target)


async def test_dead_players_cannot_vote_or_be_voted(controller, running_game):
    await running_game()
    await controller.kill(GAME_ID, 10, MOD, "Eve")

    with pytest.raises(ValidationError, match="Voter not alive"):
        await controller.cast_vote(GAME_ID, 11, "Eve", "Bob")
    with pytest.raises(ValidationError, match="Target not alive"):
        await controller.cast_vote(GAME_ID, 12, "Bob", "Eve")


async def test_voting_before_start_is_rejected(controller):
    await controller.prepare(GAME_ID, 1, MOD, "Test")
    await controller.join(GAME_ID, 2, "Alice")
    await controller.join(GAME_ID, 3, "Bob")
    with pytest.raises(ValidationError, match="Game not running"):
        await controller.cast_vote(GAME_ID, 4, "Alice", "Bob")


async def test_no_lynch_never_lynches(controller, running_game, storage):
    await running_game()
    for post, voter in enumerate(PLAYERS, start=10):
        result = await controller.cast_no_lynch(GAME_ID, post, voter)
        assert result.lynched is None

    assert (await get_game(storage)).time_of_day == TimeOfDay.DAY


@pytest.mark.parametrize("sequence, expected", [
    (["Bob", "Carol", "unvote", "Dave", "no-lynch", "Bob", "Carol"], [1, 1, 1, 1, 1, 1, 1]),
    (["Bob", "unvote", "unvote", "Carol"], [1, 1, 0, 1]),
    (["unvote", "Bob", "unvote", "unvote", "unvote"], [0, 1, 1, 0, 0]),
])
async def test_at_most_one_current_vote_per_player(controller, running_game, storage, sequence, expected):
    await running_game()

    counts = []
    for post, target in enumerate(sequence, start=10):
        await controller.cast_vote(GAME_ID, post, "Alice", target)
        counts.append(len(await current_votes(storage, "alice")))

    assert counts == expected


async def test_repeated_unvote_has_nothing_to_rescind(controller, running_game, storage):
    await running_game()
    await controller.cast_vote(GAME_ID, 10, "Alice", "Bob")

    first = await controller.unvote(GAME_ID, 11, "Alice")
    second = await controller.unvote(GAME_ID, 12, "Alice")

    assert "rescinded" in first.message
    assert "no vote to rescind" in second.message
    assert await current_votes(storage, "alice") == []


async def test_unvote_with_nothing_to_revoke(controller, running_game, storage):
    await running_game()

    result = await controller.unvote(GAME_ID, 10, "Alice")

    assert result.success
    assert "no vote to rescind" in result.message
    assert await current_votes(storage, "alice") == []


async def test_duplicate_vote_rolls_back(controller, running_game, storage):
    await running_game()
    await controller.cast_vote(GAME_ID, 10, "Alice", "Bob")

    with pytest.raises(ConflictError):
        await controller.cast_vote(GAME_ID, 10, "Alice", "Bob")

    [vote] = await current_votes(storage, "alice")
    assert vote.post == 10
    assert vote.is_current


async def test_persistence_failure_leaves_no_partial_state(controller, running_game, storage, monkeypatch):
    await running_game()
    await controller.cast_vote(GAME_ID, 10, "Alice", "Bob")

    async def broken_insert(self, action):
        raise aiosqlite.OperationalError("disk I/O error")

    monkeypatch.setattr(Transaction, "insert_action", broken_insert)
    with pytest.raises(PersistenceError):
        await controller.cast_vote(GAME_ID, 11, "Alice", "Carol")
    monkeypatch.undo()

    [vote] = await current_votes(storage, "alice")
    assert vote.post == 10


async def test_concurrent_votes_lynch_once(controller, running_game, storage):
    await running_game()

    results = await asyncio.gather(
        *(controller.cast_vote(GAME_ID, post, voter, "Bob")
          for post, voter in enumerate(("Alice", "Carol", "Dave", "Eve"), start=10)),
        return_exceptions=True,
    )

    lynches = [r for r in results if not isinstance(r, Exception) and r.lynched]
    rejected = [r for r in results if isinstance(r, ValidationError)]
    assert len(lynches) == 1
    assert len(rejected) == 1
    assert rejected[0].reason == "It is not day"
    assert len(controller.locks) == 0


async def test_game_locks_are_released(controller, running_game):
    await running_game()
    with pytest.raises(NotFoundError):
        await controller.start(4242, 1, MOD)
    await controller.cast_vote(GAME_ID, 10, "Alice", "Bob")

    assert len(controller.locks) == 0


async def test_games_are_independent(controller, running_game, storage):
    await running_game(game_id=GAME_ID)
    await controller.prepare(2002, 1, "OtherMod", "Other")
    await controller.join(2002, 2, "Alice")

    with pytest.raises(ValidationError, match="Game not running"):
        await controller.cast_vote(2002, 3, "Alice", "Alice")
    result = await controller.cast_vote(GAME_ID, 3, "Alice", "Bob")
    assert result.success
