"""Tests for the in-process game-side adapters."""

import asyncio

import pytest

from craftbot.collaborators import OfflineProtocol, PositionTracker, RateLimitedProtocol
from craftbot.models import CommandResult, Position

from tests.helpers import FakeProtocol, make_character


# ---------------------------------------------------------------------------
# RateLimitedProtocol
# ---------------------------------------------------------------------------

class _SlowProtocol(FakeProtocol):
    def __init__(self) -> None:
        super().__init__()
        self.in_flight = 0
        self.max_in_flight = 0

    async def execute(self, command: str) -> CommandResult:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0.001)
        self.in_flight -= 1
        return await super().execute(command)


class _BrokenProtocol(FakeProtocol):
    async def execute(self, command: str) -> CommandResult:
        raise ConnectionResetError("rcon dropped")


class TestRateLimitedProtocol:
    @pytest.mark.asyncio
    async def test_commands_serialized_in_order(self) -> None:
        inner = _SlowProtocol()
        limited = RateLimitedProtocol(inner, min_delay=0)
        await asyncio.gather(*(limited.execute(f"say {i}") for i in range(5)))
        assert inner.executed == [f"say {i}" for i in range(5)]
        assert inner.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_min_delay_between_commands(self) -> None:
        inner = FakeProtocol()
        limited = RateLimitedProtocol(inner, min_delay=0.05)
        loop = asyncio.get_running_loop()
        start = loop.time()
        await limited.execute("time set day")
        await limited.execute("weather clear")
        assert loop.time() - start >= 0.04

    @pytest.mark.asyncio
    async def test_channel_error_becomes_failed_result(self) -> None:
        result = await RateLimitedProtocol(_BrokenProtocol(), min_delay=0).execute("list")
        assert not result.success
        assert result.error == "rcon dropped"

    @pytest.mark.asyncio
    async def test_lookups_pass_through(self) -> None:
        inner = FakeProtocol(players={"Steve": Position(x=1, y=2, z=3)}, state={"time": "day"})
        limited = RateLimitedProtocol(inner)
        assert await limited.get_player_position("Steve") == Position(x=1, y=2, z=3)
        assert await limited.list_players() == ["Steve"]
        assert await limited.get_state("Steve", [], ["time"]) == {"time": "day"}


# ---------------------------------------------------------------------------
# OfflineProtocol
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_offline_protocol():
    offline = OfflineProtocol()
    result = await offline.execute("say hi")
    assert not result.success
    assert "Not connected" in result.error
    assert await offline.get_player_position("Steve") is None
    assert await offline.list_players() == []
    assert await offline.get_state("Steve", ["health"], []) == {}


# ---------------------------------------------------------------------------
# PositionTracker
# ---------------------------------------------------------------------------

class TestPositionTracker:
    def test_register_with_position(self) -> None:
        tracker = PositionTracker()
        tracker.register(make_character(position=Position(x=0, y=64, z=0)))
        assert tracker.get_position("bob") == Position(x=0, y=64, z=0)
        assert tracker.is_alive("bob")

    def test_untracked_character_ignored(self) -> None:
        tracker = PositionTracker()
        tracker.register(make_character())
        assert len(tracker) == 0
        assert tracker.get_position("bob") is None
        assert not tracker.is_alive("bob")

    def test_update_and_death(self) -> None:
        tracker = PositionTracker()
        tracker.register(make_character(position=Position(x=0, y=64, z=0)))
        tracker.update("bob", Position(x=5, y=64, z=5))
        assert tracker.get_position("bob") == Position(x=5, y=64, z=5)

        tracker.update("bob", None)
        assert tracker.get_position("bob") is None
        assert not tracker.is_alive("bob")

        tracker.update("bob", Position(x=1, y=64, z=1))
        assert tracker.is_alive("bob")

    def test_update_unknown_is_ignored(self) -> None:
        tracker = PositionTracker()
        tracker.update("ghost", Position(x=0, y=0, z=0))
        assert tracker.get_position("ghost") is None

    def test_reregister_keeps_polled_position(self) -> None:
        tracker = PositionTracker()
        character = make_character(position=Position(x=0, y=64, z=0))
        tracker.register(character)
        tracker.update("bob", Position(x=9, y=64, z=9))
        character.appearance.position = None
        tracker.register(character)
        assert tracker.get_position("bob") == Position(x=9, y=64, z=9)

    def test_unregister(self) -> None:
        tracker = PositionTracker()
        tracker.register(make_character(position=Position(x=0, y=64, z=0)))
        tracker.unregister("bob")
        assert len(tracker) == 0
