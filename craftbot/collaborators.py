"""Interfaces to the game-server side, plus two small in-process adapters.

The pipeline talks to the game through two protocols:

    ProtocolClient  — issues commands and reads player/world state.
    PositionSource  — last known positions of tracked characters.

Production wires a real server client behind ProtocolClient; tests use the
fakes in tests/helpers.py.

RateLimitedProtocol wraps any ProtocolClient so that commands go through a
single ordered conduit with a minimum delay between them. PositionTracker is
an in-memory PositionSource fed by character registration and by whatever
polls the server for entity positions.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Protocol

from craftbot.models import Character, CommandResult, Position

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

class ProtocolClient(Protocol):
    async def execute(self, command: str) -> CommandResult: ...

    async def get_player_position(self, name: str) -> Position | None: ...

    async def list_players(self) -> list[str]: ...

    async def get_state(
        self, player: str, player_fields: list[str], world_fields: list[str]
    ) -> dict[str, Any]: ...


class PositionSource(Protocol):
    def get_position(self, character_id: str) -> Position | None: ...

    def is_alive(self, character_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# OfflineProtocol — stands in until a game server client is attached
# ---------------------------------------------------------------------------

class OfflineProtocol:
    """No server connection: commands fail, lookups come back empty."""

    async def execute(self, command: str) -> CommandResult:
        logger.warning("no game server connection, dropping command: %s", command)
        return CommandResult(success=False, error="Not connected to a game server")

    async def get_player_position(self, name: str) -> Position | None:
        return None

    async def list_players(self) -> list[str]:
        return []

    async def get_state(
        self, player: str, player_fields: list[str], world_fields: list[str]
    ) -> dict[str, Any]:
        return {}


# ---------------------------------------------------------------------------
# RateLimitedProtocol — one command at a time, spaced out
# ---------------------------------------------------------------------------

class RateLimitedProtocol:
    """Serializes execute() calls on the wrapped client.

    Commands are issued strictly in arrival order with at least
    `min_delay` seconds between the end of one and the start of the next.
    Read-only calls pass straight through.
    """

    def __init__(self, inner: ProtocolClient, min_delay: float = 0.1) -> None:
        self._inner = inner
        self._min_delay = min_delay
        self._lock = asyncio.Lock()
        self._last_sent = 0.0

    async def execute(self, command: str) -> CommandResult:
        async with self._lock:
            wait = self._min_delay - (time.monotonic() - self._last_sent)
            if wait > 0:
                await asyncio.sleep(wait)
            try:
                return await self._inner.execute(command)
            except Exception as e:
                logger.error("command channel error on %r: %s", command, e)
                return CommandResult(success=False, error=str(e))
            finally:
                self._last_sent = time.monotonic()

    async def get_player_position(self, name: str) -> Position | None:
        return await self._inner.get_player_position(name)

    async def list_players(self) -> list[str]:
        return await self._inner.list_players()

    async def get_state(
        self, player: str, player_fields: list[str], world_fields: list[str]
    ) -> dict[str, Any]:
        return await self._inner.get_state(player, player_fields, world_fields)


# ---------------------------------------------------------------------------
# PositionTracker — in-memory PositionSource
# ---------------------------------------------------------------------------

class PositionTracker:
    def __init__(self) -> None:
        self._tracked: dict[str, dict[str, Any]] = {}

    def register(self, character: Character) -> None:
        """Start (or refresh) tracking for a character with an entity tag."""
        if not character.appearance.entity_tag and character.appearance.position is None:
            return
        entry = self._tracked.setdefault(character.id, {"alive": True, "position": None})
        entry["tag"] = character.appearance.entity_tag
        if character.appearance.position is not None:
            entry["position"] = character.appearance.position

    def unregister(self, character_id: str) -> None:
        self._tracked.pop(character_id, None)

    def update(self, character_id: str, position: Position | None) -> None:
        """Record a polled position; None marks the entity dead or despawned."""
        entry = self._tracked.get(character_id)
        if entry is None:
            return
        if position is None:
            if entry["alive"]:
                logger.info("tracked entity %s died or despawned", character_id)
            entry["alive"] = False
            entry["position"] = None
        else:
            entry["alive"] = True
            entry["position"] = position

    def get_position(self, character_id: str) -> Position | None:
        entry = self._tracked.get(character_id)
        return entry["position"] if entry else None

    def is_alive(self, character_id: str) -> bool:
        entry = self._tracked.get(character_id)
        return bool(entry and entry["alive"])

    def __len__(self) -> int:
        return len(self._tracked)
