"""Deterministic collaborators for relay tests."""

from __future__ import annotations

import random
from typing import Any

from craftbot.collaborators import PositionTracker
from craftbot.config import Settings
from craftbot.models import (
    ChatFilters,
    Character,
    CommandResult,
    ConversationTurn,
    Knowledge,
    Message,
    PermissionLevel,
    Permissions,
    Position,
)
from craftbot.pipeline.orchestrator import Orchestrator


class StubChatModel:
    """Deterministic model stand-in.

    Provide responses in call order. A response that is an Exception instance
    is raised instead of returned. Raises if called more times than responses
    were provided.
    """

    def __init__(self, responses: list[str | Exception] | None = None) -> None:
        self._queue: list[str | Exception] = list(responses or [])
        self.calls: list[dict[str, Any]] = []

    def add(self, *responses: str | Exception) -> None:
        self._queue.extend(responses)

    async def __call__(
        self, turns: list[ConversationTurn], *, model: str = "", temperature: float = 0.7
    ) -> str:
        self.calls.append({"turns": turns, "model": model, "temperature": temperature})
        if not self._queue:
            raise AssertionError(
                f"StubChatModel: unexpected call (no responses queued). calls so far: {len(self.calls)}"
            )
        response = self._queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def assert_exhausted(self) -> None:
        """Assert every queued response was consumed — catches missing model calls."""
        if self._queue:
            raise AssertionError(f"StubChatModel: unused responses remain: {self._queue}")

    def last_user_turn(self) -> str:
        turns = self.calls[-1]["turns"]
        return next(t.content for t in reversed(turns) if t.role == "user")


class FakeProtocol:
    """Records commands; answers lookups from in-memory tables."""

    def __init__(
        self,
        players: dict[str, Position] | None = None,
        state: dict[str, Any] | None = None,
        fail_commands: set[str] | None = None,
    ) -> None:
        self.players = dict(players or {})
        self.state = state
        self.fail_commands = fail_commands or set()
        self.executed: list[str] = []
        self.state_requests: list[tuple[str, list[str], list[str]]] = []

    async def execute(self, command: str) -> CommandResult:
        self.executed.append(command)
        if command.split()[0] in self.fail_commands:
            return CommandResult(success=False, error="server said no")
        return CommandResult(success=True, response="ok")

    async def get_player_position(self, name: str) -> Position | None:
        return self.players.get(name)

    async def list_players(self) -> list[str]:
        return list(self.players)

    async def get_state(self, player: str, player_fields: list[str], world_fields: list[str]) -> dict[str, Any]:
        self.state_requests.append((player, player_fields, world_fields))
        return self.state or {}

    def tellraws(self) -> list[str]:
        return [c for c in self.executed if c.startswith("tellraw")]


class FixedRandom(random.Random):
    """random.Random whose random() always returns the same value."""

    def __init__(self, value: float) -> None:
        super().__init__()
        self.value = value

    def random(self) -> float:
        return self.value


async def no_sleep(_: float) -> None:
    return None


def make_character(
    id: str = "bob",
    name: str = "Bob",
    *,
    level: PermissionLevel = PermissionLevel.ENVIRONMENT,
    can_execute: bool = True,
    allowed: list[str] | None = None,
    denied: list[str] | None = None,
    respond_to_ai: bool = False,
    respond_to_players: bool = True,
    requires_mention: bool = False,
    probability: float = 1.0,
    proximity_required: bool = False,
    max_proximity: float = 10.0,
    position: Position | None = None,
    **fields: Any,
) -> Character:
    return Character(
        id=id,
        name=name,
        permissions=Permissions(
            level=level,
            allowed_commands=allowed if allowed is not None else [],
            denied_commands=denied if denied is not None else [],
            can_execute_commands=can_execute,
        ),
        knowledge=Knowledge(
            proximity_required=proximity_required,
            max_proximity=max_proximity,
            chat_filters=ChatFilters(
                respond_to_ai=respond_to_ai,
                respond_to_players=respond_to_players,
                requires_mention=requires_mention,
                response_probability=probability,
            ),
        ),
        appearance={"position": position, "entity_tag": id if position else None},
        **fields,
    )


def player_message(text: str, sender: str = "Steve", **fields: Any) -> Message:
    return Message(sender=sender, text=text, **fields)


def make_orchestrator(
    model: StubChatModel,
    protocol: FakeProtocol | None = None,
    *,
    rng: random.Random | None = None,
    auto_create: bool = True,
    **settings: Any,
) -> Orchestrator:
    return Orchestrator(
        model=model,
        protocol=protocol or FakeProtocol(),
        positions=PositionTracker(),
        settings=Settings(**settings),
        rng=rng,
        sleep=no_sleep,
        auto_create=auto_create,
    )
