"""Command authorization against a static command registry.

validate() runs five checks; the first failure wins:

  1. character may execute commands at all        → NO_PERMISSION
  2. base token is a known command                → UNKNOWN_COMMAND
  3. restricted command is on the allow-list (or *) → NOT_ALLOWED
  4. command (or *) is not on the deny-list       → DENIED
  5. character level >= required level            → INSUFFICIENT_LEVEL

Levels are totally ordered: readonly < environment < moderator < admin.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from enum import Enum

from pydantic import BaseModel, Field

from craftbot.models import Character, PermissionLevel

logger = logging.getLogger(__name__)

WILDCARD = "*"


class AuthReason(str, Enum):
    NO_PERMISSION = "no_permission"
    UNKNOWN_COMMAND = "unknown_command"
    NOT_ALLOWED = "not_allowed"
    DENIED = "denied"
    INSUFFICIENT_LEVEL = "insufficient_level"


class CommandSpec(BaseModel):
    name: str
    category: str
    level: PermissionLevel
    unrestricted: bool = False  # usable without an explicit allow-list entry
    description: str = ""


class Authorization(BaseModel):
    valid: bool
    command: str
    args: list[str] = Field(default_factory=list)
    reason: AuthReason | None = None
    error: str | None = None
    required_level: PermissionLevel | None = None
    character_level: PermissionLevel | None = None


_R, _E, _M, _A = (
    PermissionLevel.READONLY,
    PermissionLevel.ENVIRONMENT,
    PermissionLevel.MODERATOR,
    PermissionLevel.ADMIN,
)

DEFAULT_COMMANDS: tuple[CommandSpec, ...] = (
    # Chat
    CommandSpec(name="say", category="Chat", level=_E, unrestricted=True, description="Broadcast a message"),
    CommandSpec(name="tell", category="Chat", level=_E, unrestricted=True, description="Private message"),
    CommandSpec(name="msg", category="Chat", level=_E, unrestricted=True, description="Private message"),
    CommandSpec(name="me", category="Chat", level=_E, unrestricted=True, description="Emote"),
    CommandSpec(name="tellraw", category="Chat", level=_E, unrestricted=True, description="JSON text message"),
    # World
    CommandSpec(name="time", category="World", level=_E, unrestricted=True, description="Query or set time"),
    CommandSpec(name="weather", category="World", level=_E, unrestricted=True, description="Set weather"),
    CommandSpec(name="difficulty", category="World", level=_M, description="Set difficulty"),
    CommandSpec(name="setblock", category="World", level=_M, description="Place a block"),
    CommandSpec(name="fill", category="World", level=_M, description="Fill a region"),
    CommandSpec(name="summon", category="World", level=_E, description="Summon an entity"),
    CommandSpec(name="particle", category="World", level=_E, unrestricted=True, description="Spawn particles"),
    CommandSpec(name="playsound", category="World", level=_E, unrestricted=True, description="Play a sound"),
    # Players
    CommandSpec(name="give", category="Players", level=_E, description="Give items"),
    CommandSpec(name="effect", category="Players", level=_E, description="Apply status effects"),
    CommandSpec(name="tp", category="Players", level=_M, description="Teleport"),
    CommandSpec(name="teleport", category="Players", level=_M, description="Teleport"),
    CommandSpec(name="gamemode", category="Players", level=_M, description="Change game mode"),
    CommandSpec(name="xp", category="Players", level=_M, description="Grant experience"),
    CommandSpec(name="clear", category="Players", level=_M, description="Clear inventory"),
    CommandSpec(name="kill", category="Players", level=_M, description="Kill entities"),
    # Information
    CommandSpec(name="list", category="Information", level=_R, unrestricted=True, description="List players"),
    CommandSpec(name="seed", category="Information", level=_R, unrestricted=True, description="World seed"),
    CommandSpec(name="data", category="Information", level=_M, description="Read or modify NBT"),
    # Moderation
    CommandSpec(name="kick", category="Moderation", level=_M, description="Kick a player"),
    CommandSpec(name="ban", category="Moderation", level=_A, description="Ban a player"),
    CommandSpec(name="pardon", category="Moderation", level=_A, description="Unban a player"),
    CommandSpec(name="whitelist", category="Moderation", level=_A, description="Manage whitelist"),
    CommandSpec(name="op", category="Moderation", level=_A, description="Grant operator"),
    CommandSpec(name="deop", category="Moderation", level=_A, description="Revoke operator"),
    # Server
    CommandSpec(name="save-all", category="Server", level=_A, description="Save the world"),
    CommandSpec(name="stop", category="Server", level=_A, description="Stop the server"),
)


def split_command(command: str) -> tuple[str, list[str]]:
    """"/give @p bread 5" → ("give", ["@p", "bread", "5"])"""
    parts = command.strip().lstrip("/").split()
    if not parts:
        return "", []
    return parts[0].lower(), parts[1:]


class CommandRegistry:
    def __init__(self, specs: tuple[CommandSpec, ...] | list[CommandSpec] = DEFAULT_COMMANDS) -> None:
        self._specs: dict[str, CommandSpec] = {s.name: s for s in specs}

    def get(self, name: str) -> CommandSpec | None:
        return self._specs.get(name.lower())

    def __iter__(self):
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)

    def by_category(self, specs=None) -> dict[str, list[CommandSpec]]:
        grouped: dict[str, list[CommandSpec]] = defaultdict(list)
        for spec in self._specs.values() if specs is None else specs:
            grouped[spec.category].append(spec)
        return dict(grouped)

    def stats(self) -> dict:
        by_category: dict[str, int] = defaultdict(int)
        by_level: dict[str, int] = defaultdict(int)
        for spec in self._specs.values():
            by_category[spec.category] += 1
            by_level[spec.level.value] += 1
        return {
            "total": len(self._specs),
            "by_category": dict(by_category),
            "by_level": dict(by_level),
            "unrestricted": sum(1 for s in self._specs.values() if s.unrestricted),
        }


class CommandAuthorizer:
    def __init__(self, registry: CommandRegistry | None = None) -> None:
        self.registry = registry or CommandRegistry()

    def validate(self, command: str, character: Character) -> Authorization:
        result = self._check(command, character)
        if not result.valid:
            logger.warning(
                "command blocked for %s: /%s (%s) %s",
                character.id, result.command, result.reason.value, result.error,
            )
        return result

    def allowed_commands(self, character: Character) -> list[CommandSpec]:
        """Registry entries this character would be authorized to run."""
        if not character.permissions.can_execute_commands:
            return []
        return [s for s in self.registry if self._check(s.name, character).valid]

    def _check(self, command: str, character: Character) -> Authorization:
        name, args = split_command(command)
        perms = character.permissions

        def fail(reason: AuthReason, error: str, required: PermissionLevel | None = None) -> Authorization:
            return Authorization(
                valid=False, command=name, args=args, reason=reason, error=error,
                required_level=required, character_level=perms.level,
            )

        if not perms.can_execute_commands:
            return fail(AuthReason.NO_PERMISSION, "Character does not have permission to execute commands")

        spec = self.registry.get(name)
        if spec is None:
            return fail(AuthReason.UNKNOWN_COMMAND, f"Unknown command: {name}")

        allowed = WILDCARD in perms.allowed_commands or name in perms.allowed_commands
        if not spec.unrestricted and not allowed:
            return fail(AuthReason.NOT_ALLOWED, f'Command "{name}" is restricted and not on the allow-list')

        if WILDCARD in perms.denied_commands or name in perms.denied_commands:
            return fail(AuthReason.DENIED, f'Command "{name}" is denied for this character')

        if perms.level.rank < spec.level.rank:
            return fail(
                AuthReason.INSUFFICIENT_LEVEL,
                f'Insufficient permission level. Command requires "{spec.level.value}", '
                f'character has "{perms.level.value}"',
                spec.level,
            )

        return Authorization(
            valid=True, command=name, args=args,
            required_level=spec.level, character_level=perms.level,
        )
