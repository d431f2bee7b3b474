"""Prompt assembly: persona + scene + response protocol, rendered with Handlebars.

assemble() produces the turn list sent to the model:

    system     persona, scene lines, response format, allowed commands
    ...        trimmed conversation history
    system     "Current game state: {...}"   (only when a snapshot exists)
    user       "{sender}: {text}"
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import pybars

from craftbot.models import Character, ConversationTurn, Message, PermissionLevel
from craftbot.pipeline.authorizer import CommandAuthorizer

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def _helper_join(this, items, separator=", "):
    """{{{join list ", "}}}"""
    return separator.join(str(i) for i in (items or []))


_HELPERS: dict[str, Callable] = {
    "join": _helper_join,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Templates ────────────────────────────────────────────

RESPONSE_FORMAT = """RESPONSE FORMAT - You MUST use XML tags:

<thinking>Your internal reasoning (not shown to players)</thinking>
<action>1</action>
<function>minecraft_command</function>
<say>Message to show in chat</say>

For multiple commands, use separate <function> tags:
<thinking>The player needs food and tools</thinking>
<action>1</action>
<function>give @p bread 5</function>
<function>give @p iron_pickaxe 1</function>
<say>Here's some food and a pickaxe!</say>

If you want to observe without speaking:
<thinking>They're just passing by, I'll stay quiet</thinking>
<action>0</action>

If no response is needed at all:
<silence/>"""

CRITICAL_RULES = """CRITICAL RULES:
- Output ONLY XML tags, absolutely no other text, markdown, or code blocks
- Commands should NOT include the leading slash (/)
- <thinking> is for internal reasoning (not shown to players)
- <action>0</action> = DON'T speak in chat (observe silently, but still execute commands if any)
- <action>1</action> = DO speak in chat (default if not specified)
- <say> is for messages shown in chat (DO NOT use /say command, use <say> tag instead)
- <say> will be suppressed if <action>0</action> is used, but <function> commands ALWAYS execute
- <function> is for Minecraft commands (NEVER put chat messages in <function>, use <say> for chat)
- Use multiple <function> tags for multiple commands, never combine them with newlines"""

COMMANDS_TEMPLATE = (
    "{{#if read_only}}AVAILABLE MINECRAFT COMMANDS:\n"
    "You have READ-ONLY access. You cannot execute any commands, only observe and chat."
    "{{else}}AVAILABLE MINECRAFT COMMANDS ({{level}} level):\n"
    "{{{command_lines}}}\n\n"
    "Your permission level: {{level}} - {{{level_description}}}{{/if}}"
)

COMMAND_SYNTAX = """COMMAND SYNTAX EXAMPLES:
- give <player> <item> [count]: give @p diamond 5
- tp <target> <x> <y> <z>: tp Steve 100 64 200
- time set <value>: time set day (or time set 1000)
- weather <clear|rain|thunder>: weather clear
- gamemode <mode> [player]: gamemode creative @p
- effect give <target> <effect> [duration] [amplifier]: effect give @p speed 60 2
- summon <entity> [x] [y] [z]: summon minecraft:pig ~ ~ ~
- tellraw <target> <json>: tellraw @a {"text":"Hello!","color":"gold"}

USE @p for nearest player, @a for all players, @s for self"""

SYSTEM_TEMPLATE = (
    "{{{persona}}}"
    "{{#if players}}\nCURRENT PLAYERS ONLINE: {{{join players \", \"}}}{{/if}}"
    "{{#if others}}\nOTHER AI ENTITIES: {{{join others \", \"}}} "
    "(you can talk to them if responding to AI is enabled){{/if}}"
    "\n\n{{{instructions}}}"
)

SUMMARY_TEMPLATE = (
    "Summarize the following conversation in a few sentences, keeping names, "
    "requests and promises:\n\n{{{transcript}}}"
)

LEVEL_DESCRIPTIONS = {
    PermissionLevel.READONLY: "You can only observe and read information. Cannot execute any commands.",
    PermissionLevel.ENVIRONMENT: "You can execute non-destructive environment commands (time, weather, etc.).",
    PermissionLevel.MODERATOR: "You can execute player management commands (kick, teleport, game modes).",
    PermissionLevel.ADMIN: "You have full access to all commands and server operations.",
}

PERSONA_MARKERS = (
    "RESPONSE FORMAT",
    "CRITICAL RULES",
    "AVAILABLE MINECRAFT COMMANDS",
    "AVAILABLE COMMANDS",
)


# ── Building blocks ──────────────────────────────────────


@dataclass
class SceneContext:
    """What the character can see around it when a turn starts."""

    players: list[str] = field(default_factory=list)
    ai_entities: list[str] = field(default_factory=list)
    state: dict[str, Any] | None = None


def extract_persona(system_prompt: str) -> str:
    """Cut a legacy full prompt down to its persona prefix."""
    text = system_prompt
    for marker in PERSONA_MARKERS:
        index = text.find(marker)
        if index != -1:
            text = text[:index]
    return text.strip()


def persona_text(character: Character) -> str:
    personality = character.personality
    if personality.character_context:
        return personality.character_context
    if personality.system_prompt:
        return extract_persona(personality.system_prompt)
    return f"You are {character.name}, an AI entity in a Minecraft world."


def build_instructions(character: Character, authorizer: CommandAuthorizer) -> str:
    allowed = authorizer.allowed_commands(character)
    level = character.permissions.level
    groups = authorizer.registry.by_category(allowed)
    commands = render_prompt(COMMANDS_TEMPLATE, {
        "read_only": not character.permissions.can_execute_commands or not allowed,
        "level": level.value,
        "level_description": LEVEL_DESCRIPTIONS[level],
        "command_lines": "\n".join(
            f"{category}: {', '.join(s.name for s in specs)}" for category, specs in groups.items()
        ),
    })
    return "\n\n".join([RESPONSE_FORMAT, CRITICAL_RULES, commands, COMMAND_SYNTAX])


def build_system_prompt(character: Character, scene: SceneContext, authorizer: CommandAuthorizer) -> str:
    return render_prompt(SYSTEM_TEMPLATE, {
        "persona": persona_text(character),
        "players": scene.players,
        "others": [n for n in scene.ai_entities if n != character.name],
        "instructions": build_instructions(character, authorizer),
    })


def assemble(
    character: Character,
    history: Iterable[ConversationTurn],
    message: Message,
    scene: SceneContext,
    authorizer: CommandAuthorizer,
) -> list[ConversationTurn]:
    """Build the ordered turn list for one model call.

    `history` should not yet contain the message being answered.
    """
    turns = [ConversationTurn(role="system", content=build_system_prompt(character, scene, authorizer))]
    limit = character.personality.history_limit
    past = list(history)
    turns.extend(past[-limit:] if limit > 0 else [])
    if scene.state:
        turns.append(ConversationTurn(
            role="system",
            content=f"Current game state: {json.dumps(scene.state, indent=2, default=str)}",
        ))
    turns.append(ConversationTurn(role="user", content=user_line(message)))
    return turns


def user_line(message: Message) -> str:
    return f"{message.sender}: {message.text}"


def summary_prompt(turns: Iterable[ConversationTurn]) -> list[ConversationTurn]:
    """Turns asking the model to condense older history."""
    transcript = "\n".join(f"{t.role}: {t.content}" for t in turns)
    return [ConversationTurn(role="user", content=render_prompt(SUMMARY_TEMPLATE, {"transcript": transcript}))]
