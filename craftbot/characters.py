"""Character helpers: ids and the defaults for NPCs created on first sighting.

An AI-tagged name that shows up in chat without a registered character gets a
conservative NPC: environment level, chat commands only, proximity-gated, and
deaf to other AIs so that two auto-created NPCs don't start talking in a loop.
"""

import re
import unicodedata

from craftbot.models import (
    ChatFilters,
    Character,
    Knowledge,
    LLMSettings,
    PermissionLevel,
    Permissions,
    Personality,
)

DEFAULT_ALLOWED = ["say", "tell", "tellraw", "me"]
DEFAULT_DENIED = ["stop", "kick", "ban", "op", "deop", "whitelist"]


def slugify(name: str) -> str:
    """Convert a display name to an id-safe slug.

    "Old Bob" → "old-bob"
    """
    text = unicodedata.normalize("NFKD", name)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"['\"]", "", text)
    text = re.sub(r"[^a-z0-9]+", "-", text)
    text = text.strip("-")
    return text or "unnamed"


def character_id(name: str) -> str:
    return f"ai-{slugify(name)}"


def default_npc(name: str, model: str = "") -> Character:
    """Character document for an NPC spotted in chat but not yet configured."""
    return Character(
        id=character_id(name),
        name=name,
        type="npc",
        llm=LLMSettings(model=model, temperature=0.7),
        permissions=Permissions(
            level=PermissionLevel.ENVIRONMENT,
            allowed_commands=list(DEFAULT_ALLOWED),
            denied_commands=list(DEFAULT_DENIED),
            can_execute_commands=True,
        ),
        knowledge=Knowledge(
            player_state_fields=["health", "position"],
            world_state_fields=["time", "weather"],
            proximity_required=True,
            max_proximity=10.0,
            chat_filters=ChatFilters(
                respond_to_players=True,
                respond_to_ai=False,
                requires_mention=False,
                proximity_required=True,
                max_proximity=10.0,
            ),
        ),
        personality=Personality(
            character_context=(
                f"You are {name}, an AI entity in a Minecraft world. You can chat with "
                "players and perform basic commands. Be helpful and friendly!"
            ),
            history_limit=20,
        ),
    )
