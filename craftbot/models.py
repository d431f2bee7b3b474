"""Core domain models.

All pipeline stages operate on these types. Pydantic is used for validation
and serialisation at every data boundary (HTTP bodies, character documents,
model output records).
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

MessageKind = Literal["chat", "system", "spawn"]
RawEventKind = Literal["chat", "system", "join", "leave", "spawn"]
Role = Literal["system", "user", "assistant"]
CharacterType = Literal["console", "npc"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------

class Position(BaseModel):
    x: float
    y: float
    z: float

    def distance_to(self, other: Position) -> float:
        return ((self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2) ** 0.5


# ---------------------------------------------------------------------------
# Inbound events
# ---------------------------------------------------------------------------

class RawEvent(BaseModel):
    """Text plus metadata as delivered by the log/event adapter."""

    kind: RawEventKind = "chat"
    sender: str = ""
    text: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    distance: float | None = None
    raw: str = ""

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)


class Message(BaseModel):
    """An inbound event routed to characters. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    kind: MessageKind = "chat"
    sender: str
    text: str
    is_ai: bool = False
    distance: float | None = None
    origin_character_id: str | None = None  # feedback messages only
    hops: int = 0
    timestamp: datetime = Field(default_factory=utcnow)
    raw: str = ""


class SpawnNotice(BaseModel):
    """First sighting of an AI-tagged identity."""

    model_config = ConfigDict(frozen=True)

    name: str
    timestamp: datetime = Field(default_factory=utcnow)
    raw: str = ""


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

class PermissionLevel(str, Enum):
    READONLY = "readonly"
    ENVIRONMENT = "environment"
    MODERATOR = "moderator"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    @classmethod
    def parse(cls, value: str | PermissionLevel) -> PermissionLevel:
        if isinstance(value, PermissionLevel):
            return value
        key = value.strip().lower()
        return cls(_LEVEL_ALIASES.get(key, key))


_LEVEL_ORDER = [
    PermissionLevel.READONLY,
    PermissionLevel.ENVIRONMENT,
    PermissionLevel.MODERATOR,
    PermissionLevel.ADMIN,
]

_LEVEL_ALIASES = {"read-only": "readonly", "read_only": "readonly", "mod": "moderator"}


class LLMSettings(BaseModel):
    model: str = ""
    temperature: float = 0.7
    enabled: bool = True


class Permissions(BaseModel):
    level: PermissionLevel = PermissionLevel.READONLY
    allowed_commands: list[str] = Field(default_factory=list)
    denied_commands: list[str] = Field(default_factory=list)
    can_execute_commands: bool = False

    @field_validator("level", mode="before")
    @classmethod
    def _alias_level(cls, v):
        return PermissionLevel.parse(v) if isinstance(v, str) else v


class ChatFilters(BaseModel):
    respond_to_players: bool = True
    respond_to_ai: bool = False
    requires_mention: bool = False
    response_probability: float = 1.0
    # Override the knowledge-level proximity settings when present
    proximity_required: bool | None = None
    max_proximity: float | None = None


class Knowledge(BaseModel):
    player_state_fields: list[str] = Field(default_factory=list)
    world_state_fields: list[str] = Field(default_factory=list)
    proximity_required: bool = False
    max_proximity: float = 10.0
    chat_filters: ChatFilters = Field(default_factory=ChatFilters)


class Personality(BaseModel):
    character_context: str = ""
    system_prompt: str = ""  # legacy full prompt
    history_limit: int = 20
    use_summarization: bool = False


class Appearance(BaseModel):
    chat_bubble: bool = False
    uses_server_chat: bool = True
    position: Position | None = None
    entity_tag: str | None = None


class Character(BaseModel):
    """A registered conversational agent."""

    id: str
    name: str
    type: CharacterType = "npc"
    enabled: bool = True
    llm: LLMSettings = Field(default_factory=LLMSettings)
    permissions: Permissions = Field(default_factory=Permissions)
    knowledge: Knowledge = Field(default_factory=Knowledge)
    personality: Personality = Field(default_factory=Personality)
    appearance: Appearance = Field(default_factory=Appearance)

    @property
    def is_console(self) -> bool:
        return self.type == "console"

    @property
    def proximity_required(self) -> bool:
        if self.is_console:
            return False
        override = self.knowledge.chat_filters.proximity_required
        return self.knowledge.proximity_required if override is None else override

    @property
    def max_proximity(self) -> float:
        return self.knowledge.chat_filters.max_proximity or self.knowledge.max_proximity or 10.0


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------

class ConversationTurn(BaseModel):
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    suppressed: bool = False
    summary: bool = False

    def as_chat(self) -> dict[str, str]:
        """Wire form for chat-completion backends."""
        return {"role": self.role, "content": self.content}


class ParsedCommand(BaseModel):
    command: str  # canonical form, single leading "/"
    rule: str     # name of the extraction strategy that matched
    raw: str = ""


class ParsedResponse(BaseModel):
    thoughts: list[str] = Field(default_factory=list)
    speech: list[str] = Field(default_factory=list)
    commands: list[ParsedCommand] = Field(default_factory=list)
    speak_enabled: bool = True
    silence: bool = False
    raw: str = ""


# ---------------------------------------------------------------------------
# Collaborator results
# ---------------------------------------------------------------------------

class CommandResult(BaseModel):
    success: bool
    response: str = ""
    error: str | None = None


class Completion(BaseModel):
    success: bool
    text: str = ""
    error: str | None = None
    duration_ms: int = 0
