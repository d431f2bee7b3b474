"""Eligibility gate — should a character respond to a message?

Checks run in a fixed order and stop at the first denial:

  1. character or its model disabled          → DISABLED
  2. message originated from this character   → SELF_ORIGIN
  3. AI message, respond_to_ai off            → AI_FILTERED
  4. player message, respond_to_players off   → PLAYER_FILTERED
  5. mention required but name absent         → NOT_MENTIONED
  6. proximity (console characters exempt):
       no tracked position                    → NO_POSITION
       originator position unknown            → ORIGIN_UNKNOWN
       farther than max_proximity             → TOO_FAR
  7. response probability p:
       p <= 0                                 → PROBABILITY_ZERO
       p >= 1                                 → respond, no roll
       else p × (0.3 + 0.7 × urgency) vs. a uniform roll → respond or PROBABILITY_ROLL

Every outcome is returned as a Decision so callers and tests can see why.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import Enum

from craftbot.collaborators import PositionSource, ProtocolClient
from craftbot.models import Character, Message, Position

logger = logging.getLogger(__name__)

URGENT_KEYWORDS = ("help", "urgent", "emergency", "please", "now", "quick", "asap", "need")
GREETING_KEYWORDS = ("hello", "hi", "hey", "greetings", "howdy")


class DenialReason(str, Enum):
    DISABLED = "disabled"
    SELF_ORIGIN = "self_origin"
    AI_FILTERED = "ai_filtered"
    PLAYER_FILTERED = "player_filtered"
    NOT_MENTIONED = "not_mentioned"
    NO_POSITION = "no_position"
    ORIGIN_UNKNOWN = "origin_unknown"
    TOO_FAR = "too_far"
    PROBABILITY_ZERO = "probability_zero"
    PROBABILITY_ROLL = "probability_roll"


@dataclass(frozen=True)
class Decision:
    character_id: str
    respond: bool
    reason: DenialReason | None = None
    distance: float | None = None
    urgency: float | None = None
    probability: float | None = None
    roll: float | None = None

    def __bool__(self) -> bool:
        return self.respond


def message_urgency(text: str, name: str) -> float:
    """Urgency score in [0, 1] from mentions, punctuation and keywords."""
    lowered = text.lower()
    urgency = 0.5
    if name and name.lower() in lowered:
        urgency += 0.3
    if "?" in lowered:
        urgency += 0.15
    if "!" in lowered:
        urgency += 0.1
    if any(k in lowered for k in URGENT_KEYWORDS):
        urgency += 0.2
    if any(k in lowered for k in GREETING_KEYWORDS):
        urgency += 0.15
    return min(urgency, 1.0)


class EligibilityGate:
    def __init__(
        self,
        positions: PositionSource,
        protocol: ProtocolClient,
        rng: random.Random | None = None,
    ) -> None:
        self._positions = positions
        self._protocol = protocol
        self._rng = rng or random.Random()

    async def should_respond(self, message: Message, character: Character) -> bool:
        return (await self.evaluate(message, character)).respond

    async def evaluate(self, message: Message, character: Character) -> Decision:
        if not character.enabled or not character.llm.enabled:
            return self._deny(character, message, DenialReason.DISABLED)

        if message.origin_character_id is not None and message.origin_character_id == character.id:
            return self._deny(character, message, DenialReason.SELF_ORIGIN)

        filters = character.knowledge.chat_filters
        if message.is_ai and not filters.respond_to_ai:
            return self._deny(character, message, DenialReason.AI_FILTERED)
        if not message.is_ai and not filters.respond_to_players:
            return self._deny(character, message, DenialReason.PLAYER_FILTERED)

        if filters.requires_mention and character.name.lower() not in message.text.lower():
            return self._deny(character, message, DenialReason.NOT_MENTIONED)

        distance = message.distance
        if character.proximity_required:
            own = self._positions.get_position(character.id)
            if own is None:
                return self._deny(character, message, DenialReason.NO_POSITION)
            origin = await self._origin_position(message)
            if origin is None:
                return self._deny(character, message, DenialReason.ORIGIN_UNKNOWN)
            distance = own.distance_to(origin)
            if distance > character.max_proximity:
                return self._deny(character, message, DenialReason.TOO_FAR, distance=distance)

        p = filters.response_probability
        if p <= 0.0:
            return self._deny(
                character, message, DenialReason.PROBABILITY_ZERO, distance=distance, probability=0.0
            )
        if p >= 1.0:
            logger.info("%s will respond to %s (probability 100%%)", character.id, message.sender)
            return Decision(character.id, True, distance=distance, probability=1.0)

        urgency = message_urgency(message.text, character.name)
        final = p * (0.3 + 0.7 * urgency)
        roll = self._rng.random()
        if roll < final:
            logger.info(
                "%s will respond to %s: probability %.0f%% (urgency %.0f%%, roll %.0f%%)",
                character.id, message.sender, final * 100, urgency * 100, roll * 100,
            )
            return Decision(character.id, True, distance=distance, urgency=urgency,
                            probability=final, roll=roll)
        return self._deny(
            character, message, DenialReason.PROBABILITY_ROLL,
            distance=distance, urgency=urgency, probability=final, roll=roll,
        )

    async def _origin_position(self, message: Message) -> Position | None:
        if message.origin_character_id:
            return self._positions.get_position(message.origin_character_id)
        try:
            return await self._protocol.get_player_position(message.sender)
        except Exception as e:
            logger.warning("position lookup for %s failed: %s", message.sender, e)
            return None

    def _deny(self, character: Character, message: Message, reason: DenialReason, **fields) -> Decision:
        logger.info("%s not responding to %s: %s", character.id, message.sender, reason.value)
        return Decision(character.id, False, reason=reason, **fields)
