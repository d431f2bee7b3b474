"""Executing a parsed response: commands, speech output, and feedback.

Commands are authorized one by one and sent through the protocol client in
order. A plain "say" is rewritten to a tellraw carrying the character's name
so it does not show up as coming from the console.

Speech goes out through up to two channels, per the character's appearance:

  bubble     text_display summoned 2 blocks above the tracked position,
             replacing the previous bubble, removed after bubble_duration
  broadcast  tellraw @a, split into chunks at word boundaries; the first
             chunk carries the "[AI] <Name>" prefix, later chunks are indented

FeedbackEmitter turns emitted speech into a new Message and hands it back to
the dispatcher on the next loop iteration, so other characters can react.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pydantic import BaseModel

from craftbot.collaborators import PositionSource, ProtocolClient
from craftbot.events import Topic
from craftbot.models import Character, CommandResult, Message, ParsedResponse
from craftbot.pipeline.authorizer import Authorization, CommandAuthorizer

logger = logging.getLogger(__name__)

BUBBLE_MAX_CHARS = 100
SAY_TARGET = re.compile(r"^(@[aprs]\[[^\]]+\]|@[aprs])(?=\s|$)")


@dataclass(frozen=True)
class SpeechChunk:
    text: str
    continuation: bool


@dataclass(frozen=True)
class SpeechEvent:
    character_id: str
    name: str
    text: str
    chunks: int


class CommandOutcome(BaseModel):
    character_id: str
    command: str
    sent: str = ""  # what actually went over the wire, after rewriting
    authorization: Authorization
    result: CommandResult | None = None

    @property
    def executed(self) -> bool:
        return self.result is not None and self.result.success


def chunk_speech(text: str, limit: int = 200) -> list[SpeechChunk]:
    """Split text into chunks of at most `limit` characters on word boundaries.

    A single word longer than the limit is hard-split.
    """
    text = text.strip()
    if len(text) <= limit:
        return [SpeechChunk(text, False)] if text else []

    pieces: list[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= limit:
            current = candidate
            continue
        if current:
            pieces.append(current)
            current = ""
        if len(word) > limit:
            pieces.extend(word[i:i + limit] for i in range(0, len(word), limit))
        else:
            current = word
    if current:
        pieces.append(current)

    return [SpeechChunk(p, i > 0) for i, p in enumerate(pieces)]


def chat_prefix(character: Character) -> tuple[str, str]:
    """(prefix, color) for the first line of broadcast speech."""
    if character.is_console:
        return f"<{character.name}> ", "gold"
    return f"[AI] <{character.name}> ", "aqua"


def tellraw(target: str, text: str, color: str) -> str:
    return f"tellraw {target} {json.dumps({'text': text, 'color': color}, ensure_ascii=False)}"


def rewrite_say(command: str, character: Character) -> str:
    """'/say @a hi' → tellraw with the character's chat prefix. Others pass through."""
    bare = command.lstrip("/")
    if not bare.startswith("say "):
        return bare
    message = bare[4:].strip()
    match = SAY_TARGET.match(message)
    target = match.group(0) if match else "@a"
    text = message[len(target):].strip() if match else message
    prefix, color = chat_prefix(character)
    return tellraw(target, f"{prefix}{text}", color)


class Executor:
    def __init__(
        self,
        protocol: ProtocolClient,
        authorizer: CommandAuthorizer,
        positions: PositionSource,
        *,
        chunk_limit: int = 200,
        chunk_delay: float = 0.1,
        bubble_duration: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._protocol = protocol
        self._authorizer = authorizer
        self._positions = positions
        self.chunk_limit = chunk_limit
        self.chunk_delay = chunk_delay
        self.bubble_duration = bubble_duration
        self._sleep = sleep
        self._bubbles: dict[str, tuple[str, asyncio.Task | None]] = {}

        self.command: Topic[CommandOutcome] = Topic("command")
        self.speech: Topic[SpeechEvent] = Topic("speech")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def run_commands(self, character: Character, parsed: ParsedResponse) -> list[CommandOutcome]:
        outcomes = []
        for parsed_command in parsed.commands:
            outcomes.append(await self.run_command(character, parsed_command.command))
        return outcomes

    async def run_command(self, character: Character, command: str) -> CommandOutcome:
        auth = self._authorizer.validate(command, character)
        outcome = CommandOutcome(character_id=character.id, command=command, authorization=auth)
        if auth.valid:
            outcome.sent = rewrite_say(command, character)
            logger.info("[%s] executing %s", character.name, outcome.sent)
            outcome.result = await self._send(outcome.sent)
            if not outcome.result.success:
                logger.error("[%s] %s failed: %s", character.name, command, outcome.result.error)
        await self.command.publish(outcome)
        return outcome

    async def _send(self, command: str) -> CommandResult:
        """Execute on the game channel. A raising client becomes a failed result."""
        try:
            return await self._protocol.execute(command)
        except Exception as e:
            logger.error("command channel error for %s: %s", command, e)
            return CommandResult(success=False, error=str(e))

    # ------------------------------------------------------------------
    # Speech
    # ------------------------------------------------------------------

    async def emit_speech(self, character: Character, text: str) -> list[SpeechChunk]:
        """Show speech in-world. Returns the broadcast chunks (empty if not broadcast)."""
        if character.appearance.chat_bubble and self._positions.get_position(character.id):
            await self.show_bubble(character, text)

        chunks: list[SpeechChunk] = []
        if character.appearance.uses_server_chat:
            chunks = chunk_speech(text, self.chunk_limit)
            prefix, color = chat_prefix(character)
            for i, chunk in enumerate(chunks):
                line = f"  {chunk.text}" if chunk.continuation else f"{prefix}{chunk.text}"
                result = await self._send(tellraw("@a", line, color))
                if not result.success:
                    logger.error("[%s] broadcast failed: %s", character.name, result.error)
                if i < len(chunks) - 1:
                    await self._sleep(self.chunk_delay)
            if len(chunks) > 1:
                logger.info("[%s] split long message into %d chunks", character.name, len(chunks))

        await self.speech.publish(SpeechEvent(character.id, character.name, text, len(chunks)))
        return chunks

    async def show_bubble(self, character: Character, text: str) -> bool:
        position = self._positions.get_position(character.id)
        if position is None:
            logger.warning("no position for %s, cannot display bubble", character.name)
            return False

        await self.remove_bubble(character.id)

        shown = text if len(text) <= BUBBLE_MAX_CHARS else text[:BUBBLE_MAX_CHARS - 3] + "..."
        component = json.dumps({"text": shown.replace("\n", " ")}, ensure_ascii=False).replace("'", "\\'")
        tag = f"bubble_{character.id}_{int(time.time() * 1000)}"
        command = (
            f"summon text_display {position.x} {position.y + 2} {position.z} "
            f"{{Tags:[\"chat_bubble\",\"{tag}\"],text:'{component}',"
            f"billboard:\"center\",see_through:1b,background:0,line_width:200}}"
        )
        result = await self._send(command)
        if not result.success:
            logger.error("failed to summon chat bubble for %s: %s", character.name, result.error)
            return False

        timer = None
        if self.bubble_duration > 0:
            timer = asyncio.get_running_loop().create_task(self._expire_bubble(character.id, tag))
        self._bubbles[character.id] = (tag, timer)
        logger.debug("bubble for %s: %r", character.name, shown)
        return True

    async def _expire_bubble(self, character_id: str, tag: str) -> None:
        await asyncio.sleep(self.bubble_duration)
        current = self._bubbles.get(character_id)
        if current and current[0] == tag:
            del self._bubbles[character_id]
            await self._kill_bubble(tag)

    async def remove_bubble(self, character_id: str) -> None:
        current = self._bubbles.pop(character_id, None)
        if current is None:
            return
        tag, timer = current
        if timer is not None:
            timer.cancel()
        await self._kill_bubble(tag)

    async def remove_all_bubbles(self) -> None:
        for character_id in list(self._bubbles):
            await self.remove_bubble(character_id)

    async def _kill_bubble(self, tag: str) -> None:
        result = await self._send(f"kill @e[tag={tag}]")
        if not result.success:
            logger.warning("failed to remove bubble %s: %s", tag, result.error)

    def active_bubbles(self) -> dict[str, str]:
        return {cid: tag for cid, (tag, _) in self._bubbles.items()}


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------

Deliver = Callable[[Message], Awaitable[object]]


class FeedbackEmitter:
    """The only path by which generated speech re-enters the pipeline."""

    def __init__(self, deliver: Deliver, max_hops: int = 6) -> None:
        self._deliver = deliver
        self.max_hops = max_hops
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        self.dropped = 0

    def build(self, character: Character, speech: str, parent: Message) -> Message:
        sender = f"[AI] {character.name}"
        return Message(
            kind="chat",
            sender=sender,
            text=speech,
            is_ai=True,
            origin_character_id=character.id,
            hops=parent.hops + 1,
            raw=f"<{sender}> {speech}",
        )

    def emit(self, character: Character, speech: str, parent: Message) -> Message | None:
        """Schedule delivery of `speech` as a new message. None if over the hop ceiling."""
        message = self.build(character, speech, parent)
        if message.hops > self.max_hops:
            self.dropped += 1
            logger.warning(
                "dropping feedback from %s: %d hops exceeds ceiling %d",
                character.id, message.hops, self.max_hops,
            )
            return None
        if self._closed:
            logger.debug("feedback from %s after close, not delivered", character.id)
            return None
        logger.info("feedback: relaying %s's message (hop %d)", character.name, message.hops)
        task = asyncio.get_running_loop().create_task(self._deliver(message))
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return message

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("feedback delivery failed: %s", task.exception())

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel deliveries still in flight and refuse new ones."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
