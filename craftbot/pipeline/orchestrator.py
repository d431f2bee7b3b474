"""Orchestrator — owns the characters and runs the relay end-to-end.

Message flow:
  1. ingest(): raw event → EventNormalizer → Message (spawn lines stop here).
  2. dispatch(): for every registered character except the message's origin,
     run the EligibilityGate; eligible characters get the message enqueued
     with the computed distance.
  3. process_character(): one queue run per character at a time:
       a. user turn into history
       b. scene (online players, sibling characters, optional state snapshot)
       c. assemble prompt → ModelInvoker.complete
       d. assistant turn into history, parse
       e. authorize + execute commands (always, even when speech is off)
       f. emit speech, or record it as suppressed when <action>0</action>
       g. feed emitted speech back into dispatch() as a new AI message
       h. summarize history when enabled and over the limit
  4. The queue schedules the next run itself while entries remain.

dispatch() is the only entry point for both external and feedback messages,
and it never offers a message to the character it came from. Feedback
carries a hop count; the FeedbackEmitter drops relays past the ceiling.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from craftbot.characters import default_npc
from craftbot.collaborators import PositionTracker, ProtocolClient
from craftbot.config import Settings
from craftbot.events import Topic
from craftbot.llm import ChatModel, ModelInvoker
from craftbot.models import Character, ConversationTurn, Message, ParsedResponse, RawEvent, SpawnNotice
from craftbot.pipeline.authorizer import CommandAuthorizer
from craftbot.pipeline.executor import CommandOutcome, Executor, FeedbackEmitter
from craftbot.pipeline.gate import Decision, EligibilityGate
from craftbot.pipeline.history import ConversationHistory
from craftbot.pipeline.normalizer import EventNormalizer
from craftbot.pipeline.parser import parse
from craftbot.pipeline.queue import ConversationQueue, QueueEntry
from craftbot.prompts import SceneContext, assemble, summary_prompt, user_line

logger = logging.getLogger(__name__)


class TurnError(RuntimeError):
    """The model could not produce a completion for a queued message."""


@dataclass
class TurnResult:
    character_id: str
    message: Message
    parsed: ParsedResponse
    commands: list[CommandOutcome] = field(default_factory=list)
    spoken: list[str] = field(default_factory=list)
    suppressed: list[str] = field(default_factory=list)
    feedback: list[Message] = field(default_factory=list)


class Orchestrator:
    def __init__(
        self,
        *,
        model: ChatModel,
        protocol: ProtocolClient,
        positions: PositionTracker | None = None,
        settings: Settings | None = None,
        authorizer: CommandAuthorizer | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        auto_create: bool = True,
    ) -> None:
        self.settings = settings or Settings()
        self.protocol = protocol
        self.positions = positions or PositionTracker()
        self.authorizer = authorizer or CommandAuthorizer()

        self.normalizer = EventNormalizer(self.settings.chat_history_size)
        self.gate = EligibilityGate(self.positions, protocol, rng)
        self.queue = ConversationQueue(self.settings.queue_capacity)
        self.invoker = ModelInvoker(model, self.settings.llm_timeout)
        self.executor = Executor(
            protocol,
            self.authorizer,
            self.positions,
            chunk_limit=self.settings.chat_chunk_limit,
            chunk_delay=self.settings.chunk_delay,
            bubble_duration=self.settings.bubble_duration,
            sleep=sleep,
        )
        self.feedback = FeedbackEmitter(self.dispatch, self.settings.feedback_max_hops)

        self._characters: dict[str, Character] = {}
        self._histories: dict[str, ConversationHistory] = {}
        self._tasks: set[asyncio.Task] = set()

        self.chat: Topic[Message] = Topic("chat")
        self.decision: Topic[Decision] = Topic("decision")
        self.spawn: Topic[SpawnNotice] = self.normalizer.spawns
        self.message_queued = self.queue.message_queued
        self.message_processed = self.queue.message_processed
        self.processing_error = self.queue.processing_error
        self.speech = self.executor.speech
        self.command = self.executor.command

        if auto_create:
            self.spawn.subscribe(self._on_spawn)

    # ------------------------------------------------------------------
    # Characters
    # ------------------------------------------------------------------

    def register(self, character: Character) -> Character:
        """Add a character, or replace its whole document if the id exists."""
        replacing = character.id in self._characters
        self._characters[character.id] = character
        self.positions.register(character)
        logger.info("%s character %s (%s)", "updated" if replacing else "registered", character.id, character.name)
        return character

    def unregister(self, character_id: str) -> bool:
        character = self._characters.pop(character_id, None)
        if character is None:
            return False
        self.queue.remove(character_id)
        self._histories.pop(character_id, None)
        self.positions.unregister(character_id)
        self.normalizer.forget(character.name)
        logger.info("unregistered character %s", character_id)
        return True

    def get(self, character_id: str) -> Character | None:
        return self._characters.get(character_id)

    def find_by_name(self, name: str) -> Character | None:
        lowered = name.lower()
        return next((c for c in self._characters.values() if c.name.lower() == lowered), None)

    def characters(self) -> list[Character]:
        return list(self._characters.values())

    def history(self, character_id: str) -> ConversationHistory:
        history = self._histories.get(character_id)
        if history is None:
            history = self._histories[character_id] = ConversationHistory(self.settings.history_limit)
        return history

    async def _on_spawn(self, notice: SpawnNotice) -> None:
        if self.find_by_name(notice.name):
            logger.debug("%s already has a character, skipping auto-creation", notice.name)
            return
        character = self.register(default_npc(notice.name))
        logger.info("auto-created character %s for %s", character.id, notice.name)

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def ingest(self, event: RawEvent) -> Message | None:
        message = await self.normalizer.normalize(event)
        if message is None:
            return None
        await self.chat.publish(message)
        await self.dispatch(message)
        return message

    async def dispatch(self, message: Message) -> list[Decision]:
        """Offer a message to every registered character except its origin."""
        decisions = []
        for character in list(self._characters.values()):
            if message.origin_character_id == character.id:
                continue
            decision = await self.gate.evaluate(message, character)
            decisions.append(decision)
            await self.decision.publish(decision)
            if not decision.respond:
                continue
            routed = message
            if decision.distance is not None:
                routed = message.model_copy(update={"distance": decision.distance})
            await self.handle_message(character.id, routed)
        return decisions

    async def handle_message(self, character_id: str, message: Message) -> int:
        """Queue a message for a character and start processing if it is idle."""
        depth = await self.queue.enqueue(character_id, message)
        task = asyncio.get_running_loop().create_task(self.process_character(character_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return depth

    async def process_character(self, character_id: str) -> TurnResult | None:
        """Run one queued message for a character. Never raises."""
        try:
            return await self.queue.process_next(character_id, self._run_turn)
        except TurnError as e:
            logger.error("turn failed for %s: %s", character_id, e)
        except Exception:
            logger.exception("error processing queue for %s", character_id)
        return None

    # ------------------------------------------------------------------
    # One turn
    # ------------------------------------------------------------------

    async def _run_turn(self, entry: QueueEntry) -> TurnResult | None:
        character = self._characters.get(entry.character_id)
        if character is None:
            logger.info("character %s was removed, dropping queued message", entry.character_id)
            return None

        message = entry.message
        history = self.history(character.id)
        prior = history.turns()
        history.add("user", user_line(message))

        scene = await self._scene(character, message)
        turns = assemble(character, prior, message, scene, self.authorizer)
        logger.info("[%s] asking model (%d turns) about: %s", character.name, len(turns), message.text)
        completion = await self.invoker.complete(
            turns, model=character.llm.model, temperature=character.llm.temperature
        )
        if not completion.success:
            raise TurnError(f"{character.name}: {completion.error}")

        history.add("assistant", completion.text)
        parsed = parse(completion.text)
        logger.info(
            "[%s] parsed %d speech, %d commands%s",
            character.name, len(parsed.speech), len(parsed.commands),
            " (silence)" if parsed.silence else "",
        )
        result = TurnResult(character.id, message, parsed)

        result.commands = await self.executor.run_commands(character, parsed)

        if not parsed.speak_enabled and parsed.speech:
            logger.info("[%s] chose not to speak, suppressing %d message(s)", character.name, len(parsed.speech))
        for text in parsed.speech:
            if not parsed.speak_enabled:
                history.add("assistant", text, suppressed=True)
                result.suppressed.append(text)
                continue
            await self.executor.emit_speech(character, text)
            result.spoken.append(text)
            relayed = self.feedback.emit(character, text, message)
            if relayed is not None:
                result.feedback.append(relayed)

        await self._maybe_summarize(character, history)
        return result

    async def _scene(self, character: Character, message: Message) -> SceneContext:
        scene = SceneContext(ai_entities=[c.name for c in self._characters.values()])
        try:
            scene.players = await self.protocol.list_players()
        except Exception as e:
            logger.warning("could not list players: %s", e)

        knowledge = character.knowledge
        if knowledge.player_state_fields or knowledge.world_state_fields:
            try:
                scene.state = await self.protocol.get_state(
                    message.sender, knowledge.player_state_fields, knowledge.world_state_fields
                )
            except Exception as e:
                logger.warning("state snapshot for %s failed: %s", character.name, e)
        return scene

    async def _maybe_summarize(self, character: Character, history: ConversationHistory) -> None:
        limit = character.personality.history_limit
        if not character.personality.use_summarization or len(history) <= limit:
            return

        async def summarizer(older: list[ConversationTurn]) -> str:
            completion = await self.invoker.complete(
                summary_prompt(older), model=character.llm.model, temperature=0.3
            )
            if not completion.success:
                raise TurnError(completion.error or "summary failed")
            return completion.text.strip()

        await history.summarize(max(1, limit // 2), summarizer)

    # ------------------------------------------------------------------
    # Introspection and lifecycle
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        queues = self.queue.stats()
        per_character = {}
        for cid, character in self._characters.items():
            q = queues.get(cid, {"queue_length": 0, "processing": False})
            per_character[cid] = {
                "name": character.name,
                "enabled": character.enabled,
                "queue_length": q["queue_length"],
                "processing": q["processing"],
                "history_size": len(self._histories[cid]) if cid in self._histories else 0,
            }
        return {
            "characters": per_character,
            "total_characters": len(per_character),
            "total_queued": sum(c["queue_length"] for c in per_character.values()),
            "processing": sum(1 for c in per_character.values() if c["processing"]),
            "chat_history_size": len(self.normalizer),
            "detected_ai": sorted(self.normalizer.detected),
            "feedback_dropped": self.feedback.dropped,
        }

    async def wait_idle(self) -> None:
        """Wait until no scheduled runs or feedback deliveries remain."""
        while self._tasks or self.queue.pending or self.feedback.pending:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await self.queue.wait_idle()
            await self.feedback.wait_idle()

    async def close(self) -> None:
        """Stop all pending work and take down chat bubbles."""
        await self.queue.close()
        await self.feedback.close()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.executor.remove_all_bubbles()
