"""Tests for the executor — command dispatch, speech chunking, bubbles, feedback."""

import asyncio
import json

import pytest

from craftbot.collaborators import PositionTracker
from craftbot.models import ParsedCommand, ParsedResponse, PermissionLevel, Position
from craftbot.pipeline.authorizer import AuthReason, CommandAuthorizer
from craftbot.pipeline.executor import (
    Executor,
    FeedbackEmitter,
    chunk_speech,
    rewrite_say,
    tellraw,
)

from tests.helpers import FakeProtocol, make_character, no_sleep, player_message


def _executor(protocol: FakeProtocol, tracker: PositionTracker | None = None, **kwargs) -> Executor:
    kwargs.setdefault("sleep", no_sleep)
    kwargs.setdefault("bubble_duration", 0)
    return Executor(protocol, CommandAuthorizer(), tracker or PositionTracker(), **kwargs)


def _text_of(command: str) -> str:
    return json.loads(command.split(" ", 2)[2])["text"]


class BrokenProtocol(FakeProtocol):
    """Records each command, then raises as a dropped connection would."""

    async def execute(self, command: str):
        self.executed.append(command)
        raise ConnectionError("socket closed")


# ── chunking ─────────────────────────────────────────────────


class TestChunking:
    def test_short_text_single_chunk(self) -> None:
        chunks = chunk_speech("hello")
        assert [(c.text, c.continuation) for c in chunks] == [("hello", False)]

    def test_empty(self) -> None:
        assert chunk_speech("   ") == []

    def test_300_chars_split_on_words(self) -> None:
        text = " ".join(["word"] * 60)  # 299 chars
        chunks = chunk_speech(text, limit=200)
        assert len(chunks) == 2
        assert all(len(c.text) <= 200 for c in chunks)
        assert not chunks[0].continuation
        assert chunks[1].continuation
        assert " ".join(c.text for c in chunks) == text

    def test_long_word_hard_split(self) -> None:
        chunks = chunk_speech("x" * 450, limit=200)
        assert [len(c.text) for c in chunks] == [200, 200, 50]


# ── say rewriting ────────────────────────────────────────────


class TestRewriteSay:
    def test_say_becomes_tellraw_broadcast(self) -> None:
        sent = rewrite_say("/say hello there", make_character(name="Bob"))
        assert sent == tellraw("@a", "[AI] <Bob> hello there", "aqua")

    def test_say_with_selector(self) -> None:
        sent = rewrite_say("/say @p come here", make_character())
        assert sent.startswith("tellraw @p ")
        assert _text_of(sent) == "[AI] <Bob> come here"

    def test_console_character_uses_gold(self) -> None:
        sent = rewrite_say("/say Server restarting", make_character(name="Console", type="console"))
        assert json.loads(sent.split(" ", 2)[2]) == {"text": "<Console> Server restarting", "color": "gold"}

    def test_other_commands_pass_through(self) -> None:
        assert rewrite_say("/time set day", make_character()) == "time set day"

    def test_quotes_escaped(self) -> None:
        sent = rewrite_say('/say he said "hi"', make_character())
        assert _text_of(sent) == '[AI] <Bob> he said "hi"'


# ── commands ─────────────────────────────────────────────────


class TestCommands:
    @pytest.mark.asyncio
    async def test_authorized_command_sent(self) -> None:
        protocol = FakeProtocol()
        outcome = await _executor(protocol).run_command(make_character(), "/time set day")
        assert outcome.executed
        assert outcome.sent == "time set day"
        assert protocol.executed == ["time set day"]

    @pytest.mark.asyncio
    async def test_blocked_command_not_sent(self) -> None:
        protocol = FakeProtocol()
        outcome = await _executor(protocol).run_command(make_character(allowed=["ban"]), "/ban Steve")
        assert not outcome.executed
        assert outcome.result is None
        assert outcome.authorization.reason == AuthReason.INSUFFICIENT_LEVEL
        assert protocol.executed == []

    @pytest.mark.asyncio
    async def test_server_failure_reported(self) -> None:
        protocol = FakeProtocol(fail_commands={"weather"})
        outcome = await _executor(protocol).run_command(make_character(), "/weather rain")
        assert not outcome.executed
        assert outcome.result.error == "server said no"

    @pytest.mark.asyncio
    async def test_commands_run_in_order_and_published(self) -> None:
        protocol = FakeProtocol()
        executor = _executor(protocol)
        published = []
        executor.command.subscribe(published.append)
        parsed = ParsedResponse(commands=[
            ParsedCommand(command="/time set day", rule="function_tag"),
            ParsedCommand(command="/kick Steve", rule="function_tag"),
            ParsedCommand(command="/weather clear", rule="function_tag"),
        ])
        character = make_character(level=PermissionLevel.ENVIRONMENT)
        outcomes = await executor.run_commands(character, parsed)
        assert [o.executed for o in outcomes] == [True, False, True]
        assert protocol.executed == ["time set day", "weather clear"]
        assert len(published) == 3


# ── speech ───────────────────────────────────────────────────


class TestSpeech:
    @pytest.mark.asyncio
    async def test_broadcast_single_line(self) -> None:
        protocol = FakeProtocol()
        chunks = await _executor(protocol).emit_speech(make_character(), "Hello!")
        assert len(chunks) == 1
        assert protocol.tellraws() == [tellraw("@a", "[AI] <Bob> Hello!", "aqua")]

    @pytest.mark.asyncio
    async def test_long_speech_chunked_with_delay(self) -> None:
        protocol = FakeProtocol()
        delays = []

        async def record(seconds: float) -> None:
            delays.append(seconds)

        executor = _executor(protocol, sleep=record, chunk_delay=0.25)
        await executor.emit_speech(make_character(), " ".join(["word"] * 60))

        lines = [_text_of(c) for c in protocol.tellraws()]
        assert len(lines) == 2
        assert lines[0].startswith("[AI] <Bob> word")
        assert lines[1].startswith("  word")
        assert delays == [0.25]

    @pytest.mark.asyncio
    async def test_no_server_chat(self) -> None:
        protocol = FakeProtocol()
        character = make_character()
        character.appearance.uses_server_chat = False
        assert await _executor(protocol).emit_speech(character, "quiet") == []
        assert protocol.executed == []

    @pytest.mark.asyncio
    async def test_speech_published(self) -> None:
        executor = _executor(FakeProtocol())
        seen = []
        executor.speech.subscribe(seen.append)
        await executor.emit_speech(make_character(), "hi")
        assert seen[0].text == "hi"
        assert seen[0].chunks == 1

    @pytest.mark.asyncio
    async def test_channel_error_does_not_abort_broadcast(self) -> None:
        protocol = BrokenProtocol()
        executor = _executor(protocol)
        seen = []
        executor.speech.subscribe(seen.append)

        chunks = await executor.emit_speech(make_character(), " ".join(["word"] * 60))

        assert len(chunks) == 2
        assert len(protocol.tellraws()) == 2
        assert seen[0].chunks == 2


class TestBubbles:
    def _bubbly(self) -> tuple[PositionTracker, object]:
        tracker = PositionTracker()
        character = make_character(position=Position(x=1, y=64, z=-3))
        character.appearance.chat_bubble = True
        tracker.register(character)
        return tracker, character

    @pytest.mark.asyncio
    async def test_bubble_summoned_above_position(self) -> None:
        tracker, character = self._bubbly()
        protocol = FakeProtocol()
        executor = _executor(protocol, tracker, bubble_duration=60)
        await executor.emit_speech(character, "Hi there")
        summon = protocol.executed[0]
        assert summon.startswith("summon text_display 1.0 66.0 -3.0 ")
        assert '"chat_bubble"' in summon
        assert "Hi there" in summon
        assert executor.active_bubbles()["bob"].startswith("bubble_bob_")

    @pytest.mark.asyncio
    async def test_new_bubble_replaces_previous(self) -> None:
        tracker, character = self._bubbly()
        protocol = FakeProtocol()
        executor = _executor(protocol, tracker)
        await executor.show_bubble(character, "first")
        first_tag = executor.active_bubbles()["bob"]
        await executor.show_bubble(character, "second")
        assert f"kill @e[tag={first_tag}]" in protocol.executed
        assert list(executor.active_bubbles()) == ["bob"]

    @pytest.mark.asyncio
    async def test_bubble_expires(self) -> None:
        tracker, character = self._bubbly()
        protocol = FakeProtocol()
        executor = _executor(protocol, tracker, bubble_duration=0.01)
        await executor.show_bubble(character, "brief")
        tag = executor.active_bubbles()["bob"]
        await asyncio.sleep(0.05)
        assert executor.active_bubbles() == {}
        assert protocol.executed[-1] == f"kill @e[tag={tag}]"

    @pytest.mark.asyncio
    async def test_long_text_truncated(self) -> None:
        tracker, character = self._bubbly()
        protocol = FakeProtocol()
        await _executor(protocol, tracker).show_bubble(character, "a" * 150)
        assert "a" * 97 + "..." in protocol.executed[0]
        assert "a" * 98 not in protocol.executed[0]

    @pytest.mark.asyncio
    async def test_no_position_no_bubble(self) -> None:
        character = make_character()
        character.appearance.chat_bubble = True
        protocol = FakeProtocol()
        await _executor(protocol).emit_speech(character, "hi")
        assert not any(c.startswith("summon") for c in protocol.executed)
        assert len(protocol.tellraws()) == 1

    @pytest.mark.asyncio
    async def test_remove_all(self) -> None:
        tracker, character = self._bubbly()
        protocol = FakeProtocol()
        executor = _executor(protocol, tracker, bubble_duration=60)
        await executor.show_bubble(character, "hi")
        await executor.remove_all_bubbles()
        assert executor.active_bubbles() == {}
        assert protocol.executed[-1].startswith("kill @e[tag=bubble_bob_")

    @pytest.mark.asyncio
    async def test_channel_error_on_summon(self) -> None:
        tracker, character = self._bubbly()
        protocol = BrokenProtocol()
        executor = _executor(protocol, tracker)
        assert await executor.show_bubble(character, "hi") is False
        assert executor.active_bubbles() == {}
        assert len(await executor.emit_speech(character, "still heard")) == 1

    @pytest.mark.asyncio
    async def test_channel_error_on_kill(self) -> None:
        tracker, character = self._bubbly()
        executor = _executor(FakeProtocol(), tracker, bubble_duration=60)
        await executor.show_bubble(character, "hi")
        executor._protocol = BrokenProtocol()
        await executor.remove_bubble("bob")
        assert executor.active_bubbles() == {}


# ── feedback ─────────────────────────────────────────────────


class TestFeedback:
    @pytest.mark.asyncio
    async def test_build(self) -> None:
        emitter = FeedbackEmitter(deliver=None)
        msg = emitter.build(make_character(), "Hi Steve", player_message("hi", hops=2))
        assert msg.sender == "[AI] Bob"
        assert msg.is_ai
        assert msg.origin_character_id == "bob"
        assert msg.hops == 3
        assert msg.raw == "<[AI] Bob> Hi Steve"

    @pytest.mark.asyncio
    async def test_emit_delivers_asynchronously(self) -> None:
        delivered = []

        async def deliver(message):
            delivered.append(message)

        emitter = FeedbackEmitter(deliver)
        emitter.emit(make_character(), "Hello", player_message("hi"))
        assert delivered == []  # not re-entrant
        await emitter.wait_idle()
        assert [m.text for m in delivered] == ["Hello"]
        assert emitter.pending == 0

    @pytest.mark.asyncio
    async def test_hop_ceiling(self) -> None:
        delivered = []

        async def deliver(message):
            delivered.append(message)

        emitter = FeedbackEmitter(deliver, max_hops=2)
        assert emitter.emit(make_character(), "ok", player_message("x", hops=1)) is not None
        assert emitter.emit(make_character(), "too far", player_message("x", hops=2)) is None
        await emitter.wait_idle()
        assert [m.text for m in delivered] == ["ok"]
        assert emitter.dropped == 1

    @pytest.mark.parametrize("hops", [0, 5])
    @pytest.mark.asyncio
    async def test_within_default_ceiling(self, hops: int) -> None:
        async def deliver(message):
            return None

        emitter = FeedbackEmitter(deliver)
        assert emitter.emit(make_character(), "hi", player_message("x", hops=hops)) is not None
        await emitter.wait_idle()

    @pytest.mark.asyncio
    async def test_close_cancels_deliveries(self) -> None:
        never = asyncio.Event()

        async def deliver(message):
            await never.wait()

        emitter = FeedbackEmitter(deliver)
        emitter.emit(make_character(), "hi", player_message("x"))
        assert emitter.pending == 1

        await emitter.close()
        assert emitter.pending == 0
        assert emitter.emit(make_character(), "late", player_message("x")) is None
