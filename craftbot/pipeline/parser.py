"""Model output → ParsedResponse.

Tag grammar (preferred):

    <thinking>private reasoning</thinking>
    <action>0|1</action>          speak enable/disable, default 1
    <function>give @p bread 5</function>
    <say>Here you go!</say>
    <silence/>                    nothing at all this turn

Legacy forms still accepted: [THINK: ...], [CHAT: ...], [COMMAND: ...],
EXECUTE: ..., fenced ```command blocks, and lines starting with "/".

Each form is a small Extractor. Thoughts and speech come from the first
extractor of their kind that finds anything; commands are the union of all
command extractors, normalized to one leading "/" and de-duplicated.
parse() never raises.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Literal

from craftbot.models import ParsedCommand, ParsedResponse

logger = logging.getLogger(__name__)

Target = Literal["thoughts", "speech", "commands"]

SILENCE = re.compile(r"<silence\s*/>", re.IGNORECASE)
ACTION = re.compile(r"<action>\s*(0|1)\s*</action>", re.IGNORECASE)
BLANK_RUNS = re.compile(r"\n{3,}")


@dataclass(frozen=True)
class Extractor:
    """One output form. Yields (content, raw match) pairs."""

    name: str
    field: Target
    pattern: re.Pattern
    split_lines: bool = False
    whole_match: bool = False
    strict_ok: bool = True
    bare_text: bool = False  # run on the text with every other form removed

    def extract(self, text: str) -> list[tuple[str, str]]:
        found: list[tuple[str, str]] = []
        for match in self.pattern.finditer(text):
            content = (match.group(0) if self.whole_match else match.group(1)).strip()
            if not content:
                continue
            if self.split_lines:
                found.extend((line.strip(), match.group(0)) for line in content.split("\n") if line.strip())
            else:
                found.append((content, match.group(0)))
        return found


def _tag(name: str) -> re.Pattern:
    return re.compile(rf"<{name}>(.*?)</{name}>", re.IGNORECASE | re.DOTALL)


THINK_BRACKET = re.compile(r"\[THINK:\s*(.+?)\]", re.IGNORECASE)
COMMAND_BRACKET = re.compile(r"\[COMMAND:\s*(.*?)\]", re.IGNORECASE)
EXECUTE_LINE = re.compile(r"EXECUTE:\s*(.*?)$", re.IGNORECASE | re.MULTILINE)
CODE_BLOCK = re.compile(r"```(?:minecraft|command)?[ \t]*\n?(.+?)\n?```", re.IGNORECASE | re.DOTALL)

THOUGHT_EXTRACTORS = (
    Extractor("thinking_tag", "thoughts", _tag("thinking")),
    Extractor("think_bracket", "thoughts", THINK_BRACKET),
)

SPEECH_EXTRACTORS = (
    Extractor("say_tag", "speech", _tag("say")),
    Extractor("chat_bracket", "speech", re.compile(r"\[CHAT:\s*(.+?)\]", re.IGNORECASE)),
)

COMMAND_EXTRACTORS = (
    Extractor("function_tag", "commands", _tag("function"), split_lines=True),
    Extractor("command_bracket", "commands", COMMAND_BRACKET),
    Extractor("execute_line", "commands", EXECUTE_LINE),
    Extractor("code_block", "commands", CODE_BLOCK, split_lines=True),
    Extractor(
        "slash_line", "commands",
        re.compile(r"^/[a-zA-Z0-9_-]+[^\n]*$", re.MULTILINE),
        whole_match=True, strict_ok=False, bare_text=True,
    ),
)

# Removed before slash-line detection and implicit speech
_DECORATION = (
    _tag("thinking"), _tag("say"), _tag("function"), SILENCE, ACTION,
    THINK_BRACKET, COMMAND_BRACKET, EXECUTE_LINE, CODE_BLOCK,
)


def normalize_command(command: str) -> str:
    return "/" + command.strip().lstrip("/").strip()


def _first(extractors: tuple[Extractor, ...], text: str) -> list[str]:
    for extractor in extractors:
        found = extractor.extract(text)
        if found:
            return [content for content, _ in found]
    return []


def _commands(text: str, strict: bool) -> list[ParsedCommand]:
    commands: list[ParsedCommand] = []
    seen: set[str] = set()
    bare = _strip_decoration(text)
    for extractor in COMMAND_EXTRACTORS:
        if strict and not extractor.strict_ok:
            continue
        for content, raw in extractor.extract(bare if extractor.bare_text else text):
            command = normalize_command(content)
            if command == "/" or command in seen:
                continue
            seen.add(command)
            commands.append(ParsedCommand(command=command, rule=extractor.name, raw=raw))
    return commands


def _strip_decoration(text: str) -> str:
    for pattern in _DECORATION:
        text = pattern.sub("", text)
    return text


def _implicit_speech(text: str) -> str:
    return BLANK_RUNS.sub("\n\n", _strip_decoration(text)).strip()


def parse(text: str | None, strict: bool = False) -> ParsedResponse:
    """Parse one model completion.

    strict skips line-leading "/command" detection and the implicit speech
    fallback, so only explicit forms are honoured.
    """
    if not text or not isinstance(text, str):
        return ParsedResponse(raw=text if isinstance(text, str) else "")

    if SILENCE.search(text):
        logger.debug("silence tag found")
        return ParsedResponse(silence=True, raw=text)

    speak_enabled = True
    action = ACTION.search(text)
    if action:
        speak_enabled = action.group(1) == "1"
        logger.debug("action tag: %s", action.group(1))

    thoughts = _first(THOUGHT_EXTRACTORS, text)
    speech = _first(SPEECH_EXTRACTORS, text)
    commands = _commands(text, strict)

    if not speech and not commands and not strict:
        implicit = _implicit_speech(text)
        if implicit:
            speech = [implicit]

    return ParsedResponse(
        thoughts=thoughts,
        speech=speech,
        commands=commands,
        speak_enabled=speak_enabled,
        raw=text,
    )


def render(parsed: ParsedResponse) -> str:
    """Serialize back to the tag grammar."""
    if parsed.silence:
        return "<silence/>"
    parts = [f"<thinking>{t}</thinking>" for t in parsed.thoughts]
    parts.append(f"<action>{1 if parsed.speak_enabled else 0}</action>")
    parts.extend(f"<function>{c.command.lstrip('/')}</function>" for c in parsed.commands)
    parts.extend(f"<say>{s}</say>" for s in parsed.speech)
    return "\n".join(parts)
