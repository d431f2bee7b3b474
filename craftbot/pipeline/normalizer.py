"""Raw event → Message classification, AI identity detection, audit history."""

from __future__ import annotations

import logging
import re
from collections import deque
from datetime import datetime, timezone

from craftbot.events import Topic
from craftbot.models import Message, RawEvent, SpawnNotice

logger = logging.getLogger(__name__)

AI_TAG = re.compile(r"\[AI\]", re.IGNORECASE)
AI_NAME = re.compile(r"\[AI\]\s*(\w+)", re.IGNORECASE)

AuditEntry = Message | SpawnNotice


def ai_display_name(identity: str) -> str | None:
    """Extract the bare name from an "[AI] Name" marker, or None."""
    match = AI_NAME.search(identity)
    return match.group(1) if match else None


class EventNormalizer:
    """Turns raw notifications into Messages.

    Publishes the first sighting of each AI-tagged name on `spawns`, and keeps
    a capped rolling history of everything it classified for search/audit.
    """

    def __init__(self, history_size: int = 1000) -> None:
        self.spawns: Topic[SpawnNotice] = Topic("spawn")
        self._history: deque[AuditEntry] = deque(maxlen=history_size)
        self._detected: set[str] = set()

    async def normalize(self, event: RawEvent) -> Message | None:
        if event.kind == "spawn":
            await self._detect(event.text or event.raw or event.sender, event)
            return None

        if event.kind == "chat":
            is_ai = bool(AI_TAG.search(event.sender) or AI_TAG.search(event.text))
            message = Message(
                kind="chat",
                sender=event.sender,
                text=event.text,
                is_ai=is_ai,
                distance=event.distance,
                timestamp=event.timestamp,
                raw=event.raw or f"<{event.sender}> {event.text}",
            )
            self._history.append(message)
            if AI_TAG.search(event.sender):
                await self._detect(event.sender, event)
            logger.debug("%s chat: <%s> %s", "AI" if is_ai else "player", event.sender, event.text)
            return message

        if event.kind == "join":
            text = f"{event.sender} joined the game"
        elif event.kind == "leave":
            text = f"{event.sender} left the game"
        else:
            text = event.text
        message = Message(
            kind="system",
            sender=event.sender or "Server",
            text=text,
            timestamp=event.timestamp,
            raw=event.raw or text,
        )
        self._history.append(message)
        return message

    async def _detect(self, identity: str, event: RawEvent) -> None:
        if not AI_TAG.search(identity):
            return
        name = ai_display_name(identity)
        if not name:
            logger.info("found [AI] tag but no name in %r", identity)
            return
        if name in self._detected:
            return
        self._detected.add(name)
        notice = SpawnNotice(name=name, timestamp=event.timestamp, raw=f"[AI] entity detected: {name}")
        self._history.append(notice)
        logger.info("AI entity detected: %s", name)
        await self.spawns.publish(notice)

    def forget(self, name: str) -> None:
        """Allow a previously detected name to be announced again."""
        self._detected.discard(name)

    @property
    def detected(self) -> frozenset[str]:
        return frozenset(self._detected)

    # ------------------------------------------------------------------
    # Audit history
    # ------------------------------------------------------------------

    def history(
        self,
        limit: int = 50,
        *,
        kind: str | None = None,
        sender: str | None = None,
        since: datetime | None = None,
        exclude_ai: bool = False,
    ) -> list[AuditEntry]:
        """Most recent entries (oldest first), optionally filtered."""
        entries = list(self._history)
        if kind:
            entries = [e for e in entries if _kind(e) == kind]
        if sender:
            entries = [e for e in entries if isinstance(e, Message) and e.sender == sender]
        if since:
            if since.tzinfo is None:
                since = since.replace(tzinfo=timezone.utc)
            entries = [e for e in entries if e.timestamp >= since]
        if exclude_ai:
            entries = [e for e in entries if not (isinstance(e, Message) and e.is_ai)]
        return entries[-limit:] if limit > 0 else []

    def search(self, query: str, limit: int = 20) -> list[Message]:
        """Case-insensitive substring search over message text and sender."""
        needle = query.lower()
        hits = [
            e for e in self._history
            if isinstance(e, Message) and (needle in e.text.lower() or needle in e.sender.lower())
        ]
        return hits[-limit:] if limit > 0 else []

    def __len__(self) -> int:
        return len(self._history)


def _kind(entry: AuditEntry) -> str:
    return entry.kind if isinstance(entry, Message) else "spawn"
