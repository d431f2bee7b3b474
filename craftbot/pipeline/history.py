"""Bounded per-character conversation history."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from craftbot.models import ConversationTurn, Role

logger = logging.getLogger(__name__)

Summarizer = Callable[[list[ConversationTurn]], Awaitable[str]]


class ConversationHistory:
    """Append-only list of turns; the oldest turn is dropped past `max_turns`."""

    def __init__(self, max_turns: int = 100) -> None:
        self.max_turns = max_turns
        self._turns: list[ConversationTurn] = []

    def add(self, role: Role, content: str, *, suppressed: bool = False) -> ConversationTurn:
        turn = ConversationTurn(role=role, content=content, suppressed=suppressed)
        self._turns.append(turn)
        if len(self._turns) > self.max_turns:
            del self._turns[: len(self._turns) - self.max_turns]
        return turn

    def recent(self, limit: int = 50) -> list[ConversationTurn]:
        return self._turns[-limit:] if limit > 0 else []

    def turns(self, limit: int | None = None) -> list[ConversationTurn]:
        """All turns, or the most recent `limit`."""
        return list(self._turns) if limit is None else self.recent(limit)

    def clear(self) -> None:
        self._turns = []

    async def summarize(self, keep_recent: int, summarizer: Summarizer) -> bool:
        """Fold everything but the last `keep_recent` turns into one summary turn.

        Returns True when history was rewritten. A failing summarizer leaves
        history untouched.
        """
        if len(self._turns) <= keep_recent:
            return False
        split = len(self._turns) - keep_recent
        older, recent = self._turns[:split], self._turns[split:]
        try:
            summary = await summarizer(older)
        except Exception:
            logger.exception("summarizing %d turns failed", len(older))
            return False
        self._turns = [
            ConversationTurn(role="system", content=f"Previous conversation summary: {summary}", summary=True),
            *recent,
        ]
        logger.info("summarized %d turns", len(older))
        return True

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self):
        return iter(list(self._turns))
