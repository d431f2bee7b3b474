"""Chat audit history endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends

from craftbot.pipeline.orchestrator import Orchestrator

from .deps import get_orchestrator

router = APIRouter()


@router.get("/chat/history")
async def chat_history(
    limit: int = 50,
    kind: str | None = None,
    sender: str | None = None,
    since: datetime | None = None,
    exclude_ai: bool = False,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Recent classified events, oldest first."""
    return orchestrator.normalizer.history(
        limit, kind=kind, sender=sender, since=since, exclude_ai=exclude_ai
    )


@router.get("/chat/search")
async def chat_search(q: str, limit: int = 20, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Case-insensitive search over message text and senders."""
    return orchestrator.normalizer.search(q, limit)
