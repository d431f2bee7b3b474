"""Health check, stats, and connection check endpoints."""

from fastapi import APIRouter, Depends, Request

from craftbot.llm import HttpChatModel
from craftbot.pipeline.orchestrator import Orchestrator

from .deps import get_orchestrator
from .models import CheckConnectionBody

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/stats")
async def stats(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Queue depth, processing flag and history size per character."""
    return orchestrator.get_stats()


@router.post("/check-connection")
async def check_connection(body: CheckConnectionBody, request: Request):
    """Quick health check against a model backend (the configured one by default)."""
    settings = request.app.state.settings
    client = HttpChatModel(
        body.provider_url or settings.llm_url,
        api_key=body.api_key or settings.llm_api_key,
        provider_format=body.provider_format or settings.llm_provider_format,
        model=settings.llm_model,
        timeout=5,
    )
    return await client.health()
