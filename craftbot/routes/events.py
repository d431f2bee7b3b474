"""Raw event intake and command validation endpoints."""

from fastapi import APIRouter, Depends

from craftbot.models import RawEvent
from craftbot.pipeline.orchestrator import Orchestrator

from .deps import get_orchestrator, require_character
from .models import ValidateCommandBody

router = APIRouter()


@router.post("/events", status_code=202)
async def post_event(body: RawEvent, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Feed one raw game event into the relay.

    Returns the classified message, or null for spawn lines. Model calls run
    in the background.
    """
    message = await orchestrator.ingest(body)
    return {"message": message}


@router.post("/commands/validate")
async def validate_command(body: ValidateCommandBody, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Check whether a character may run a command, without running it."""
    character = require_character(orchestrator, body.character_id)
    return orchestrator.authorizer.validate(body.command, character)


@router.get("/commands")
async def list_commands(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """The command registry with per-category and per-level counts."""
    registry = orchestrator.authorizer.registry
    return {"commands": list(registry), "stats": registry.stats()}
