"""Character registration endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from craftbot.models import Character
from craftbot.pipeline.orchestrator import Orchestrator

from .deps import get_orchestrator, require_character

router = APIRouter()


@router.get("/characters")
async def list_characters(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """List all registered characters."""
    return orchestrator.characters()


@router.post("/characters", status_code=201)
async def create_character(body: Character, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Register a new character."""
    if orchestrator.get(body.id):
        raise HTTPException(409, f"Character '{body.id}' already exists")
    return orchestrator.register(body)


@router.get("/characters/{character_id}")
async def get_character(character_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Get a single character by id."""
    return require_character(orchestrator, character_id)


@router.put("/characters/{character_id}")
async def replace_character(
    character_id: str, body: Character, orchestrator: Orchestrator = Depends(get_orchestrator)
):
    """Replace a character document. The path id wins over the body id."""
    require_character(orchestrator, character_id)
    return orchestrator.register(body.model_copy(update={"id": character_id}))


@router.delete("/characters/{character_id}")
async def delete_character(character_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Unregister a character and drop its queue and history."""
    require_character(orchestrator, character_id)
    orchestrator.unregister(character_id)
    return {"ok": True}


@router.get("/characters/{character_id}/history")
async def character_history(
    character_id: str, limit: int = 50, orchestrator: Orchestrator = Depends(get_orchestrator)
):
    """Recent conversation turns for a character."""
    require_character(orchestrator, character_id)
    return orchestrator.history(character_id).recent(limit)
