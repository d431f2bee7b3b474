from fastapi import HTTPException, Request

from craftbot.models import Character
from craftbot.pipeline.orchestrator import Orchestrator


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def require_character(orchestrator: Orchestrator, character_id: str) -> Character:
    character = orchestrator.get(character_id)
    if not character:
        raise HTTPException(404, "Character not found")
    return character
