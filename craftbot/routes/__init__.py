"""FastAPI API endpoints under /api.

Endpoint groups: system (health, stats, check-connection), characters
(register/replace/unregister character documents), events (raw event intake,
command validation), chat (audit history and search).

Every handler reaches the running Orchestrator through app.state, so tests
can mount an app around their own instance.
"""

from fastapi import APIRouter

from .characters import router as characters_router
from .chat import router as chat_router
from .events import router as events_router
from .system import router as system_router

router = APIRouter()
router.include_router(system_router)
router.include_router(characters_router)
router.include_router(events_router)
router.include_router(chat_router)
