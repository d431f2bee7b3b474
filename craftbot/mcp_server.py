"""FastMCP server exposing the relay's chat log and command policy as MCP tools.

Tools:
  - get_chat_history(limit, exclude_ai)     — recent classified chat events
  - search_chat_history(query, limit)       — substring search over chat
  - validate_command(character_id, command) — dry-run authorization
  - get_stats()                             — queue/history stats per character

The orchestrator is replaced via set_orchestrator() for tests, or built from
environment settings when run as __main__.

Usage:
    uv run python -m craftbot.mcp_server
"""

from mcp.server.fastmcp import FastMCP

from craftbot.pipeline.orchestrator import Orchestrator

mcp = FastMCP("craftbot")

_orchestrator: Orchestrator | None = None


def set_orchestrator(orchestrator: Orchestrator) -> None:
    """Replace the active orchestrator (used in tests)."""
    global _orchestrator
    _orchestrator = orchestrator


def get_orchestrator() -> Orchestrator:
    if _orchestrator is None:
        raise RuntimeError("No orchestrator configured; call set_orchestrator() first")
    return _orchestrator


@mcp.tool()
def get_chat_history(limit: int = 50, exclude_ai: bool = False) -> list[dict]:
    """Return recent chat and system events, oldest first."""
    entries = get_orchestrator().normalizer.history(limit, exclude_ai=exclude_ai)
    return [e.model_dump(mode="json") for e in entries]


@mcp.tool()
def search_chat_history(query: str, limit: int = 20) -> list[dict]:
    """Search chat messages by text or sender (case-insensitive)."""
    return [m.model_dump(mode="json") for m in get_orchestrator().normalizer.search(query, limit)]


@mcp.tool()
def validate_command(character_id: str, command: str) -> dict:
    """Check whether a character may run a command. Nothing is executed."""
    orchestrator = get_orchestrator()
    character = orchestrator.get(character_id)
    if character is None:
        return {"valid": False, "command": command, "error": f"Unknown character: {character_id}"}
    return orchestrator.authorizer.validate(command, character).model_dump(mode="json")


@mcp.tool()
def get_stats() -> dict:
    """Per-character queue depth, processing state and history size."""
    return get_orchestrator().get_stats()


if __name__ == "__main__":
    from craftbot.app import build_orchestrator
    from craftbot.config import load_settings

    set_orchestrator(build_orchestrator(load_settings()))
    mcp.run()
