from contextlib import asynccontextmanager

from fastapi import FastAPI

from craftbot.collaborators import OfflineProtocol, RateLimitedProtocol
from craftbot.config import Settings, load_settings
from craftbot.llm import HttpChatModel
from craftbot.pipeline.orchestrator import Orchestrator
from craftbot.routes import router


def build_orchestrator(settings: Settings) -> Orchestrator:
    """Orchestrator wired to the configured model backend.

    The game server client is attached by whoever embeds the relay; until
    then commands go to an OfflineProtocol.
    """
    model = HttpChatModel(
        settings.llm_url,
        api_key=settings.llm_api_key,
        provider_format=settings.llm_provider_format,
        model=settings.llm_model,
        timeout=settings.llm_timeout,
        max_tokens=settings.llm_max_tokens,
    )
    protocol = RateLimitedProtocol(OfflineProtocol(), settings.command_delay)
    return Orchestrator(model=model, protocol=protocol, settings=settings)


def create_app(orchestrator: Orchestrator | None = None, settings: Settings | None = None) -> FastAPI:
    resolved = settings or (orchestrator.settings if orchestrator else load_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.orchestrator.close()

    app = FastAPI(title="craftbot", lifespan=lifespan)
    app.state.settings = resolved
    app.state.orchestrator = orchestrator or build_orchestrator(resolved)
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (settings from env / .env)
app = create_app()
