"""craftbot — dev launcher. Serves the relay API with uvicorn."""

import argparse
import logging

import uvicorn

from craftbot.config import load_settings


def main():
    settings = load_settings()

    parser = argparse.ArgumentParser(description="craftbot NPC relay")
    parser.add_argument("--host", default=settings.host, help=f"Bind address (default: {settings.host})")
    parser.add_argument("--port", type=int, default=settings.port, help=f"Port (default: {settings.port})")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level (default: from LOG_LEVEL)")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print(f"Starting craftbot on http://localhost:{args.port} (model backend {settings.llm_url}) ...")
    uvicorn.run(
        "craftbot.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
