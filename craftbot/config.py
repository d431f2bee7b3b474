"""Runtime settings read from the environment (and a .env file)."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

ROOT = Path(__file__).parent.parent


class Settings(BaseModel):
    # Model backend
    llm_url: str = "http://localhost:11434"
    llm_model: str = "qwen2.5:14b-instruct"
    llm_provider_format: str = "ollama"
    llm_api_key: str = ""
    llm_timeout: float = 60.0
    llm_max_tokens: int = 500

    # Queueing and history
    queue_capacity: int = 50
    history_limit: int = 100
    chat_history_size: int = 1000

    # Emission
    chat_chunk_limit: int = 200
    chunk_delay: float = 0.1
    command_delay: float = 0.1
    bubble_duration: float = 5.0

    # Feedback loop ceiling
    feedback_max_hops: int = 6

    # HTTP
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"


# env var → Settings field
_ENV_FIELDS = {
    "OLLAMA_URL": "llm_url",
    "OLLAMA_MODEL": "llm_model",
    "LLM_PROVIDER_FORMAT": "llm_provider_format",
    "LLM_API_KEY": "llm_api_key",
    "LLM_TIMEOUT": "llm_timeout",
    "LLM_MAX_TOKENS": "llm_max_tokens",
    "QUEUE_CAPACITY": "queue_capacity",
    "HISTORY_LIMIT": "history_limit",
    "CHAT_HISTORY_SIZE": "chat_history_size",
    "CHAT_CHUNK_LIMIT": "chat_chunk_limit",
    "CHUNK_DELAY": "chunk_delay",
    "COMMAND_DELAY": "command_delay",
    "BUBBLE_DURATION": "bubble_duration",
    "FEEDBACK_MAX_HOPS": "feedback_max_hops",
    "HOST": "host",
    "PORT": "port",
    "LOG_LEVEL": "log_level",
}


def load_settings(env_file: Path | None = None) -> Settings:
    """Build Settings from environment variables after loading .env.

    Unset variables keep their defaults; pydantic coerces the string values.
    """
    load_dotenv(env_file or ROOT / ".env")
    values = {
        field: os.environ[var]
        for var, field in _ENV_FIELDS.items()
        if os.getenv(var, "") != ""
    }
    return Settings.model_validate(values)
