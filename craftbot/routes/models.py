"""Pydantic request/response models for API endpoints."""

from pydantic import BaseModel


class ValidateCommandBody(BaseModel):
    character_id: str
    command: str


class CheckConnectionBody(BaseModel):
    provider_url: str | None = None  # defaults to the configured backend
    api_key: str = ""
    provider_format: str | None = None
