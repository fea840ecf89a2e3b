"""Pydantic request models for API endpoints."""

from pydantic import BaseModel


class StartSessionBody(BaseModel):
    session_id: str | None = None


class TurnBody(BaseModel):
    message: str


class DocumentBody(BaseModel):
    name: str
    text: str
