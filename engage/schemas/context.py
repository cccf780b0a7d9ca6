"""
schemas/context.py — Structured conversation context handed to the LLM

Called by: services/context_builder.py, services/engine.py, services/decision_engine.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class ContactProfile(BaseModel):
    id: int
    first_name: str
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    heat_score: int = 0
    tags: list[str] = Field(default_factory=list)
    channel_preference: str | None = None
    timezone: str | None = None
    language: str | None = None
    last_interaction_at: datetime | None = None
    last_interaction_channel: str | None = None
    interaction_count: int = 0
    lifetime_value: int = 0
    custom_fields: dict = Field(default_factory=dict)


class AgreementView(BaseModel):
    id: int
    type: str
    description: str
    details: dict | None = None
    status: str
    created_at: datetime | None = None


class NoteView(BaseModel):
    id: int
    content: str
    type: str = "general"
    created_by: str | None = None
    created_at: datetime | None = None


class ConversationSummary(BaseModel):
    message_count: int
    first_message_at: datetime | None = None
    last_message_at: datetime | None = None
    topics: list[str] = Field(default_factory=list)
    # None only when the conversation has no messages yet
    sentiment: Literal["positive", "neutral", "negative"] | None = None


class ContactContext(BaseModel):
    contact: ContactProfile
    active_agreements: list[AgreementView] = Field(default_factory=list)
    recent_notes: list[NoteView] = Field(default_factory=list)
    conversation_summary: ConversationSummary | None = None


class MinimalContext(BaseModel):
    first_name: str
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    heat_score: int = 0
    tags: list[str] = Field(default_factory=list)
