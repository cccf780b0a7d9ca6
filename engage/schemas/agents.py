"""
schemas/agents.py — Agent configuration payloads and routing criteria

Business Rules:
- Escalation rules accept camelCase (legacy imports) or snake_case keys
- Malformed escalation rules read as "no rules" (never escalate)
- Routing criteria always carry a channel

Called by: services/agent_router.py, services/engine.py
Depends on: pydantic
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from engage.utils.json_fields import load_dict

log = logging.getLogger("engage.schemas.agents")


class EscalationRules(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    max_messages: int | None = Field(default=None, alias="maxMessages")
    escalate_on_negative_sentiment: bool = Field(default=False, alias="escalateOnNegativeSentiment")
    check_sentiment: bool = Field(default=False, alias="checkSentiment")
    escalation_keywords: list[str] = Field(default_factory=list, alias="escalationKeywords")
    complexity_threshold: float | None = Field(default=None, alias="complexityThreshold")

    @field_validator("escalation_keywords")
    @classmethod
    def drop_blank_keywords(cls, v: list[str]) -> list[str]:
        return [k.strip() for k in v if k.strip()]


def parse_escalation_rules(raw) -> EscalationRules | None:
    """Read an agent's stored escalation rules; None when absent or malformed."""
    if raw is None:
        return None
    data = load_dict(raw)
    if not data:
        return None
    try:
        return EscalationRules.model_validate(data)
    except ValidationError as e:
        log.warning(f"Ignoring malformed escalation rules: {e.error_count()} errors")
        return None


class AgentSelectionCriteria(BaseModel):
    channel: str
    contact_id: int | None = None
    intent: str | None = None
    campaign: str | None = None

    @field_validator("channel")
    @classmethod
    def channel_not_blank(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("Channel is required")
        return v
