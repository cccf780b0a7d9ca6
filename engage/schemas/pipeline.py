"""
schemas/pipeline.py — Actions and message-processing results

Business Rules:
- Higher action priority runs first in the returned ordering
- Every executed action yields exactly one outcome (success or failed)
- billing_ok is False when the reply was stored but could not be charged

Called by: services/decision_engine.py, services/actions/, services/engine.py
Depends on: pydantic
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class Action(BaseModel):
    type: str
    params: dict[str, Any] = Field(default_factory=dict)
    priority: int = 0


class ActionOutcome(BaseModel):
    action: Action
    status: Literal["success", "failed"]
    result: Any = None
    error: str | None = None


class ProcessMessageResult(BaseModel):
    response: str
    actions_triggered: list[ActionOutcome] = Field(default_factory=list)
    credits_used: int = 0
    model: str
    billing_ok: bool = True
