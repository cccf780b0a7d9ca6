"""
schemas/forms.py — Form field definitions and submission results

Business Rules:
- Field ids are required; unknown field types validate as free text
- Validation rules are "min:N", "max:N" or "pattern:REGEX"
- Conditional logic skips a field whose visibility condition says hidden

Called by: services/form_service.py
Depends on: pydantic
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ConditionalLogic(BaseModel):
    """Validate the field only when `show` matches the condition's outcome."""
    model_config = ConfigDict(extra="ignore")

    show: bool = True
    when: str
    operator: Literal["equals", "not_equals", "contains"]
    value: Any = None


class FormField(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    type: str = "text"
    label: str = ""
    required: bool = False
    validation: str | None = None
    conditional_logic: ConditionalLogic | None = Field(default=None, alias="conditionalLogic")


class FormSubmissionResult(BaseModel):
    success: bool
    submission_id: int
    contact_id: int
    conversation_id: int | None = None
    message: str = "Thank you for your submission!"
