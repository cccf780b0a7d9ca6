"""
schemas/contacts.py — Identity inputs for contact resolution

Business Rules:
- First name is required and non-empty
- Blank email/phone are treated as absent
- Source type is required (channel name, "form", "import", ...)

Called by: services/identity_service.py, services/form_service.py
Depends on: pydantic
"""

from __future__ import annotations

from pydantic import BaseModel, field_validator


class ContactIdentity(BaseModel):
    first_name: str
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    source_type: str
    source_identifier: str | None = None
    source_metadata: dict | None = None

    @field_validator("first_name")
    @classmethod
    def first_name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("First name is required")
        return v

    @field_validator("last_name")
    @classmethod
    def strip_last_name(cls, v: str) -> str:
        return v.strip()

    @field_validator("email", "phone", "source_identifier")
    @classmethod
    def blank_is_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


class DuplicateProbe(BaseModel):
    email: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None
