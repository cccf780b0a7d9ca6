"""Lead capture forms, their submissions, and voice call records."""

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, utcnow


class Form(Base):
    __tablename__ = "forms"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    slug = Column(String(100), nullable=False)
    fields = Column(JSON, default=list)
    webhook_url = Column(String(1000))

    views = Column(Integer, nullable=False, default=0)
    submissions = Column(Integer, nullable=False, default=0)

    post_submit_action = Column(String(30), default="show_message")  # show_message, redirect, start_conversation
    post_submit_config = Column(JSON)
    assign_to_agent_id = Column(Integer, ForeignKey("agents.id"))

    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_forms_org_slug", "organization_id", "slug", unique=True),
    )


class FormSubmission(Base):
    __tablename__ = "form_submissions"
    id = Column(Integer, primary_key=True)
    form_id = Column(Integer, ForeignKey("forms.id"), nullable=False)
    contact_id = Column(Integer, ForeignKey("contacts.id"))
    data = Column(JSON, nullable=False)
    ip_address = Column(String(64))
    user_agent = Column(Text)
    referrer = Column(String(1000))
    utm_params = Column(JSON)
    submitted_at = Column(UTCDateTime, default=utcnow)

    form = relationship("Form")


class VoiceCall(Base):
    __tablename__ = "voice_calls"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False)
    conversation_id = Column(Integer, ForeignKey("conversations.id"))
    agent_id = Column(Integer, ForeignKey("agents.id"))
    direction = Column(String(10), nullable=False)  # inbound, outbound
    from_number = Column(String(50))
    to_number = Column(String(50))
    status = Column(String(20), default="queued")
    duration_seconds = Column(Integer)
    provider = Column(String(20))
    provider_call_id = Column(String(255))
    recording_url = Column(String(1000))
    transcript = Column(Text)
    created_at = Column(UTCDateTime, default=utcnow)
