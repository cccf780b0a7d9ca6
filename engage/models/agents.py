"""AI agent definitions and their conversation assignments."""

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, utcnow


class Agent(Base):
    __tablename__ = "agents"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    type = Column(String(20), nullable=False, default="custom")  # sales, support, scheduler, qualifier, custom

    system_prompt = Column(Text, nullable=False, default="")
    temperature = Column(Integer, nullable=False, default=70)  # 0-100
    max_tokens = Column(Integer, nullable=False, default=2000)
    model = Column(String(100))

    objectives = Column(JSON, default=list)
    escalation_rules = Column(JSON)
    allowed_actions = Column(JSON, default=list)
    knowledge_base = Column(JSON)
    assign_to_channels = Column(JSON, default=list)
    assign_to_campaigns = Column(JSON, default=list)

    voice_provider = Column(String(20), default="none")  # elevenlabs, vapi, retell, none
    voice_provider_id = Column(String(255))
    voice_provider_config = Column(JSON)

    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    assignments = relationship("AgentAssignment", back_populates="agent")

    __table_args__ = (
        Index("ix_agents_org_active", "organization_id", "active"),
    )


class AgentAssignment(Base):
    """Open while unassigned_at is NULL. At most one open row per conversation."""

    __tablename__ = "agent_assignments"
    id = Column(Integer, primary_key=True)
    agent_id = Column(Integer, ForeignKey("agents.id"), nullable=False)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False)
    assigned_at = Column(UTCDateTime, nullable=False, default=utcnow)
    unassigned_at = Column(UTCDateTime)
    reason_for_unassignment = Column(Text)
    messages_handled = Column(Integer, nullable=False, default=0)
    credits_used = Column(Integer, nullable=False, default=0)
    satisfaction = Column(Integer)  # 1-5

    agent = relationship("Agent", back_populates="assignments")
    conversation = relationship("Conversation")

    __table_args__ = (
        Index("ix_assignments_conversation_open", "conversation_id", "unassigned_at"),
        Index("ix_assignments_agent_open", "agent_id", "unassigned_at"),
    )
