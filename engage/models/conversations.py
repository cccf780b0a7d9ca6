"""Conversation threads, their messages, and per-channel configuration."""

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, utcnow


class Conversation(Base):
    """A channel-scoped thread owned by one contact."""

    __tablename__ = "conversations"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False)
    channel = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="active")  # active, closed, transferred

    handled_by_ai = Column(Boolean, default=True)
    transferred_to_human = Column(Boolean, nullable=False, default=False)
    transfer_reason = Column(Text)

    message_count = Column(Integer, nullable=False, default=0)
    last_message_at = Column(UTCDateTime)
    summary = Column(Text)
    sentiment = Column(String(20))  # positive, neutral, negative

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
    closed_at = Column(UTCDateTime)

    contact = relationship("Contact", foreign_keys=[contact_id])
    messages = relationship(
        "ConversationMessage",
        back_populates="conversation",
        order_by="ConversationMessage.id",
    )

    __table_args__ = (
        Index("ix_conversations_org_status", "organization_id", "status"),
        Index("ix_conversations_contact", "contact_id"),
    )


class ConversationMessage(Base):
    """Append-only. Ordered by created_at, ties broken by id."""

    __tablename__ = "conversation_messages"
    id = Column(Integer, primary_key=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False)
    direction = Column(String(10), nullable=False)  # inbound, outbound
    role = Column(String(20), nullable=False)  # user, assistant, system, human_agent
    content = Column(Text, nullable=False)
    content_type = Column(String(20), nullable=False, default="text")
    channel = Column(String(20))
    external_id = Column(String(255))
    media_url = Column(String(1000))
    media_mime_type = Column(String(100))

    generated_by_ai = Column(Boolean, default=False)
    model = Column(String(100))
    credits_used = Column(Integer)
    action_triggered = Column(JSON)

    delivery_status = Column(String(20))  # pending, sent, delivered, failed
    error_message = Column(Text)
    created_at = Column(UTCDateTime, default=utcnow)

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )


class ChannelConfig(Base):
    """Per-organization channel credentials and switches."""

    __tablename__ = "channel_configs"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    channel = Column(String(20), nullable=False)
    config = Column(JSON, default=dict)
    active = Column(Boolean, default=True)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_channel_configs_org_channel", "organization_id", "channel", unique=True),
    )
