"""Contact models — the unified person record and its satellites."""

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, utcnow


class Contact(Base):
    """One person per organization, merged across channels and sources."""

    __tablename__ = "contacts"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False, default="")
    email = Column(String(255))
    phone = Column(String(50))
    company = Column(String(255))

    heat_score = Column(Integer, nullable=False, default=0)  # 0-100
    tags = Column(JSON, default=list)
    custom_fields = Column(JSON, default=dict)

    channel_preference = Column(String(20))  # whatsapp, sms, email, ...
    timezone = Column(String(64))
    language = Column(String(10), default="es")

    last_interaction_at = Column(UTCDateTime)
    last_interaction_channel = Column(String(20))
    interaction_count = Column(Integer, nullable=False, default=0)
    lifetime_value = Column(Integer, nullable=False, default=0)  # minor currency units
    average_response_time = Column(Integer)  # seconds

    status = Column(String(20), nullable=False, default="active")  # active, inactive, blocked, merged
    merged_with_id = Column(Integer, ForeignKey("contacts.id"))
    merged_contact_ids = Column(JSON, default=list)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    sources = relationship("ContactSource", back_populates="contact")
    notes = relationship("ContactNote", back_populates="contact")
    agreements = relationship("ContactAgreement", back_populates="contact")
    merged_with = relationship("Contact", remote_side=[id])

    __table_args__ = (
        Index("ix_contacts_org_email", "organization_id", "email"),
        Index("ix_contacts_org_phone", "organization_id", "phone"),
        Index("ix_contacts_org_status", "organization_id", "status"),
        Index("ix_contacts_org_heat", "organization_id", "heat_score"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()


class ContactSource(Base):
    """Where we've seen this contact (channel, form, import...)."""

    __tablename__ = "contact_sources"
    id = Column(Integer, primary_key=True)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False)
    source_type = Column(String(50), nullable=False)
    source_identifier = Column(String(255))
    source_metadata = Column(JSON)
    first_seen_at = Column(UTCDateTime, default=utcnow)
    last_seen_at = Column(UTCDateTime, default=utcnow)
    interaction_count = Column(Integer, nullable=False, default=1)

    contact = relationship("Contact", back_populates="sources")

    __table_args__ = (
        Index("ix_contact_sources_lookup", "contact_id", "source_type", "source_identifier"),
    )


class ContactAgreement(Base):
    __tablename__ = "contact_agreements"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False)
    conversation_id = Column(Integer, ForeignKey("conversations.id"))
    type = Column(String(50), nullable=False)  # quote, meeting, follow_up, ...
    description = Column(Text, nullable=False)
    details = Column(JSON)
    status = Column(String(20), nullable=False, default="active")  # active, completed, cancelled
    created_at = Column(UTCDateTime, default=utcnow)
    completed_at = Column(UTCDateTime)

    contact = relationship("Contact", back_populates="agreements")

    __table_args__ = (
        Index("ix_agreements_contact_status", "contact_id", "status"),
    )


class ContactNote(Base):
    __tablename__ = "contact_notes"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False)
    content = Column(Text, nullable=False)
    type = Column(String(20), nullable=False, default="general")  # general, important, follow_up
    created_by = Column(String(255))  # user name or "ai-agent"
    created_at = Column(UTCDateTime, default=utcnow)

    contact = relationship("Contact", back_populates="notes")

    __table_args__ = (
        Index("ix_contact_notes_contact_created", "contact_id", "created_at"),
    )
