"""Tenant root and credit accounting."""

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, utcnow


class Organization(Base):
    """Tenant. Every contact, agent, form and conversation belongs to one."""

    __tablename__ = "organizations"
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)

    credit_balance = relationship("CreditBalance", uselist=False, back_populates="organization")


class CreditBalance(Base):
    __tablename__ = "credit_balances"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), unique=True, nullable=False)
    balance = Column(Integer, nullable=False, default=0)
    lifetime_used = Column(Integer, nullable=False, default=0)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    organization = relationship("Organization", back_populates="credit_balance")


class CreditTransaction(Base):
    """Immutable ledger row. Amount is negative for usage, positive for grants."""

    __tablename__ = "credit_transactions"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    type = Column(String(20), nullable=False)  # usage, grant, refund
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    description = Column(Text)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON)
    created_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (
        Index("ix_credit_tx_org_created", "organization_id", "created_at"),
    )


class CreditDeductionFailure(Base):
    """Usage that was served but could not be charged. Reconciled out of band."""

    __tablename__ = "credit_deduction_failures"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    error_code = Column(String(50), nullable=False)
    error_message = Column(Text)
    model = Column(String(100))
    reference_type = Column(String(50))  # conversation_message
    reference_id = Column(Integer)
    resolved = Column(Boolean, default=False)
    resolved_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (
        Index("ix_deduction_failures_unresolved", "organization_id", "resolved"),
    )
