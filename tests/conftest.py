"""
conftest.py — Shared Test Fixtures for Engage

Provides an in-memory SQLite database and factory fixtures for the core
models (Organization, Agent, Contact, Conversation).

Business Rules:
- All tests run against an isolated in-memory DB
- Each test function gets a fresh schema (create_all / drop_all)

Called by: all test files via pytest autodiscovery
Depends on: engage.models (Base)
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from engage.models import Agent, Base, Contact, Conversation, ConversationMessage, Organization

# ── In-memory SQLite engine ──────────────────────────────────────────

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default — turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def test_org(db_session: Session) -> Organization:
    org = Organization(name="Acme Retail", slug="acme-retail")
    db_session.add(org)
    db_session.commit()
    db_session.refresh(org)
    return org


@pytest.fixture()
def other_org(db_session: Session) -> Organization:
    org = Organization(name="Globex", slug="globex")
    db_session.add(org)
    db_session.commit()
    db_session.refresh(org)
    return org


@pytest.fixture()
def test_agent(db_session: Session, test_org: Organization) -> Agent:
    """An active sales agent on WhatsApp and web, allowed every action."""
    agent = Agent(
        organization_id=test_org.id,
        name="Sofia",
        type="sales",
        system_prompt="You are Sofia, a friendly sales assistant.",
        temperature=70,
        max_tokens=800,
        model="claude-test",
        objectives=["Qualify the lead", "Offer a demo"],
        allowed_actions=[
            "send-link", "send-document", "create-quote", "schedule-meeting",
            "transfer-to-human", "create-note", "update-tags", "search-product",
        ],
        assign_to_channels=["whatsapp", "web"],
        assign_to_campaigns=[],
        active=True,
    )
    db_session.add(agent)
    db_session.commit()
    db_session.refresh(agent)
    return agent


@pytest.fixture()
def test_contact(db_session: Session, test_org: Organization) -> Contact:
    contact = Contact(
        organization_id=test_org.id,
        first_name="Maria",
        last_name="Lopez",
        email="maria@example.com",
        phone="+52 55 1234 5678",
        status="active",
        tags=["lead"],
        custom_fields={},
        merged_contact_ids=[],
        interaction_count=1,
        last_interaction_at=datetime.now(timezone.utc),
    )
    db_session.add(contact)
    db_session.commit()
    db_session.refresh(contact)
    return contact


@pytest.fixture()
def test_conversation(db_session: Session, test_org: Organization, test_contact: Contact) -> Conversation:
    conv = Conversation(
        organization_id=test_org.id,
        contact_id=test_contact.id,
        channel="whatsapp",
        status="active",
        message_count=0,
    )
    db_session.add(conv)
    db_session.commit()
    db_session.refresh(conv)
    return conv


@pytest.fixture()
def add_message(db_session: Session):
    """Insert a message row directly (bypasses conversation counters)."""

    def _add(conversation: Conversation, content: str, direction: str = "inbound",
             role: str | None = None, created_at: datetime | None = None) -> ConversationMessage:
        msg = ConversationMessage(
            conversation_id=conversation.id,
            direction=direction,
            role=role or ("user" if direction == "inbound" else "assistant"),
            content=content,
            channel=conversation.channel,
            created_at=created_at or datetime.now(timezone.utc),
        )
        db_session.add(msg)
        db_session.commit()
        return msg

    return _add
