"""
test_context_builder.py — Tests for contact context assembly

Covers: extract_topics, analyze_sentiment, summarize_conversation,
build_context (agreements, notes, summary), build_minimal_context.

Called by: pytest
Depends on: conftest fixtures, engage.services.context_builder
"""

from datetime import datetime, timedelta, timezone

import pytest

from engage.errors import NotFoundError
from engage.models import ContactAgreement, ContactNote
from engage.services.context_builder import (
    analyze_sentiment,
    build_context,
    build_minimal_context,
    extract_topics,
    summarize_conversation,
)


class TestTopics:
    def test_finds_keywords_in_order(self):
        assert extract_topics(["What is the price and shipping cost?"]) == ["price", "cost", "shipping"]

    def test_spanish(self):
        assert extract_topics(["¿Cuál es el precio del envío?"]) == ["precio", "envío"]

    def test_capped_at_five(self):
        text = "price cost shipping delivery payment warranty discount"
        assert len(extract_topics([text])) == 5

    def test_no_duplicates_across_messages(self):
        assert extract_topics(["price?", "the PRICE again"]) == ["price"]

    def test_empty(self):
        assert extract_topics([]) == []


class TestSentiment:
    def test_positive(self):
        assert analyze_sentiment(["gracias, excelente servicio"]) == "positive"

    def test_negative(self):
        assert analyze_sentiment(["I am angry, this is a bad problem"]) == "negative"

    def test_neutral_when_balanced(self):
        assert analyze_sentiment(["thanks, but there is an issue"]) == "neutral"

    def test_neutral_when_empty(self):
        assert analyze_sentiment(["hello"]) == "neutral"

    def test_needs_more_than_double(self):
        # 2 positive vs 1 negative is not decisive
        assert analyze_sentiment(["thanks", "great", "problem"]) == "neutral"


class TestSummarize:
    def test_empty_conversation(self, db_session, test_conversation):
        summary = summarize_conversation(test_conversation.id, db_session)
        assert summary.message_count == 0
        assert summary.sentiment is None
        assert summary.topics == []

    def test_summary(self, db_session, test_conversation, add_message):
        t0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        add_message(test_conversation, "Hola, ¿precio?", created_at=t0)
        add_message(test_conversation, "Son $10, gracias", "outbound", created_at=t0 + timedelta(minutes=1))
        add_message(test_conversation, "Perfecto, ¿y el envío?", created_at=t0 + timedelta(minutes=2))

        summary = summarize_conversation(test_conversation.id, db_session)

        assert summary.message_count == 3
        assert summary.first_message_at == t0
        assert summary.last_message_at == t0 + timedelta(minutes=2)
        # newest message scanned first
        assert summary.topics == ["envío", "precio"]
        assert summary.sentiment == "positive"


class TestBuildContext:
    def test_full_context(self, db_session, test_org, test_contact, test_conversation, add_message):
        t0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        db_session.add_all([
            ContactAgreement(
                organization_id=test_org.id, contact_id=test_contact.id, type="quote",
                description="Old quote", status="active", created_at=t0,
            ),
            ContactAgreement(
                organization_id=test_org.id, contact_id=test_contact.id, type="meeting",
                description="Demo", status="active", created_at=t0 + timedelta(days=1),
            ),
            ContactAgreement(
                organization_id=test_org.id, contact_id=test_contact.id, type="quote",
                description="Closed", status="completed", created_at=t0 + timedelta(days=2),
            ),
        ])
        for i in range(12):
            db_session.add(ContactNote(
                organization_id=test_org.id, contact_id=test_contact.id,
                content=f"note {i}", created_at=t0 + timedelta(minutes=i),
            ))
        db_session.commit()
        add_message(test_conversation, "hola")

        ctx = build_context(test_contact.id, test_conversation.id, db_session)

        assert ctx.contact.id == test_contact.id
        assert ctx.contact.tags == ["lead"]
        assert [a.description for a in ctx.active_agreements] == ["Demo", "Old quote"]
        assert len(ctx.recent_notes) == 10
        assert ctx.recent_notes[0].content == "note 11"
        assert ctx.conversation_summary.message_count == 1

    def test_without_conversation(self, db_session, test_contact):
        ctx = build_context(test_contact.id, None, db_session)
        assert ctx.conversation_summary is None
        assert ctx.active_agreements == []

    def test_missing_contact(self, db_session):
        with pytest.raises(NotFoundError):
            build_context(404, None, db_session)

    def test_minimal(self, db_session, test_contact):
        minimal = build_minimal_context(test_contact.id, db_session)
        assert minimal.first_name == "Maria"
        assert minimal.email == "maria@example.com"
        assert minimal.tags == ["lead"]
