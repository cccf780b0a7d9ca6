"""
test_engine.py — Tests for the conversation pipeline and escalation checks

The LLM is replaced by a fake GenerationCapability; everything else
(routing, context, actions, ledger) runs against the in-memory DB.

Called by: pytest
Depends on: conftest fixtures, engage.services.engine
"""

import pytest

from engage.errors import CapabilityError, ConflictError, NotFoundError, ProcessingError
from engage.models import (
    Agent,
    AgentAssignment,
    CreditDeductionFailure,
    CreditTransaction,
    ConversationMessage,
    Product,
)
from engage.services.billing_service import CreditLedger
from engage.services.context_builder import build_context
from engage.services.conversation_service import NormalizedMessage, record_inbound_message
from engage.services.engine import ConversationEngine, build_system_prompt
from engage.services.generation import GenerationResult


class FakeGenerator:
    def __init__(self, text="Hola, ¿en qué te ayudo?", cost=150, error=None):
        self.text = text
        self.cost = cost
        self.error = error
        self.calls = []

    async def generate(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return GenerationResult(text=self.text, cost_units=self.cost, model="claude-test")


def _inbound(db, conversation, content="Hola, quiero información"):
    record_inbound_message(
        NormalizedMessage(conversation_id=conversation.id, content=content, channel=conversation.channel), db
    )


async def _process(engine, conversation, contact, content="Hola, quiero información"):
    return await engine.process_message(
        conversation.id, content, conversation.organization_id, contact.id, conversation.channel
    )


# ── process_message ──────────────────────────────────────────────────


class TestProcessMessage:
    @pytest.mark.asyncio
    async def test_happy_path(self, db_session, test_org, test_agent, test_contact, test_conversation):
        CreditLedger(db_session).grant(test_org.id, 1000)
        _inbound(db_session, test_conversation)
        generator = FakeGenerator(text="Check our promo: https://x.com/p")
        engine = ConversationEngine(db_session, generator)

        result = await _process(engine, test_conversation, test_contact)

        assert result.response == "Check our promo: https://x.com/p"
        assert result.credits_used == 150
        assert result.model == "claude-test"
        assert result.billing_ok is True
        assert [o.action.type for o in result.actions_triggered] == ["send-link"]
        assert result.actions_triggered[0].status == "success"

        call = generator.calls[0]
        assert "## Your Objectives:" in call["system_prompt"]
        assert call["temperature"] == 70
        assert call["max_tokens"] == 800
        assert call["model"] == "claude-test"
        assert [m.content for m in call["history"]] == ["Hola, quiero información"]

        reply = (
            db_session.query(ConversationMessage)
            .filter_by(conversation_id=test_conversation.id, generated_by_ai=True, content_type="text")
            .one()
        )
        assert reply.content == result.response
        assert reply.credits_used == 150
        assert reply.action_triggered[0]["status"] == "success"

        db_session.refresh(test_conversation)
        # inbound + link + reply
        assert test_conversation.message_count == 3
        assert test_conversation.sentiment == "neutral"

        assert CreditLedger(db_session).balance(test_org.id) == 850
        usage = db_session.query(CreditTransaction).filter_by(type="usage").one()
        assert usage.amount == -150
        assert usage.details["message_id"] == reply.id

        assignment = db_session.query(AgentAssignment).one()
        assert assignment.agent_id == test_agent.id
        assert assignment.messages_handled == 1
        assert assignment.credits_used == 150

    @pytest.mark.asyncio
    async def test_reuses_open_assignment(self, db_session, test_org, test_agent, test_contact, test_conversation):
        CreditLedger(db_session).grant(test_org.id, 1000)
        _inbound(db_session, test_conversation)
        engine = ConversationEngine(db_session, FakeGenerator())
        await _process(engine, test_conversation, test_contact)
        _inbound(db_session, test_conversation, "¿Y el envío?")
        await _process(engine, test_conversation, test_contact, "¿Y el envío?")

        assignment = db_session.query(AgentAssignment).one()
        assert assignment.messages_handled == 2

    @pytest.mark.asyncio
    async def test_ledger_failure_keeps_reply(self, db_session, test_org, test_agent, test_contact,
                                              test_conversation):
        _inbound(db_session, test_conversation)
        engine = ConversationEngine(db_session, FakeGenerator())

        result = await _process(engine, test_conversation, test_contact)

        assert result.billing_ok is False
        assert result.response == "Hola, ¿en qué te ayudo?"
        stored = db_session.query(ConversationMessage).filter_by(generated_by_ai=True).count()
        assert stored == 1
        failure = db_session.query(CreditDeductionFailure).one()
        assert failure.error_code == "NO_BALANCE"
        assert failure.amount == 150
        assert failure.reference_type == "conversation_message"
        assert failure.resolved is False

    @pytest.mark.asyncio
    async def test_insufficient_credits(self, db_session, test_org, test_agent, test_contact, test_conversation):
        CreditLedger(db_session).grant(test_org.id, 10)
        _inbound(db_session, test_conversation)
        result = await _process(ConversationEngine(db_session, FakeGenerator()), test_conversation, test_contact)
        assert result.billing_ok is False
        assert db_session.query(CreditDeductionFailure).one().error_code == "INSUFFICIENT_CREDITS"
        assert CreditLedger(db_session).balance(test_org.id) == 10

    @pytest.mark.asyncio
    async def test_generation_failure_stores_nothing(self, db_session, test_agent, test_contact,
                                                     test_conversation):
        _inbound(db_session, test_conversation)
        engine = ConversationEngine(db_session, FakeGenerator(error=CapabilityError("timeout")))

        with pytest.raises(ProcessingError) as exc_info:
            await _process(engine, test_conversation, test_contact)

        assert exc_info.value.step == "generate"
        assert isinstance(exc_info.value.cause, CapabilityError)
        assert db_session.query(ConversationMessage).filter_by(direction="outbound").count() == 0

    @pytest.mark.asyncio
    async def test_transferred_conversation_refused(self, db_session, test_agent, test_contact,
                                                    test_conversation):
        test_conversation.transferred_to_human = True
        db_session.commit()
        generator = FakeGenerator()

        with pytest.raises(ProcessingError) as exc_info:
            await _process(ConversationEngine(db_session, generator), test_conversation, test_contact)

        assert exc_info.value.step == "resolve_agent"
        assert isinstance(exc_info.value.cause, ConflictError)
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_no_agent_available(self, db_session, test_contact, test_conversation):
        with pytest.raises(ProcessingError) as exc_info:
            await _process(ConversationEngine(db_session, FakeGenerator()), test_conversation, test_contact)
        assert exc_info.value.step == "resolve_agent"
        assert isinstance(exc_info.value.cause, NotFoundError)

    @pytest.mark.asyncio
    async def test_failed_action_does_not_fail_run(self, db_session, test_org, test_agent, test_contact,
                                                   test_conversation):
        CreditLedger(db_session).grant(test_org.id, 1000)
        _inbound(db_session, test_conversation)
        engine = ConversationEngine(db_session, FakeGenerator(text="Let me check product: red shoes"))
        engine.executor._handlers.pop("search-product")

        result = await _process(engine, test_conversation, test_contact)

        assert result.actions_triggered[0].status == "failed"
        assert result.billing_ok is True

    @pytest.mark.asyncio
    async def test_product_search_reads_catalog(self, db_session, test_org, test_agent, test_contact,
                                                test_conversation):
        CreditLedger(db_session).grant(test_org.id, 1000)
        db_session.add(Product(organization_id=test_org.id, sku="RS-9", name="Red Shoes", price=4999,
                               stock_quantity=2))
        db_session.commit()
        _inbound(db_session, test_conversation, "¿Tienen zapatos rojos?")
        engine = ConversationEngine(db_session, FakeGenerator(text="Let me check product: red shoes"))

        result = await _process(engine, test_conversation, test_contact, "¿Tienen zapatos rojos?")

        outcome = result.actions_triggered[0]
        assert outcome.action.type == "search-product"
        assert outcome.status == "success"
        assert [r["sku"] for r in outcome.result["results"]] == ["RS-9"]

    @pytest.mark.asyncio
    async def test_transfer_action_hands_off(self, db_session, test_org, test_agent, test_contact,
                                             test_conversation):
        CreditLedger(db_session).grant(test_org.id, 1000)
        _inbound(db_session, test_conversation)
        engine = ConversationEngine(db_session, FakeGenerator(text="Voy a transferir tu caso porque es urgente."))

        result = await _process(engine, test_conversation, test_contact)

        assert result.actions_triggered[0].action.type == "transfer-to-human"
        db_session.refresh(test_conversation)
        assert test_conversation.transferred_to_human is True
        with pytest.raises(ProcessingError):
            await _process(engine, test_conversation, test_contact)


# ── System prompt ────────────────────────────────────────────────────


class TestSystemPrompt:
    def test_sections(self, db_session, test_org, test_contact):
        agent = Agent(
            organization_id=test_org.id, name="Kb", system_prompt="Eres Sofia.",
            objectives=["Close the sale"], knowledge_base={"hours": "9-18"},
        )
        prompt = build_system_prompt(agent, build_context(test_contact.id, None, db_session))
        assert prompt.startswith("Eres Sofia.")
        assert "## Your Objectives:\n- Close the sale" in prompt
        assert '"hours": "9-18"' in prompt
        assert "- Name: Maria Lopez" in prompt
        assert "- Email: maria@example.com" in prompt
        assert "## Active Agreements:" not in prompt


# ── Escalation ───────────────────────────────────────────────────────


class TestCheckEscalation:
    def test_human_request_without_rules(self, db_session, test_agent, test_conversation):
        _inbound(db_session, test_conversation, "Quiero hablar con una persona, por favor")
        engine = ConversationEngine(db_session, FakeGenerator())
        assert engine.check_escalation(test_conversation.id, test_agent.id) is True

    def test_no_rules_no_request(self, db_session, test_agent, test_conversation):
        _inbound(db_session, test_conversation, "Hola")
        assert ConversationEngine(db_session, FakeGenerator()).check_escalation(
            test_conversation.id, test_agent.id
        ) is False

    def test_only_recent_messages_checked(self, db_session, test_agent, test_conversation, add_message):
        _inbound(db_session, test_conversation, "I want a real person")
        for text in ("Claro, te ayudo", "¿Algo más?", "Aquí estoy"):
            add_message(test_conversation, text, direction="outbound")
        assert ConversationEngine(db_session, FakeGenerator()).check_escalation(
            test_conversation.id, test_agent.id
        ) is False

    def test_request_behind_inbound_chatter_expires(self, db_session, test_agent, test_conversation):
        _inbound(db_session, test_conversation, "I want a real person")
        for text in ("ok", "thanks", "fine"):
            _inbound(db_session, test_conversation, text)
        assert ConversationEngine(db_session, FakeGenerator()).check_escalation(
            test_conversation.id, test_agent.id
        ) is False

    def test_request_inside_window_with_replies(self, db_session, test_agent, test_conversation, add_message):
        add_message(test_conversation, "Hola, ¿en qué te ayudo?", direction="outbound")
        _inbound(db_session, test_conversation, "I want a real person")
        add_message(test_conversation, "Un momento, por favor", direction="outbound")
        assert ConversationEngine(db_session, FakeGenerator()).check_escalation(
            test_conversation.id, test_agent.id
        ) is True

    def test_message_limit(self, db_session, test_agent, test_conversation):
        test_agent.escalation_rules = {"maxMessages": 2}
        test_conversation.message_count = 3
        db_session.commit()
        engine = ConversationEngine(db_session, FakeGenerator())
        assert engine.check_escalation(test_conversation.id, test_agent.id) is True
        test_conversation.message_count = 2
        db_session.commit()
        assert engine.check_escalation(test_conversation.id, test_agent.id) is False

    def test_negative_sentiment(self, db_session, test_agent, test_conversation):
        test_agent.escalation_rules = {"checkSentiment": True}
        test_conversation.sentiment = "negative"
        db_session.commit()
        assert ConversationEngine(db_session, FakeGenerator()).check_escalation(
            test_conversation.id, test_agent.id
        ) is True

    def test_complexity_scorer(self, db_session, test_agent, test_conversation):
        test_agent.escalation_rules = {"complexityThreshold": 0.5}
        db_session.commit()
        _inbound(db_session, test_conversation, "multi-currency invoice reconciliation")
        engine = ConversationEngine(db_session, FakeGenerator(), complexity_scorer=lambda texts: 0.9)
        assert engine.check_escalation(test_conversation.id, test_agent.id) is True
        no_scorer = ConversationEngine(db_session, FakeGenerator())
        assert no_scorer.check_escalation(test_conversation.id, test_agent.id) is False

    def test_missing_rows(self, db_session, test_agent):
        assert ConversationEngine(db_session, FakeGenerator()).check_escalation(999, test_agent.id) is False
