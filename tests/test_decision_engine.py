"""
test_decision_engine.py — Tests for reply → action decisions

Pure functions: fake agent (SimpleNamespace) and hand-built ContactContext.

Called by: pytest
Depends on: engage.services.decision_engine
"""

from types import SimpleNamespace

import pytest

from engage.schemas.context import ContactContext, ContactProfile
from engage.services.decision_engine import (
    decide_actions,
    detect_document_type,
    extract_escalation_reason,
    extract_link_title,
    extract_product_query,
    extract_quote_items,
    extract_tags,
    extract_time_proposals,
    extract_urls,
    needs_human,
)

ALL_ACTIONS = [
    "send-link", "send-document", "create-quote", "schedule-meeting",
    "transfer-to-human", "create-note", "update-tags", "search-product",
]


def _agent(allowed=None):
    return SimpleNamespace(allowed_actions=ALL_ACTIONS if allowed is None else allowed)


def _context(tags=None, lifetime_value=0):
    return ContactContext(
        contact=ContactProfile(id=7, first_name="Maria", tags=tags or [], lifetime_value=lifetime_value)
    )


class TestExtractors:
    def test_urls_deduplicated_and_trimmed(self):
        text = "See https://a.com/x, then (https://b.com/y) and https://a.com/x."
        assert extract_urls(text) == ["https://a.com/x", "https://b.com/y"]

    def test_link_title_from_preceding_text(self):
        text = "Aquí está el catálogo https://x.com/c"
        assert extract_link_title(text, "https://x.com/c") == "Aquí está el catálogo"

    def test_link_title_default(self):
        assert extract_link_title("https://x.com/c", "https://x.com/c") == "Link"

    @pytest.mark.parametrize(
        "text, doc_type",
        [
            ("te envío el contrato en PDF", "pdf"),
            ("Attached is the contract", "contract"),
            ("Here is your invoice", "invoice"),
            ("Tu recibo", "receipt"),
            ("Adjunto el archivo", "document"),
        ],
    )
    def test_document_type(self, text, doc_type):
        assert detect_document_type(text) == doc_type

    def test_quote_items(self):
        items = extract_quote_items("Quote: 2 x Widget @ 15.50 and 1 x Cable @ $3")
        assert items == [
            {"description": "Widget", "quantity": 2, "price": 15.5},
            {"description": "Cable", "quantity": 1, "price": 3.0},
        ]

    def test_time_proposals(self):
        text = "¿Te parece el martes a las 10:30 am o el jueves por la tarde?"
        assert extract_time_proposals(text) == ["10:30 am", "tarde", "martes", "jueves"]

    def test_escalation_reason(self):
        assert extract_escalation_reason("Voy a transferir tu caso porque requiere aprobación.") == "requiere aprobación"
        assert extract_escalation_reason("Te transfiero ahora") == "Complex query"

    def test_product_query(self):
        assert extract_product_query("Let me check product: red shoes size 9.") == "red shoes size 9"
        assert extract_product_query("nothing here") is None

    def test_tags_skip_existing(self):
        ctx = _context(tags=["interested"])
        assert extract_tags("You seem interested in a quote", ctx) == ["quote-requested"]

    def test_needs_human_phrase(self):
        assert needs_human("Let me transfer you", _context()) is True

    def test_needs_human_vip(self):
        assert needs_human("Hola", _context(tags=["vip"], lifetime_value=150_000)) is True
        assert needs_human("Hola", _context(tags=["vip"], lifetime_value=100_000)) is False


class TestDecideActions:
    def test_promo_link(self):
        actions = decide_actions("Check our promo: https://x.com/p", _agent(), _context(), 42)
        assert len(actions) == 1
        assert actions[0].type == "send-link"
        assert actions[0].params["url"] == "https://x.com/p"
        assert actions[0].params["conversation_id"] == 42
        assert actions[0].priority == 5

    def test_disallowed_actions_never_fire(self):
        assert decide_actions("Check our promo: https://x.com/p", _agent([]), _context(), 42) == []

    def test_one_link_action_per_url(self):
        text = "Here's the link https://a.com and also https://b.com"
        actions = decide_actions(text, _agent(["send-link"]), _context(), 1)
        assert [a.params["url"] for a in actions] == ["https://a.com", "https://b.com"]

    def test_quote(self):
        actions = decide_actions("Your quote: 2 x Widget @ 15.50", _agent(), _context(), 3)
        types = [a.type for a in actions]
        assert types == ["create-quote", "update-tags"]
        quote = actions[0]
        assert quote.params["contact_id"] == 7
        assert quote.params["items"][0]["quantity"] == 2
        assert actions[1].params["tags"] == ["quote-requested"]

    def test_priority_order(self):
        text = "Voy a transferir tu caso porque el precio requiere aprobación. Podemos agendar una reunión."
        actions = decide_actions(text, _agent(), _context(), 9)
        assert [a.type for a in actions] == ["transfer-to-human", "create-quote", "schedule-meeting"]
        transfer = actions[0]
        assert transfer.params["urgency"] == "high"
        assert transfer.params["reason"] == "el precio requiere aprobación"

    def test_vip_escalates_without_phrase(self):
        actions = decide_actions("Hola Maria", _agent(["transfer-to-human"]), _context(["vip"], 500_000), 1)
        assert [a.type for a in actions] == ["transfer-to-human"]
        assert actions[0].params["reason"] == "Complex query"

    def test_important_note(self):
        text = "Es importante recordar su cumpleaños"
        actions = decide_actions(text, _agent(), _context(), 1)
        assert [a.type for a in actions] == ["create-note"]
        assert actions[0].params == {"contact_id": 7, "content": text, "is_important": True}

    def test_product_search(self):
        actions = decide_actions("Let me check product: red shoes", _agent(["search-product"]), _context(), 5)
        assert len(actions) == 1
        assert actions[0].params == {"conversation_id": 5, "query": "red shoes"}

    def test_product_without_query_skipped(self):
        assert decide_actions("That product is available", _agent(["search-product"]), _context(), 5) == []

    def test_agent_allowed_actions_as_json_text(self):
        agent = SimpleNamespace(allowed_actions='["send-link"]')
        actions = decide_actions("https://x.com", agent, _context(), 1)
        assert [a.type for a in actions] == ["send-link"]
