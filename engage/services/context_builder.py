"""Context Builder — what the agent should know before replying.

Read-only. Gathers the contact profile, active agreements, recent notes
and a keyword-level summary of the conversation. Topic and sentiment
detection are plain substring matches against bilingual (es/en) word
lists; no NLP.
"""

import logging

from sqlalchemy.orm import Session

from engage.errors import NotFoundError
from engage.models import Contact, ContactAgreement, ContactNote, ConversationMessage
from engage.schemas.context import (
    AgreementView,
    ContactContext,
    ContactProfile,
    ConversationSummary,
    MinimalContext,
    NoteView,
)
from engage.utils.json_fields import load_dict, load_str_list

log = logging.getLogger("engage.context")

RECENT_NOTES_LIMIT = 10
MAX_TOPICS = 5

TOPIC_KEYWORDS = (
    # Spanish
    "precio", "costo", "envío", "entrega", "pago", "garantía", "devolución",
    "descuento", "promoción", "producto", "servicio", "soporte", "técnico",
    "instalación", "configuración",
    # English
    "price", "cost", "shipping", "delivery", "payment", "warranty", "return",
    "discount", "promotion", "product", "service", "support", "technical",
    "installation", "setup",
)

POSITIVE_WORDS = (
    "gracias", "excelente", "perfecto", "genial", "bueno", "bien",
    "happy", "thanks", "excellent", "perfect", "great", "good",
)

NEGATIVE_WORDS = (
    "problema", "mal", "error", "molesto", "frustrado", "enojado",
    "issue", "bad", "annoying", "frustrated", "angry", "problem",
)


def extract_topics(texts) -> list[str]:
    """Up to five distinct topic keywords, in the order they are found."""
    topics = []
    for text in texts:
        lowered = (text or "").lower()
        for keyword in TOPIC_KEYWORDS:
            if keyword in lowered and keyword not in topics:
                topics.append(keyword)
                if len(topics) >= MAX_TOPICS:
                    return topics
    return topics


def analyze_sentiment(texts) -> str:
    """positive / negative when one side has more than twice the hits, else neutral.

    Each keyword counts once per message it appears in.
    """
    positive = negative = 0
    for text in texts:
        lowered = (text or "").lower()
        positive += sum(1 for w in POSITIVE_WORDS if w in lowered)
        negative += sum(1 for w in NEGATIVE_WORDS if w in lowered)
    if positive > negative * 2:
        return "positive"
    if negative > positive * 2:
        return "negative"
    return "neutral"


def _profile(contact: Contact) -> ContactProfile:
    return ContactProfile(
        id=contact.id,
        first_name=contact.first_name,
        last_name=contact.last_name or "",
        email=contact.email,
        phone=contact.phone,
        company=contact.company,
        heat_score=contact.heat_score or 0,
        tags=load_str_list(contact.tags),
        channel_preference=contact.channel_preference,
        timezone=contact.timezone,
        language=contact.language,
        last_interaction_at=contact.last_interaction_at,
        last_interaction_channel=contact.last_interaction_channel,
        interaction_count=contact.interaction_count or 0,
        lifetime_value=contact.lifetime_value or 0,
        custom_fields=load_dict(contact.custom_fields),
    )


def summarize_conversation(conversation_id: int, db: Session) -> ConversationSummary:
    messages = (
        db.query(ConversationMessage)
        .filter(ConversationMessage.conversation_id == conversation_id)
        .order_by(ConversationMessage.created_at, ConversationMessage.id)
        .all()
    )
    if not messages:
        return ConversationSummary(message_count=0)

    # Newest first so recent topics win the five slots
    newest_first = [m.content for m in reversed(messages)]
    return ConversationSummary(
        message_count=len(messages),
        first_message_at=messages[0].created_at,
        last_message_at=messages[-1].created_at,
        topics=extract_topics(newest_first),
        sentiment=analyze_sentiment(newest_first),
    )


def build_context(contact_id: int, conversation_id: int | None, db: Session) -> ContactContext:
    contact = db.get(Contact, contact_id)
    if contact is None:
        raise NotFoundError("Contact", contact_id)

    agreements = (
        db.query(ContactAgreement)
        .filter(ContactAgreement.contact_id == contact_id, ContactAgreement.status == "active")
        .order_by(ContactAgreement.created_at.desc(), ContactAgreement.id.desc())
        .all()
    )
    notes = (
        db.query(ContactNote)
        .filter(ContactNote.contact_id == contact_id)
        .order_by(ContactNote.created_at.desc(), ContactNote.id.desc())
        .limit(RECENT_NOTES_LIMIT)
        .all()
    )

    return ContactContext(
        contact=_profile(contact),
        active_agreements=[
            AgreementView(
                id=a.id,
                type=a.type,
                description=a.description,
                details=load_dict(a.details) or None,
                status=a.status,
                created_at=a.created_at,
            )
            for a in agreements
        ],
        recent_notes=[
            NoteView(id=n.id, content=n.content, type=n.type, created_by=n.created_by, created_at=n.created_at)
            for n in notes
        ],
        conversation_summary=summarize_conversation(conversation_id, db) if conversation_id else None,
    )


def build_minimal_context(contact_id: int, db: Session) -> MinimalContext:
    contact = db.get(Contact, contact_id)
    if contact is None:
        raise NotFoundError("Contact", contact_id)
    return MinimalContext(
        first_name=contact.first_name,
        last_name=contact.last_name or "",
        email=contact.email,
        phone=contact.phone,
        heat_score=contact.heat_score or 0,
        tags=load_str_list(contact.tags),
    )
