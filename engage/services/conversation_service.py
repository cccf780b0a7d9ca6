"""Conversation threads — appending messages and reading history.

Messages are append-only. Every append bumps the conversation's
message_count and last_message_at; nothing ever decrements them.

Usage:
    conv = start_conversation(org_id, contact.id, "whatsapp", db)
    record_inbound_message(NormalizedMessage(...), db)
    history = get_history(conv.id, db, limit=20)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from engage.errors import NotFoundError
from engage.models import Contact, Conversation, ConversationMessage

log = logging.getLogger("engage.conversations")


@dataclass
class NormalizedMessage:
    """An inbound message after a channel adapter has unpacked it."""
    conversation_id: int
    content: str
    channel: str
    content_type: str = "text"
    external_id: str | None = None
    media_url: str | None = None
    media_mime_type: str | None = None
    metadata: dict = field(default_factory=dict)


def append_message(
    db: Session,
    conversation: Conversation,
    *,
    direction: str,
    role: str,
    content: str,
    channel: str | None = None,
    **extra,
) -> ConversationMessage:
    """Add a message to the session and bump the thread counters. No commit."""
    now = datetime.now(timezone.utc)
    msg = ConversationMessage(
        conversation_id=conversation.id,
        direction=direction,
        role=role,
        content=content,
        channel=channel or conversation.channel,
        created_at=now,
        **extra,
    )
    db.add(msg)
    conversation.message_count = (conversation.message_count or 0) + 1
    conversation.last_message_at = now
    return msg


def get_conversation(conversation_id: int, db: Session) -> Conversation:
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation", conversation_id)
    return conversation


def start_conversation(organization_id: int, contact_id: int, channel: str, db: Session) -> Conversation:
    conversation = Conversation(
        organization_id=organization_id,
        contact_id=contact_id,
        channel=channel,
        status="active",
        handled_by_ai=True,
        transferred_to_human=False,
        message_count=0,
    )
    db.add(conversation)
    db.commit()
    log.info(f"Conversation {conversation.id} started on {channel} for contact {contact_id}")
    return conversation


def record_inbound_message(message: NormalizedMessage, db: Session) -> ConversationMessage:
    """Persist an inbound message and stamp the contact's last interaction."""
    conversation = get_conversation(message.conversation_id, db)
    msg = append_message(
        db,
        conversation,
        direction="inbound",
        role="user",
        content=message.content,
        channel=message.channel,
        content_type=message.content_type,
        external_id=message.external_id,
        media_url=message.media_url,
        media_mime_type=message.media_mime_type,
    )
    contact = db.get(Contact, conversation.contact_id)
    if contact is not None:
        contact.last_interaction_at = msg.created_at
        contact.last_interaction_channel = message.channel
    db.commit()
    return msg


def get_history(conversation_id: int, db: Session, limit: int = 20) -> list[ConversationMessage]:
    """The last `limit` non-system messages, oldest first."""
    newest = (
        db.query(ConversationMessage)
        .filter(
            ConversationMessage.conversation_id == conversation_id,
            ConversationMessage.role != "system",
        )
        .order_by(ConversationMessage.created_at.desc(), ConversationMessage.id.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(newest))


def reset_human_transfer(conversation_id: int, db: Session) -> Conversation:
    """Hand a transferred conversation back to the AI."""
    conversation = get_conversation(conversation_id, db)
    conversation.transferred_to_human = False
    conversation.transfer_reason = None
    conversation.handled_by_ai = True
    if conversation.status == "transferred":
        conversation.status = "active"
    db.commit()
    log.info(f"Conversation {conversation_id} returned to AI handling")
    return conversation
