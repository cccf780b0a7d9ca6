"""Channel delivery — send outbound messages through per-channel senders.

Wire adapters (WhatsApp, SMS, email, ...) live outside the core; they
register a ChannelSender here. The manager picks the recipient address
for the channel, calls the sender, and stores the message with its
delivery status. A failed send is stored as "failed" and then raised as
CapabilityError; retrying is the caller's call.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.orm import Session

from engage.errors import CapabilityError, ConflictError, InvalidInputError, NotFoundError
from engage.models import ChannelConfig, Contact, ContactSource, ConversationMessage
from engage.services.conversation_service import append_message, get_conversation

log = logging.getLogger("engage.channels")

CHANNELS = ("whatsapp", "instagram", "facebook", "email", "sms", "calls", "web")
_PHONE_CHANNELS = {"whatsapp", "sms", "calls"}


@dataclass
class DeliveryReceipt:
    status: str  # sent, delivered, queued
    external_id: str | None = None


class ChannelSender(Protocol):
    async def send(
        self,
        recipient: str,
        content: str,
        *,
        content_type: str = "text",
        media_url: str | None = None,
        config: dict | None = None,
    ) -> DeliveryReceipt: ...


class ChannelManager:
    def __init__(self, db: Session):
        self.db = db
        self._senders: dict[str, ChannelSender] = {}

    def register_sender(self, channel: str, sender: ChannelSender) -> None:
        if channel not in CHANNELS:
            raise InvalidInputError(f"Unknown channel: {channel}")
        self._senders[channel] = sender

    def get_channel_config(self, organization_id: int, channel: str) -> ChannelConfig | None:
        return (
            self.db.query(ChannelConfig)
            .filter(
                ChannelConfig.organization_id == organization_id,
                ChannelConfig.channel == channel,
                ChannelConfig.active.is_(True),
            )
            .first()
        )

    def resolve_recipient(self, contact: Contact, channel: str) -> str:
        """Address for the contact on this channel."""
        if channel == "email":
            recipient = contact.email
        elif channel in _PHONE_CHANNELS:
            recipient = contact.phone
        else:
            source = (
                self.db.query(ContactSource)
                .filter(
                    ContactSource.contact_id == contact.id,
                    ContactSource.source_type == channel,
                    ContactSource.source_identifier.isnot(None),
                )
                .order_by(ContactSource.last_seen_at.desc(), ContactSource.id.desc())
                .first()
            )
            recipient = source.source_identifier if source else None
        if not recipient:
            raise InvalidInputError(f"Contact {contact.id} has no address for {channel}")
        return recipient

    async def send_message(
        self,
        conversation_id: int,
        content: str,
        *,
        content_type: str = "text",
        media_url: str | None = None,
        role: str = "assistant",
    ) -> ConversationMessage:
        conversation = get_conversation(conversation_id, self.db)
        channel = conversation.channel
        sender = self._senders.get(channel)
        if sender is None:
            raise ConflictError(f"No sender registered for channel: {channel}")
        config = self.get_channel_config(conversation.organization_id, channel)
        if config is None:
            raise ConflictError(f"Channel {channel} is not configured for organization {conversation.organization_id}")
        contact = self.db.get(Contact, conversation.contact_id)
        if contact is None:
            raise NotFoundError("Contact", conversation.contact_id)
        recipient = self.resolve_recipient(contact, channel)

        try:
            receipt = await sender.send(
                recipient, content,
                content_type=content_type,
                media_url=media_url,
                config=config.config or {},
            )
        except Exception as e:
            append_message(
                self.db, conversation,
                direction="outbound", role=role, content=content,
                content_type=content_type, media_url=media_url,
                delivery_status="failed", error_message=str(e)[:1000],
            )
            self.db.commit()
            log.warning(f"Delivery on {channel} failed for conversation {conversation_id}: {e}")
            raise CapabilityError(f"Delivery on {channel} failed: {e}") from e

        msg = append_message(
            self.db, conversation,
            direction="outbound", role=role, content=content,
            content_type=content_type, media_url=media_url,
            external_id=receipt.external_id, delivery_status=receipt.status,
        )
        self.db.commit()
        return msg
