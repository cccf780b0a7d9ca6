"""Built-in action handlers.

One class per action type the decision engine can emit. Handlers share
the request's Session; each one commits its own writes and rolls back
its own failure.

Usage:
    executor = build_action_executor(db)
    outcomes = await executor.execute_all(actions)
"""

import logging
import time
from typing import Any

from sqlalchemy.orm import Session

from engage.errors import NotFoundError
from engage.models import Contact, ContactAgreement
from engage.services.actions.executor import ActionExecutor
from engage.services.catalog_service import search_products
from engage.services.conversation_service import append_message, get_conversation
from engage.services.identity_service import add_contact_note
from engage.utils.json_fields import load_str_list

log = logging.getLogger("engage.actions")

AI_AUTHOR = "ai-agent"


def _is_id(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_text(value) -> bool:
    return isinstance(value, str) and bool(value.strip())


class BaseHandler:
    name = ""
    required_ids: tuple[str, ...] = ()

    def __init__(self, db: Session):
        self.db = db

    def validate(self, params: dict) -> bool:
        return all(_is_id(params.get(key)) for key in self.required_ids)

    async def execute(self, params: dict) -> Any:
        try:
            return await self.perform(params)
        except Exception:
            self.db.rollback()
            raise

    async def perform(self, params: dict) -> Any:
        raise NotImplementedError

    def _send(self, conversation_id: int, content: str, content_type: str) -> int:
        conversation = get_conversation(conversation_id, self.db)
        msg = append_message(
            self.db,
            conversation,
            direction="outbound",
            role="assistant",
            content=content,
            content_type=content_type,
            generated_by_ai=True,
            action_triggered={"type": self.name},
        )
        self.db.commit()
        return msg.id

    def _contact(self, contact_id: int) -> Contact:
        contact = self.db.get(Contact, contact_id)
        if contact is None:
            raise NotFoundError("Contact", contact_id)
        return contact


class SendLinkHandler(BaseHandler):
    name = "send-link"
    required_ids = ("conversation_id",)

    def validate(self, params: dict) -> bool:
        url = params.get("url")
        return super().validate(params) and isinstance(url, str) and url.startswith("http")

    async def perform(self, params: dict) -> dict:
        title = params.get("title") or "Link"
        url = params["url"]
        message_id = self._send(params["conversation_id"], f"{title}: {url}", "link")
        return {"message_id": message_id, "url": url}


class SendDocumentHandler(BaseHandler):
    name = "send-document"
    required_ids = ("conversation_id",)

    async def perform(self, params: dict) -> dict:
        document_type = params.get("document_type") or "document"
        message_id = self._send(params["conversation_id"], f"Sending {document_type}", "document")
        return {"message_id": message_id, "document_type": document_type}


class CreateQuoteHandler(BaseHandler):
    """Records the quote as an active agreement on the contact."""
    name = "create-quote"
    required_ids = ("conversation_id", "contact_id")

    def validate(self, params: dict) -> bool:
        return super().validate(params) and isinstance(params.get("items", []), list)

    async def perform(self, params: dict) -> dict:
        contact = self._contact(params["contact_id"])
        items = params.get("items") or []
        total = round(sum(i.get("quantity", 0) * i.get("price", 0) for i in items), 2)
        quote_number = f"Q-{int(time.time() * 1000)}"
        agreement = ContactAgreement(
            organization_id=contact.organization_id,
            contact_id=contact.id,
            conversation_id=params["conversation_id"],
            type="quote",
            description=f"Quote {quote_number}",
            details={"quote_number": quote_number, "items": items, "total": total},
            status="active",
        )
        self.db.add(agreement)
        self.db.commit()
        log.info(f"Quote {quote_number} created for contact {contact.id}")
        return {"quote_number": quote_number, "agreement_id": agreement.id, "total": total}


class ScheduleMeetingHandler(BaseHandler):
    """Proposes times only; booking waits for the contact to confirm."""
    name = "schedule-meeting"
    required_ids = ("conversation_id", "contact_id")

    async def perform(self, params: dict) -> dict:
        return {
            "status": "pending_confirmation",
            "proposed_times": list(params.get("proposed_times") or []),
        }


class TransferToHumanHandler(BaseHandler):
    name = "transfer-to-human"
    required_ids = ("conversation_id",)

    async def perform(self, params: dict) -> dict:
        conversation = get_conversation(params["conversation_id"], self.db)
        reason = params.get("reason") or "Complex query"
        conversation.transferred_to_human = True
        conversation.transfer_reason = reason
        conversation.handled_by_ai = False
        conversation.status = "transferred"
        append_message(
            self.db,
            conversation,
            direction="outbound",
            role="system",
            content=f"Conversation transferred to a human agent: {reason}",
            action_triggered={"type": self.name},
        )
        self.db.commit()
        log.info(f"Conversation {conversation.id} transferred to human: {reason}")
        return {"transferred": True, "reason": reason}


class CreateNoteHandler(BaseHandler):
    name = "create-note"
    required_ids = ("contact_id",)

    def validate(self, params: dict) -> bool:
        return super().validate(params) and _is_text(params.get("content"))

    async def perform(self, params: dict) -> dict:
        note = add_contact_note(
            params["contact_id"],
            params["content"],
            self.db,
            note_type="important" if params.get("is_important") else "general",
            created_by=AI_AUTHOR,
        )
        return {"note_id": note.id}


class UpdateTagsHandler(BaseHandler):
    name = "update-tags"
    required_ids = ("contact_id",)

    def validate(self, params: dict) -> bool:
        tags = params.get("tags")
        return (
            super().validate(params)
            and isinstance(tags, list)
            and bool(tags)
            and all(_is_text(t) for t in tags)
        )

    async def perform(self, params: dict) -> dict:
        contact = self._contact(params["contact_id"])
        merged = load_str_list(contact.tags) + [t.strip().lower() for t in params["tags"]]
        contact.tags = list(dict.fromkeys(merged))
        self.db.commit()
        return {"tags": contact.tags}


class SearchProductHandler(BaseHandler):
    """Looks the query up in the conversation's organization catalog."""
    name = "search-product"
    required_ids = ("conversation_id",)

    def validate(self, params: dict) -> bool:
        return super().validate(params) and _is_text(params.get("query"))

    async def perform(self, params: dict) -> dict:
        query = params["query"].strip()
        conversation = get_conversation(params["conversation_id"], self.db)
        results = search_products(conversation.organization_id, query, self.db)
        return {"query": query, "results": results}


def register_default_handlers(executor: ActionExecutor, db: Session) -> ActionExecutor:
    for handler in (
        SendLinkHandler(db),
        SendDocumentHandler(db),
        CreateQuoteHandler(db),
        ScheduleMeetingHandler(db),
        TransferToHumanHandler(db),
        CreateNoteHandler(db),
        UpdateTagsHandler(db),
        SearchProductHandler(db),
    ):
        executor.register(handler)
    return executor


def build_action_executor(db: Session) -> ActionExecutor:
    return register_default_handlers(ActionExecutor(), db)
