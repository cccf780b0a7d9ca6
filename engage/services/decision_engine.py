"""Decision Engine — turn an AI reply into follow-up actions.

Pure function over the reply text, the agent config and the contact
context: no database, no network. Each action type fires only when the
agent allows it AND the reply shows the matching intent.

Priorities (higher runs first):
  transfer-to-human 10 · create-quote 9 · schedule-meeting 8 ·
  send-document 7 · search-product 6 · send-link 5 · create-note 3 ·
  update-tags 2
"""

import re

from engage.schemas.context import ContactContext
from engage.schemas.pipeline import Action
from engage.utils.json_fields import load_str_list

# ── Intent phrase lists (es + en) ────────────────────────────────────

INTENT_PATTERNS = {
    "link": ("enviar enlace", "aquí está el link", "puedes ver en", "send link", "here's the link"),
    "document": ("enviar documento", "adjunto", "archivo", "send document", "attachment", "file"),
    "quote": ("cotización", "presupuesto", "precio", "costo", "quote", "estimate", "price"),
    "meeting": ("reunión", "cita", "llamada", "agendar", "meeting", "appointment", "schedule"),
    "escalate": ("transferir", "hablar con", "agente humano", "transfer", "speak with", "human agent"),
    "product": ("producto", "inventario", "stock", "disponible", "product", "inventory", "available"),
    "important": ("importante", "nota", "recordar", "important", "note", "remember"),
}

ESCALATION_PHRASES = (
    "transferir",
    "conectar con",
    "hablar con un agente",
    "necesita asistencia especializada",
    "transfer",
    "connect with",
    "speak to an agent",
    "needs specialized assistance",
)

VIP_TAG = "vip"
VIP_LIFETIME_VALUE = 100_000

_URL_RE = re.compile(r"https?://[^\s]+")
_URL_TRAILING = ".,;:!?)]}'\""
_TITLE_RE = re.compile(r"([^.!?]+)$")
_REASON_RE = re.compile(r"(?:porque|debido a|razón:?)\s*([^.!?]+)", re.IGNORECASE)
_TIME_PATTERNS = (
    re.compile(r"\d{1,2}:\d{2}\s*(?:am|pm)?", re.IGNORECASE),
    re.compile(r"mañana|tarde|noche", re.IGNORECASE),
    re.compile(r"lunes|martes|miércoles|jueves|viernes|sábado|domingo", re.IGNORECASE),
)
_PRODUCT_QUERY_PATTERNS = (
    re.compile(r"(?:producto|product):\s*([^.!?]+)", re.IGNORECASE),
    re.compile(r"(?:buscar|search):\s*([^.!?]+)", re.IGNORECASE),
)
# "2 x Widget @ 15.50"
_QUOTE_ITEM_RE = re.compile(
    r"(\d+)\s*x\s+([^@\n]+?)\s*@\s*\$?(\d+(?:\.\d{1,2})?)", re.IGNORECASE
)


# ── Extractors ───────────────────────────────────────────────────────


def detect_intents(text: str) -> set[str]:
    lowered = text.lower()
    return {
        intent for intent, phrases in INTENT_PATTERNS.items()
        if any(p in lowered for p in phrases)
    }


def extract_urls(text: str) -> list[str]:
    """Distinct URLs in order of appearance, trailing punctuation trimmed."""
    urls = []
    for raw in _URL_RE.findall(text):
        url = raw.rstrip(_URL_TRAILING)
        if url and url not in urls:
            urls.append(url)
    return urls


def extract_link_title(text: str, url: str) -> str:
    """The sentence fragment just before the URL, else "Link"."""
    idx = text.find(url)
    if idx > 0:
        m = _TITLE_RE.search(text[max(0, idx - 50):idx])
        if m and m.group(1).strip():
            return m.group(1).strip()
    return "Link"


def detect_document_type(text: str) -> str:
    lowered = text.lower()
    if "pdf" in lowered:
        return "pdf"
    if "contrato" in lowered or "contract" in lowered:
        return "contract"
    if "factura" in lowered or "invoice" in lowered:
        return "invoice"
    if "recibo" in lowered or "receipt" in lowered:
        return "receipt"
    return "document"


def extract_quote_items(text: str) -> list[dict]:
    """Line items written as "<qty> x <description> @ <unit price>"."""
    return [
        {"description": desc.strip(), "quantity": int(qty), "price": float(price)}
        for qty, desc, price in _QUOTE_ITEM_RE.findall(text)
    ]


def extract_time_proposals(text: str) -> list[str]:
    proposals = []
    for pattern in _TIME_PATTERNS:
        proposals.extend(m.strip() for m in pattern.findall(text))
    return proposals


def needs_human(text: str, context: ContactContext) -> bool:
    lowered = text.lower()
    if any(p in lowered for p in ESCALATION_PHRASES):
        return True
    contact = context.contact
    return VIP_TAG in contact.tags and contact.lifetime_value > VIP_LIFETIME_VALUE


def extract_escalation_reason(text: str) -> str:
    m = _REASON_RE.search(text)
    if m and m.group(1).strip():
        return m.group(1).strip()
    return "Complex query"


def extract_tags(text: str, context: ContactContext) -> list[str]:
    """Tags the reply implies that the contact doesn't carry yet."""
    lowered = text.lower()
    tags = []
    if "interesado" in lowered or "interested" in lowered:
        tags.append("interested")
    if "cotización" in lowered or "quote" in lowered:
        tags.append("quote-requested")
    existing = set(context.contact.tags)
    return [t for t in tags if t not in existing]


def extract_product_query(text: str) -> str | None:
    for pattern in _PRODUCT_QUERY_PATTERNS:
        m = pattern.search(text)
        if m and m.group(1).strip():
            return m.group(1).strip()
    return None


# ── Decision ─────────────────────────────────────────────────────────


def decide_actions(response_text: str, agent, context: ContactContext, conversation_id: int) -> list[Action]:
    """Actions implied by the reply, highest priority first (stable on ties)."""
    allowed = set(load_str_list(agent.allowed_actions))
    intents = detect_intents(response_text)
    contact_id = context.contact.id
    actions: list[Action] = []

    if "send-link" in allowed and ("link" in intents or "http" in response_text):
        for url in extract_urls(response_text):
            actions.append(Action(
                type="send-link",
                params={
                    "conversation_id": conversation_id,
                    "url": url,
                    "title": extract_link_title(response_text, url),
                },
                priority=5,
            ))

    if "send-document" in allowed and intents & {"document", "file"}:
        actions.append(Action(
            type="send-document",
            params={
                "conversation_id": conversation_id,
                "document_type": detect_document_type(response_text),
            },
            priority=7,
        ))

    if "create-quote" in allowed and intents & {"quote", "price", "cost"}:
        actions.append(Action(
            type="create-quote",
            params={
                "conversation_id": conversation_id,
                "contact_id": contact_id,
                "items": extract_quote_items(response_text),
            },
            priority=9,
        ))

    if "schedule-meeting" in allowed and intents & {"meeting", "appointment", "call"}:
        actions.append(Action(
            type="schedule-meeting",
            params={
                "conversation_id": conversation_id,
                "contact_id": contact_id,
                "proposed_times": extract_time_proposals(response_text),
            },
            priority=8,
        ))

    if "transfer-to-human" in allowed and needs_human(response_text, context):
        actions.append(Action(
            type="transfer-to-human",
            params={
                "conversation_id": conversation_id,
                "reason": extract_escalation_reason(response_text),
                "urgency": "high",
            },
            priority=10,
        ))

    if "create-note" in allowed and "important" in intents:
        actions.append(Action(
            type="create-note",
            params={"contact_id": contact_id, "content": response_text, "is_important": True},
            priority=3,
        ))

    if "update-tags" in allowed:
        new_tags = extract_tags(response_text, context)
        if new_tags:
            actions.append(Action(
                type="update-tags",
                params={"contact_id": contact_id, "tags": new_tags},
                priority=2,
            ))

    if "search-product" in allowed and intents & {"product", "stock"}:
        query = extract_product_query(response_text)
        if query:
            actions.append(Action(
                type="search-product",
                params={"conversation_id": conversation_id, "query": query},
                priority=6,
            ))

    return sorted(actions, key=lambda a: a.priority, reverse=True)
