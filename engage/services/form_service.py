"""Form intake — validate a submission and turn it into a contact.

Flow:
  1. Form must exist and be active
  2. Validate every visible field (nothing is written on failure)
  3. Pull name/email/phone out of the submitted data
  4. find_or_create_contact, then fold in near-certain duplicates
  5. Store the submission and bump the form's counter
  6. "start_conversation" forms open a web conversation with their agent
  7. POST the submission to the form's webhook (failures are logged only)

Usage:
    result = await process_form_submission(form.id, {"firstName": "Ana", "email": "ana@x.com"}, db)
"""

import logging
import re

import httpx
from pydantic import ValidationError
from sqlalchemy.orm import Session

from engage.config import settings
from engage.errors import InvalidInputError, NotFoundError
from engage.models import Form, FormSubmission
from engage.schemas.contacts import ContactIdentity, DuplicateProbe
from engage.schemas.forms import ConditionalLogic, FormField, FormSubmissionResult
from engage.services.agent_router import AgentRouter
from engage.services.conversation_service import start_conversation
from engage.services.identity_service import detect_duplicates, find_or_create_contact, merge_contacts
from engage.utils import safe_float
from engage.utils.json_fields import load_dict, load_list

log = logging.getLogger("engage.forms")

DEFAULT_THANK_YOU = "Thank you for your submission!"
FORM_CHANNEL = "web"

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^\+?[\d\s\-()]+$")

# Submitted key names we recognise, in lookup order
FIELD_MAPPINGS = {
    "first_name": ("firstName", "first_name", "name", "fullName", "full_name"),
    "last_name": ("lastName", "last_name", "surname"),
    "email": ("email", "emailAddress", "email_address", "mail"),
    "phone": ("phone", "phoneNumber", "phone_number", "mobile", "tel"),
}
_FULL_NAME_KEYS = {"name", "fullName", "full_name"}


# ═══════════════════════════════════════════════════════════════════════
#  VALIDATION
# ═══════════════════════════════════════════════════════════════════════


def validate_field(value, field: FormField) -> str | None:
    """Error message for this value, or None when it is valid."""
    if value is None or value == "" or value is False:
        return "This field is required" if field.required else None

    text = str(value)
    if field.type == "email" and not _EMAIL_RE.match(text):
        return "Invalid email address"
    if field.type == "phone" and not _PHONE_RE.match(text):
        return "Invalid phone number"
    if field.type == "number" and safe_float(value) is None:
        return "Must be a number"

    for rule in (field.validation or "").split(","):
        kind, _, param = rule.strip().partition(":")
        param = param.strip()
        if not param:
            continue
        if kind == "min" and param.isdigit() and len(text) < int(param):
            return f"Minimum length is {param} characters"
        if kind == "max" and param.isdigit() and len(text) > int(param):
            return f"Maximum length is {param} characters"
        if kind == "pattern":
            try:
                if not re.search(param, text):
                    return "Invalid format"
            except re.error:
                log.warning(f"Field {field.id}: bad validation pattern {param!r}")
    return None


def _is_visible(logic: ConditionalLogic, data: dict) -> bool:
    other = data.get(logic.when)
    if logic.operator == "equals":
        matched = other == logic.value
    elif logic.operator == "not_equals":
        matched = other != logic.value
    else:
        matched = str(logic.value) in str(other)
    return matched == logic.show


def validate_form_submission(data: dict, fields: list[FormField]) -> dict[str, str]:
    """Errors keyed by field id; empty when the submission is valid."""
    errors = {}
    for field in fields:
        if field.conditional_logic and not _is_visible(field.conditional_logic, data):
            continue
        error = validate_field(data.get(field.id), field)
        if error:
            errors[field.id] = error
    return errors


def parse_form_fields(raw) -> list[FormField]:
    fields = []
    for entry in load_list(raw):
        try:
            fields.append(FormField.model_validate(entry))
        except ValidationError as e:
            log.warning(f"Skipping malformed form field definition: {e.error_count()} errors")
    return fields


def extract_contact_info(data: dict) -> dict:
    """{"first_name", "last_name", "email", "phone"} from a submission."""
    info = {"first_name": "", "last_name": "", "email": None, "phone": None}

    for key in FIELD_MAPPINGS["first_name"]:
        value = data.get(key)
        if value:
            value = str(value).strip()
            if key in _FULL_NAME_KEYS:
                first, _, rest = value.partition(" ")
                info["first_name"], info["last_name"] = first, rest.strip()
            else:
                info["first_name"] = value
            break

    if not info["last_name"]:
        for key in FIELD_MAPPINGS["last_name"]:
            if data.get(key):
                info["last_name"] = str(data[key]).strip()
                break

    for target in ("email", "phone"):
        for key in FIELD_MAPPINGS[target]:
            if data.get(key):
                info[target] = str(data[key]).strip()
                break
    return info


# ═══════════════════════════════════════════════════════════════════════
#  SUBMISSION
# ═══════════════════════════════════════════════════════════════════════


async def process_form_submission(
    form_id: int,
    data: dict,
    db: Session,
    metadata: dict | None = None,
    router: AgentRouter | None = None,
) -> FormSubmissionResult:
    metadata = metadata or {}
    form = db.get(Form, form_id)
    if form is None or not form.active:
        raise NotFoundError("Form", form_id)

    errors = validate_form_submission(data, parse_form_fields(form.fields))
    if errors:
        raise InvalidInputError("Form validation failed", errors)

    info = extract_contact_info(data)
    if not info["first_name"]:
        raise InvalidInputError("First name is required", {"first_name": "This field is required"})

    contact = find_or_create_contact(
        form.organization_id,
        ContactIdentity(
            first_name=info["first_name"],
            last_name=info["last_name"],
            email=info["email"],
            phone=info["phone"],
            source_type="form",
            source_identifier=str(form.id),
            source_metadata={"form_name": form.name, **metadata} if metadata else {"form_name": form.name},
        ),
        db,
    )

    _merge_obvious_duplicates(form.organization_id, contact.id, info, db)

    submission = FormSubmission(
        form_id=form.id,
        contact_id=contact.id,
        data=data,
        ip_address=metadata.get("ip"),
        user_agent=metadata.get("user_agent"),
        referrer=metadata.get("referrer"),
        utm_params=metadata.get("utm_params"),
    )
    db.add(submission)
    form.submissions = (form.submissions or 0) + 1
    db.commit()
    log.info(f"Form {form.id}: submission {submission.id} from contact {contact.id}")

    conversation_id = None
    if form.post_submit_action == "start_conversation" and form.assign_to_agent_id:
        conversation = start_conversation(form.organization_id, contact.id, FORM_CHANNEL, db)
        (router or AgentRouter(db)).assign_to_conversation(conversation.id, form.assign_to_agent_id, contact.id)
        conversation_id = conversation.id

    if form.webhook_url:
        await fire_form_webhook(form, submission, data)

    config = load_dict(form.post_submit_config)
    return FormSubmissionResult(
        success=True,
        submission_id=submission.id,
        contact_id=contact.id,
        conversation_id=conversation_id,
        message=config.get("message") or DEFAULT_THANK_YOU,
    )


def _merge_obvious_duplicates(organization_id: int, contact_id: int, info: dict, db: Session) -> None:
    """Fold near-certain duplicates into the resolved contact; never fails intake."""
    probe = DuplicateProbe(
        email=info["email"],
        phone=info["phone"],
        first_name=info["first_name"],
        last_name=info["last_name"],
    )
    candidates = detect_duplicates(organization_id, probe, db, exclude_ids=[contact_id])
    dup_ids = [c.contact.id for c in candidates if c.confidence >= settings.form_merge_min_confidence]
    if not dup_ids:
        return
    try:
        db.commit()
        merge_contacts(contact_id, dup_ids, db)
    except Exception as e:
        log.warning(f"Could not merge duplicates {dup_ids} into contact {contact_id}: {e}")


async def fire_form_webhook(form: Form, submission: FormSubmission, data: dict) -> bool:
    payload = {
        "form_id": form.id,
        "form_name": form.name,
        "submission_id": submission.id,
        "contact_id": submission.contact_id,
        "data": data,
        "submitted_at": submission.submitted_at.isoformat() if submission.submitted_at else None,
    }
    try:
        async with httpx.AsyncClient(timeout=settings.webhook_timeout_seconds) as client:
            resp = await client.post(form.webhook_url, json=payload)
        if resp.status_code >= 400:
            log.warning(f"Form {form.id} webhook returned {resp.status_code}")
            return False
        return True
    except httpx.HTTPError as e:
        log.warning(f"Form {form.id} webhook failed: {e}")
        return False
