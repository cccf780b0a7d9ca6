"""Identity Resolver — one contact per person per organization.

Every channel, form and import funnels through find_or_create_contact so
the same person reached on WhatsApp and by email ends up as one record.
Look-alikes that slip through are found by detect_duplicates and folded
together by merge_contacts.

Duplicate confidence:
  1. Exact email          → 1.00
  2. Normalized phone     → 0.95
  3. Fuzzy first+last     → name similarity × 0.70
       +0.15 if the email local parts match
       +0.10 if the last 4 phone digits match
       (boosted scores cap at 0.95)

Merge rules:
  - Primary's own values win; blanks are filled from duplicates in order
  - Tags: lower-cased union
  - Custom fields: duplicates applied in order, primary last (primary wins)
  - Lifetime value and interaction counts are summed
  - Every row pointing at a duplicate is re-pointed at the primary
  - Duplicates are marked "merged", never deleted

Usage:
    contact = find_or_create_contact(org_id, ContactIdentity(...), db)
    dupes = detect_duplicates(org_id, DuplicateProbe(email=...), db)
    merge_contacts(contact.id, [d.contact.id for d in dupes], db)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import String, cast, func, or_
from sqlalchemy.orm import Session

from engage.config import settings
from engage.errors import ConflictError, EngageError, InvalidInputError, NotFoundError
from engage.models import (
    AgentAssignment,
    Contact,
    ContactAgreement,
    ContactNote,
    ContactSource,
    Conversation,
    FormSubmission,
    VoiceCall,
)
from engage.schemas.contacts import ContactIdentity, DuplicateProbe
from engage.services.heat_scorer import recalculate_heat_score
from engage.utils.json_fields import load_dict, load_list, load_str_list
from engage.utils.similarity import normalize_phone, similarity

log = logging.getLogger("engage.identity")

# ── Duplicate confidence ──
EMAIL_MATCH_CONFIDENCE = 1.0
PHONE_MATCH_CONFIDENCE = 0.95
NAME_WEIGHT = 0.7
EMAIL_LOCAL_PART_BOOST = 0.15
PHONE_SUFFIX_BOOST = 0.10
FUZZY_CAP = 0.95

# Blank primary fields are filled from duplicates, first non-empty wins
_FILL_FIELDS = ("phone", "email", "company", "timezone", "channel_preference")

# Rows that follow a contact when it is merged away
_REPOINT_COLUMNS = (
    (Conversation, Conversation.contact_id),
    (ContactAgreement, ContactAgreement.contact_id),
    (ContactNote, ContactNote.contact_id),
    (ContactSource, ContactSource.contact_id),
    (AgentAssignment, AgentAssignment.contact_id),
    (FormSubmission, FormSubmission.contact_id),
    (VoiceCall, VoiceCall.contact_id),
    (Contact, Contact.merged_with_id),
)


@dataclass
class DuplicateCandidate:
    contact: Contact
    confidence: float
    reason: str


# ═══════════════════════════════════════════════════════════════════════
#  FIND OR CREATE
# ═══════════════════════════════════════════════════════════════════════


def find_or_create_contact(organization_id: int, identity: ContactIdentity, db: Session) -> Contact:
    """Resolve an inbound identity to a single active contact.

    Looks up by exact email, then exact phone, among the organization's
    active contacts. A hit bumps interaction counters and upserts the
    source row; a miss creates a new contact. One transaction either way.
    """
    now = datetime.now(timezone.utc)
    try:
        contact = _lookup_active(organization_id, identity, db)
        if contact:
            contact.interaction_count = (contact.interaction_count or 0) + 1
            contact.last_interaction_at = now
            _upsert_source(contact, identity, db, now)
        else:
            contact = Contact(
                organization_id=organization_id,
                first_name=identity.first_name,
                last_name=identity.last_name,
                email=identity.email,
                phone=identity.phone,
                status="active",
                tags=[],
                custom_fields={},
                merged_contact_ids=[],
                interaction_count=1,
                last_interaction_at=now,
            )
            db.add(contact)
            db.flush()
            db.add(ContactSource(
                contact_id=contact.id,
                source_type=identity.source_type,
                source_identifier=identity.source_identifier,
                source_metadata=identity.source_metadata,
                first_seen_at=now,
                last_seen_at=now,
                interaction_count=1,
            ))
            log.info(f"Created contact {contact.id} for org {organization_id} via {identity.source_type}")
        db.commit()
    except Exception:
        db.rollback()
        raise
    return contact


def _lookup_active(organization_id: int, identity: ContactIdentity, db: Session) -> Contact | None:
    base = db.query(Contact).filter(
        Contact.organization_id == organization_id,
        Contact.status == "active",
    )
    if identity.email:
        hit = base.filter(Contact.email == identity.email).order_by(Contact.id).first()
        if hit:
            return hit
    if identity.phone:
        return base.filter(Contact.phone == identity.phone).order_by(Contact.id).first()
    return None


def _upsert_source(contact: Contact, identity: ContactIdentity, db: Session, now: datetime) -> ContactSource:
    """Touch the most specific matching source row, or add one."""
    q = db.query(ContactSource).filter(
        ContactSource.contact_id == contact.id,
        ContactSource.source_type == identity.source_type,
    )
    if identity.source_identifier is not None:
        q = q.filter(ContactSource.source_identifier == identity.source_identifier)
    rows = q.order_by(ContactSource.id).all()

    # Without an identifier, prefer the row that has none either
    source = next((r for r in rows if r.source_identifier is None), rows[0] if rows else None)
    if source:
        source.last_seen_at = now
        source.interaction_count = (source.interaction_count or 0) + 1
        if identity.source_metadata:
            source.source_metadata = {**load_dict(source.source_metadata), **identity.source_metadata}
        return source

    source = ContactSource(
        contact_id=contact.id,
        source_type=identity.source_type,
        source_identifier=identity.source_identifier,
        source_metadata=identity.source_metadata,
        first_seen_at=now,
        last_seen_at=now,
        interaction_count=1,
    )
    db.add(source)
    return source


# ═══════════════════════════════════════════════════════════════════════
#  DUPLICATE DETECTION
# ═══════════════════════════════════════════════════════════════════════


def detect_duplicates(
    organization_id: int,
    probe: DuplicateProbe,
    db: Session,
    threshold: float | None = None,
    exclude_ids=(),
) -> list[DuplicateCandidate]:
    """Find active contacts that look like the probe, best match first.

    Email and phone matches are always reported; fuzzy name matches only
    when the average name similarity reaches the threshold. A contact
    reported by an earlier pass is not re-scored by a later one.
    """
    if threshold is None:
        threshold = settings.duplicate_threshold

    base = db.query(Contact).filter(
        Contact.organization_id == organization_id,
        Contact.status == "active",
    )
    if exclude_ids:
        base = base.filter(Contact.id.notin_(list(exclude_ids)))

    found: dict[int, DuplicateCandidate] = {}

    # ── 1. Exact email ──
    if probe.email:
        for c in base.filter(Contact.email == probe.email).order_by(Contact.id).all():
            found.setdefault(c.id, DuplicateCandidate(c, EMAIL_MATCH_CONFIDENCE, "Exact email match"))

    # ── 2. Normalized phone ──
    probe_phone = normalize_phone(probe.phone)
    if probe_phone:
        for c in base.filter(Contact.phone.isnot(None)).order_by(Contact.id).all():
            if c.id not in found and normalize_phone(c.phone) == probe_phone:
                found[c.id] = DuplicateCandidate(c, PHONE_MATCH_CONFIDENCE, "Exact phone match (normalized)")

    # ── 3. Fuzzy name ──
    if probe.first_name and probe.last_name:
        probe_local = _email_local_part(probe.email)
        for c in base.order_by(Contact.id).all():
            if c.id in found:
                continue
            name_sim = (
                similarity(probe.first_name, c.first_name)
                + similarity(probe.last_name, c.last_name or "")
            ) / 2
            if name_sim < threshold:
                continue
            confidence = name_sim * NAME_WEIGHT
            if probe_local and probe_local == _email_local_part(c.email):
                confidence = min(confidence + EMAIL_LOCAL_PART_BOOST, FUZZY_CAP)
            other_phone = normalize_phone(c.phone)
            if len(probe_phone) >= 4 and len(other_phone) >= 4 and probe_phone[-4:] == other_phone[-4:]:
                confidence = min(confidence + PHONE_SUFFIX_BOOST, FUZZY_CAP)
            pct = int(name_sim * 100 + 0.5)
            found[c.id] = DuplicateCandidate(c, confidence, f"Fuzzy name match ({pct}% similar)")

    # sorted() is stable, so equal confidences keep discovery order
    return sorted(found.values(), key=lambda d: d.confidence, reverse=True)


def _email_local_part(email: str | None) -> str:
    if not email or "@" not in email:
        return ""
    return email.split("@", 1)[0].lower()


# ═══════════════════════════════════════════════════════════════════════
#  MERGE
# ═══════════════════════════════════════════════════════════════════════


def merge_contacts(primary_id: int, duplicate_ids: list[int], db: Session) -> Contact:
    """Fold duplicates into the primary contact, all or nothing.

    Raises NotFoundError if any contact is missing, ConflictError if the
    merge would loop, cross organizations, or touch a non-active contact.
    The primary's heat score is recalculated after commit.
    """
    duplicate_ids = list(dict.fromkeys(duplicate_ids))
    if not duplicate_ids:
        raise InvalidInputError("At least one duplicate contact is required")
    if primary_id in duplicate_ids:
        raise ConflictError(f"Contact {primary_id} cannot be merged into itself")

    _use_merge_isolation(db)
    try:
        primary = db.get(Contact, primary_id)
        if primary is None:
            raise NotFoundError("Contact", primary_id)
        by_id = {c.id: c for c in db.query(Contact).filter(Contact.id.in_(duplicate_ids)).all()}
        missing = [i for i in duplicate_ids if i not in by_id]
        if missing:
            raise NotFoundError("Contact", missing[0])
        duplicates = [by_id[i] for i in duplicate_ids]
        _check_mergeable(primary, duplicates)

        _absorb(primary, duplicates)
        for model, column in _REPOINT_COLUMNS:
            db.query(model).filter(column.in_(duplicate_ids)).update(
                {column: primary_id}, synchronize_session="fetch"
            )
        for dup in duplicates:
            dup.status = "merged"
            dup.merged_with_id = primary_id
        db.commit()
    except EngageError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        log.error(f"Merge of {duplicate_ids} into contact {primary_id} failed: {e}")
        raise

    log.info(f"Merged contacts {duplicate_ids} into {primary_id}")

    # Outside the transaction: safe to skip, the next batch run fixes it
    try:
        recalculate_heat_score(primary_id, db)
    except Exception as e:
        db.rollback()
        log.warning(f"Heat recalculation after merge failed for contact {primary_id}: {e}")
    return primary


def _use_merge_isolation(db: Session) -> None:
    """Raise isolation for the merge transaction on PostgreSQL."""
    if db.get_bind().dialect.name != "postgresql":
        return
    if db.in_transaction():
        log.debug("Merge joined an open transaction; isolation level unchanged")
        return
    db.connection(execution_options={"isolation_level": settings.merge_isolation_level})


def _check_mergeable(primary: Contact, duplicates: list[Contact]) -> None:
    if primary.status != "active":
        raise ConflictError(f"Primary contact {primary.id} is {primary.status}, not active")
    for dup in duplicates:
        if dup.organization_id != primary.organization_id:
            raise ConflictError(f"Contact {dup.id} belongs to another organization")
        if dup.status != "active":
            raise ConflictError(f"Contact {dup.id} is {dup.status}, not active")


def _absorb(primary: Contact, duplicates: list[Contact]) -> None:
    """Copy duplicate data onto the primary (in memory, no flush)."""
    everyone = [primary, *duplicates]

    for field in _FILL_FIELDS:
        if getattr(primary, field):
            continue
        for dup in duplicates:
            value = getattr(dup, field)
            if value:
                setattr(primary, field, value)
                break

    tags = []
    for c in everyone:
        tags.extend(t.strip().lower() for t in load_str_list(c.tags) if t.strip())
    primary.tags = list(dict.fromkeys(tags))

    custom = {}
    for dup in duplicates:
        custom.update(load_dict(dup.custom_fields))
    custom.update(load_dict(primary.custom_fields))
    primary.custom_fields = custom

    history = load_list(primary.merged_contact_ids)
    for dup in duplicates:
        history.extend(load_list(dup.merged_contact_ids))
        history.append(dup.id)
    primary.merged_contact_ids = list(dict.fromkeys(history))

    primary.lifetime_value = sum(c.lifetime_value or 0 for c in everyone)
    primary.interaction_count = sum(c.interaction_count or 0 for c in everyone)
    seen = [c.last_interaction_at for c in everyone if c.last_interaction_at]
    if seen:
        primary.last_interaction_at = max(seen)


def auto_merge_high_confidence(organization_id: int, db: Session) -> int:
    """Merge every near-certain duplicate in the organization.

    Returns the number of contacts merged away. A failure on one contact
    is logged and the batch moves on.
    """
    merged = 0
    contact_ids = [
        cid for (cid,) in db.query(Contact.id)
        .filter(Contact.organization_id == organization_id, Contact.status == "active")
        .order_by(Contact.id)
        .all()
    ]
    for contact_id in contact_ids:
        contact = db.get(Contact, contact_id)
        if contact is None or contact.status != "active":
            continue  # merged away earlier in this batch
        try:
            probe = DuplicateProbe(
                email=contact.email,
                phone=contact.phone,
                first_name=contact.first_name,
                last_name=contact.last_name,
            )
            candidates = detect_duplicates(
                organization_id, probe, db,
                threshold=settings.auto_merge_gate,
                exclude_ids=[contact.id],
            )
            dup_ids = [
                c.contact.id for c in candidates
                if c.confidence >= settings.auto_merge_min_confidence
            ]
            if not dup_ids:
                continue
            # Merge opens its own transaction
            db.commit()
            merge_contacts(contact.id, dup_ids, db)
            merged += len(dup_ids)
        except Exception as e:
            db.rollback()
            log.error(f"Auto-merge failed for contact {contact_id}: {e}")
    if merged:
        log.info(f"Auto-merged {merged} contacts in org {organization_id}")
    return merged


# ═══════════════════════════════════════════════════════════════════════
#  PROFILE & LISTING
# ═══════════════════════════════════════════════════════════════════════

_SORTABLE = {
    "created_at": Contact.created_at,
    "heat_score": Contact.heat_score,
    "last_interaction_at": Contact.last_interaction_at,
    "first_name": Contact.first_name,
}


def get_contact_profile(contact_id: int, db: Session) -> dict:
    """Contact plus its sources, notes, agreements and latest conversations."""
    contact = db.get(Contact, contact_id)
    if contact is None:
        raise NotFoundError("Contact", contact_id)

    sources = (
        db.query(ContactSource)
        .filter(ContactSource.contact_id == contact_id)
        .order_by(ContactSource.last_seen_at.desc(), ContactSource.id.desc())
        .all()
    )
    notes = (
        db.query(ContactNote)
        .filter(ContactNote.contact_id == contact_id)
        .order_by(ContactNote.created_at.desc(), ContactNote.id.desc())
        .all()
    )
    agreements = (
        db.query(ContactAgreement)
        .filter(ContactAgreement.contact_id == contact_id)
        .order_by(ContactAgreement.created_at.desc(), ContactAgreement.id.desc())
        .all()
    )
    conversations = (
        db.query(Conversation)
        .filter(Conversation.contact_id == contact_id)
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        .limit(10)
        .all()
    )
    return {
        "contact": contact,
        "tags": load_str_list(contact.tags),
        "custom_fields": load_dict(contact.custom_fields),
        "sources": sources,
        "notes": notes,
        "agreements": agreements,
        "conversations": conversations,
    }


def list_contacts(
    organization_id: int,
    db: Session,
    *,
    status: str | None = "active",
    search: str | None = None,
    min_heat: int | None = None,
    max_heat: int | None = None,
    tags: list[str] | None = None,
    sort_by: str = "created_at",
    descending: bool = True,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    """Filtered, sorted, paginated contact listing.

    Tag filtering matches contacts carrying any of the given tags.
    Returns {"contacts": [...], "total": int}.
    """
    q = db.query(Contact).filter(Contact.organization_id == organization_id)
    if status:
        q = q.filter(Contact.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(
            Contact.first_name.ilike(pattern),
            Contact.last_name.ilike(pattern),
            Contact.email.ilike(pattern),
            Contact.phone.ilike(pattern),
            Contact.company.ilike(pattern),
        ))
    if min_heat is not None:
        q = q.filter(Contact.heat_score >= min_heat)
    if max_heat is not None:
        q = q.filter(Contact.heat_score <= max_heat)
    if tags:
        tag_text = cast(Contact.tags, String)
        q = q.filter(or_(*[tag_text.ilike(f'%"{t.strip().lower()}"%') for t in tags]))

    total = q.with_entities(func.count(Contact.id)).scalar() or 0

    column = _SORTABLE.get(sort_by, Contact.created_at)
    order = column.desc() if descending else column.asc()
    contacts = q.order_by(order, Contact.id).offset(offset).limit(limit).all()
    return {"contacts": contacts, "total": total}


def add_contact_note(
    contact_id: int,
    content: str,
    db: Session,
    note_type: str = "general",
    created_by: str | None = None,
) -> ContactNote:
    contact = db.get(Contact, contact_id)
    if contact is None:
        raise NotFoundError("Contact", contact_id)
    content = (content or "").strip()
    if not content:
        raise InvalidInputError("Note content is required")
    note = ContactNote(
        organization_id=contact.organization_id,
        contact_id=contact_id,
        content=content,
        type=note_type,
        created_by=created_by,
    )
    db.add(note)
    db.commit()
    return note
