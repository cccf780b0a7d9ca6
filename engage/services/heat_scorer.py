"""Heat Scoring — how warm is this contact right now.

Computes a 0-100 heat score for each Contact from four capped sub-scores:

  1. Recency (≤30) — days since the last interaction
  2. Frequency (≤30) — lifetime interaction count
  3. Value (≤20) — lifetime value in minor currency units
  4. Engagement (≤20) — average seconds between their message and our reply

The score is stored on Contact.heat_score and recomputed after merges and
periodically by the maintenance job. Dashboards bucket it as hot (≥80),
warm (50-79) and cold (<50).
"""

import logging
import math
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from engage.errors import NotFoundError
from engage.models import Contact, Conversation, ConversationMessage

log = logging.getLogger(__name__)

# ── Tiers: (upper bound inclusive, points) ──
RECENCY_TIERS = ((0, 30), (1, 28), (3, 25), (7, 20), (14, 15), (30, 10), (60, 5))
# (minimum, points), highest first
FREQUENCY_TIERS = ((16, 30), (6, 20), (1, 10))
VALUE_TIERS = ((100_000, 20), (50_000, 15), (10_000, 10), (1_000, 5))
# (exclusive upper bound in seconds, points)
ENGAGEMENT_TIERS = ((300, 20), (1_800, 15), (7_200, 10), (86_400, 5))

# Replies slower than a day are not "responses"
MAX_RESPONSE_SECONDS = 86_400

HOT_THRESHOLD = 80
WARM_THRESHOLD = 50


def recency_points(last_interaction_at: datetime | None, now: datetime) -> int:
    if last_interaction_at is None:
        return 0
    days = max(math.floor((now - last_interaction_at).total_seconds() / 86_400), 0)
    for max_days, points in RECENCY_TIERS:
        if days <= max_days:
            return points
    return 0


def frequency_points(interaction_count: int | None) -> int:
    for minimum, points in FREQUENCY_TIERS:
        if (interaction_count or 0) >= minimum:
            return points
    return 0


def value_points(lifetime_value: int | None) -> int:
    for minimum, points in VALUE_TIERS:
        if (lifetime_value or 0) >= minimum:
            return points
    return 0


def engagement_points(average_response_time: int | None) -> int:
    if average_response_time is None:
        return 0
    for limit, points in ENGAGEMENT_TIERS:
        if average_response_time < limit:
            return points
    return 0


def compute_heat_score(contact, now: datetime | None = None) -> int:
    """Heat score for anything shaped like a Contact. Pure, no I/O."""
    if now is None:
        now = datetime.now(timezone.utc)
    total = (
        recency_points(contact.last_interaction_at, now)
        + frequency_points(contact.interaction_count)
        + value_points(contact.lifetime_value)
        + engagement_points(contact.average_response_time)
    )
    return round(max(0, min(100, total)))


def heat_bucket(score: int) -> str:
    if score >= HOT_THRESHOLD:
        return "hot"
    if score >= WARM_THRESHOLD:
        return "warm"
    return "cold"


def recalculate_heat_score(contact_id: int, db: Session) -> int:
    """Recompute and persist one contact's heat score."""
    contact = db.get(Contact, contact_id)
    if contact is None:
        raise NotFoundError("Contact", contact_id)
    now = datetime.now(timezone.utc)
    contact.heat_score = compute_heat_score(contact, now)
    contact.updated_at = now
    db.commit()
    return contact.heat_score


# ── Response time ────────────────────────────────────────────────────


def response_times(messages) -> list[int]:
    """Whole-second latencies from an inbound message to the next reply.

    `messages` is one conversation in chronological order. The latest
    inbound before a reply is the one paired; latencies outside
    (0, 86400) are dropped.
    """
    times = []
    last_inbound = None
    for msg in messages:
        if msg.direction == "inbound":
            last_inbound = msg.created_at
        elif msg.direction == "outbound" and last_inbound is not None:
            seconds = math.floor((msg.created_at - last_inbound).total_seconds())
            if 0 < seconds < MAX_RESPONSE_SECONDS:
                times.append(seconds)
            last_inbound = None
    return times


def calculate_average_response_time(contact_id: int, db: Session) -> int | None:
    """Average reply latency across the contact's conversations (floor, seconds).

    Persists the result; returns None and leaves the contact untouched
    when there is nothing to measure.
    """
    contact = db.get(Contact, contact_id)
    if contact is None:
        raise NotFoundError("Contact", contact_id)

    conversation_ids = [
        cid for (cid,) in db.query(Conversation.id).filter(Conversation.contact_id == contact_id).all()
    ]
    samples = []
    for conversation_id in conversation_ids:
        messages = (
            db.query(ConversationMessage)
            .filter(ConversationMessage.conversation_id == conversation_id)
            .order_by(ConversationMessage.created_at, ConversationMessage.id)
            .all()
        )
        samples.extend(response_times(messages))

    if not samples:
        return None

    contact.average_response_time = sum(samples) // len(samples)
    contact.updated_at = datetime.now(timezone.utc)
    db.commit()
    return contact.average_response_time


# ── Batch ────────────────────────────────────────────────────────────


def _active_contact_ids(organization_id: int, db: Session) -> list[int]:
    return [
        cid for (cid,) in db.query(Contact.id)
        .filter(Contact.organization_id == organization_id, Contact.status == "active")
        .order_by(Contact.id)
        .all()
    ]


def batch_recalculate_heat_scores(organization_id: int, db: Session) -> int:
    """Recompute every active contact in the org. Returns count updated."""
    updated = 0
    for contact_id in _active_contact_ids(organization_id, db):
        try:
            recalculate_heat_score(contact_id, db)
            updated += 1
        except Exception as e:
            db.rollback()
            log.error(f"Heat score failed for contact {contact_id}: {e}")
    log.info(f"Heat scores recalculated: {updated} contacts in org {organization_id}")
    return updated


def batch_recalculate_response_times(organization_id: int, db: Session) -> int:
    """Refresh average response times. Returns count of contacts with a value."""
    updated = 0
    for contact_id in _active_contact_ids(organization_id, db):
        try:
            if calculate_average_response_time(contact_id, db) is not None:
                updated += 1
        except Exception as e:
            db.rollback()
            log.error(f"Response time failed for contact {contact_id}: {e}")
    return updated


def heat_score_distribution(organization_id: int, db: Session) -> dict:
    """Counts of active contacts per bucket: {"hot", "warm", "cold"}."""
    dist = {"hot": 0, "warm": 0, "cold": 0}
    scores = (
        db.query(Contact.heat_score)
        .filter(Contact.organization_id == organization_id, Contact.status == "active")
        .all()
    )
    for (score,) in scores:
        dist[heat_bucket(score or 0)] += 1
    return dist
