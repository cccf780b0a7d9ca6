"""Background maintenance — keeps derived contact data fresh.

Runs on a fixed tick (settings.maintenance_interval_minutes). Each tick,
for every organization:
  - Auto-merge: near-certain duplicates (only if settings.auto_merge_enabled)
  - Response times: average reply latency per contact
  - Heat scores: recomputed after the above so they see fresh inputs
"""

import asyncio
import logging

from sqlalchemy.orm import Session

from .config import settings
from .models import Organization
from .services.heat_scorer import batch_recalculate_heat_scores, batch_recalculate_response_times
from .services.identity_service import auto_merge_high_confidence

log = logging.getLogger(__name__)


def run_maintenance(db: Session, organization_ids: list[int] | None = None) -> dict:
    """One maintenance pass. Returns {org_id: {merged, response_times, heat_scores}}."""
    if organization_ids is None:
        organization_ids = [oid for (oid,) in db.query(Organization.id).order_by(Organization.id).all()]

    summary = {}
    for org_id in organization_ids:
        try:
            merged = auto_merge_high_confidence(org_id, db) if settings.auto_merge_enabled else 0
            summary[org_id] = {
                "merged": merged,
                "response_times": batch_recalculate_response_times(org_id, db),
                "heat_scores": batch_recalculate_heat_scores(org_id, db),
            }
        except Exception as e:
            db.rollback()
            log.error(f"Maintenance failed for org {org_id}: {e}")
    return summary


async def maintenance_loop(session_factory=None, interval_minutes: int | None = None) -> None:
    """Run maintenance forever on a fixed interval."""
    if session_factory is None:
        from .database import SessionLocal
        session_factory = SessionLocal
    interval = (interval_minutes or settings.maintenance_interval_minutes) * 60

    while True:
        db = session_factory()
        try:
            summary = run_maintenance(db)
            log.info(f"Maintenance pass complete for {len(summary)} organizations")
        except Exception as e:
            log.error(f"Maintenance pass failed: {e}")
        finally:
            db.close()
        await asyncio.sleep(interval)
