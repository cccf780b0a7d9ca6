"""Agent Router — pick the AI agent for a conversation and track the binding.

Scoring (additive):
  +30  agent is eligible on the conversation's channel
  +25  campaign given and the agent is eligible for it
  +20  type/intent fit: qualifier on a new lead, sales↔purchase,
       support↔help, scheduler↔schedule
  +15  voice channel and the agent has a voice provider
  +10  availability baseline

Highest total wins; ties go to the first agent in load order. A
conversation has at most one open assignment (unassigned_at IS NULL);
assign_to_conversation closes the old one before opening the new one.

Usage:
    router = AgentRouter(db)
    agent = router.find_best_available_agent(org_id, AgentSelectionCriteria(channel="whatsapp"))
    router.assign_to_conversation(conversation.id, agent.id, contact.id)
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from engage.config import settings
from engage.errors import ConflictError, NotFoundError
from engage.models import Agent, AgentAssignment, Conversation
from engage.schemas.agents import AgentSelectionCriteria, parse_escalation_rules
from engage.utils.json_fields import load_str_list

log = logging.getLogger("engage.routing")

# Weight constants
W_CHANNEL = 30
W_CAMPAIGN = 25
W_INTENT = 20
W_VOICE = 15
W_AVAILABILITY = 10

VOICE_CHANNEL = "calls"
REASSIGNED_REASON = "Reassigned to different agent"
MANUAL_UNASSIGN_REASON = "Manual unassignment"

# agent type → intent it is built for
_INTENT_FIT = {
    "sales": "purchase",
    "support": "help",
    "scheduler": "schedule",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AgentRouter:
    """Agent selection, assignment lifecycle, and workload balancing."""

    def __init__(self, db: Session, workload_threshold: int | None = None):
        self.db = db
        self.workload_threshold = (
            settings.agent_workload_threshold if workload_threshold is None else workload_threshold
        )

    # ═══════════════════════════════════════════════════════════════════
    #  SCORING
    # ═══════════════════════════════════════════════════════════════════

    @staticmethod
    def score_agent(agent: Agent, criteria: AgentSelectionCriteria) -> dict:
        """Score one agent. Returns {total, channel, campaign, intent, voice, availability}."""
        channels = [c.lower() for c in load_str_list(agent.assign_to_channels)]
        campaigns = load_str_list(agent.assign_to_campaigns)

        channel = W_CHANNEL if criteria.channel in channels else 0
        campaign = W_CAMPAIGN if criteria.campaign and criteria.campaign in campaigns else 0

        if agent.type == "qualifier":
            fits = criteria.contact_id is None
        else:
            fits = criteria.intent is not None and _INTENT_FIT.get(agent.type) == criteria.intent
        intent = W_INTENT if fits else 0

        has_voice = bool(agent.voice_provider) and agent.voice_provider != "none"
        voice = W_VOICE if criteria.channel == VOICE_CHANNEL and has_voice else 0

        total = channel + campaign + intent + voice + W_AVAILABILITY
        return {
            "total": total,
            "channel": channel,
            "campaign": campaign,
            "intent": intent,
            "voice": voice,
            "availability": W_AVAILABILITY,
        }

    def _active_agents(self, organization_id: int) -> list[Agent]:
        return (
            self.db.query(Agent)
            .filter(Agent.organization_id == organization_id, Agent.active.is_(True))
            .order_by(Agent.id)
            .all()
        )

    def select_best_agent(self, organization_id: int, criteria: AgentSelectionCriteria) -> Agent | None:
        best, best_score = None, -1
        for agent in self._active_agents(organization_id):
            score = self.score_agent(agent, criteria)["total"]
            # Strict > keeps the first agent on ties
            if score > best_score:
                best, best_score = agent, score
        if best:
            log.debug(f"Selected agent {best.id} ({best_score} pts) for {criteria.channel}")
        return best

    # ═══════════════════════════════════════════════════════════════════
    #  ASSIGNMENT LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════

    def assign_to_conversation(self, conversation_id: int, agent_id: int, contact_id: int) -> AgentAssignment:
        """Bind an agent to a conversation, closing any open binding first."""
        db = self.db
        agent = db.get(Agent, agent_id)
        if agent is None:
            raise NotFoundError("Agent", agent_id)
        if not agent.active:
            raise ConflictError(f"Agent {agent_id} is inactive")
        if db.get(Conversation, conversation_id) is None:
            raise NotFoundError("Conversation", conversation_id)

        now = _now()
        try:
            open_rows = (
                db.query(AgentAssignment)
                .filter(
                    AgentAssignment.conversation_id == conversation_id,
                    AgentAssignment.unassigned_at.is_(None),
                )
                .all()
            )
            for row in open_rows:
                row.unassigned_at = now
                row.reason_for_unassignment = REASSIGNED_REASON

            assignment = AgentAssignment(
                agent_id=agent_id,
                conversation_id=conversation_id,
                contact_id=contact_id,
                assigned_at=now,
                messages_handled=0,
                credits_used=0,
            )
            db.add(assignment)
            db.commit()
        except Exception:
            db.rollback()
            raise

        log.info(f"Agent {agent_id} assigned to conversation {conversation_id}")
        return assignment

    def unassign(self, assignment_id: int, reason: str | None = None) -> AgentAssignment:
        db = self.db
        assignment = db.get(AgentAssignment, assignment_id)
        if assignment is None or assignment.unassigned_at is not None:
            raise NotFoundError(
                "AgentAssignment", assignment_id,
                f"Assignment {assignment_id} not found or already unassigned",
            )
        assignment.unassigned_at = _now()
        assignment.reason_for_unassignment = reason or MANUAL_UNASSIGN_REASON
        db.commit()
        log.info(f"Assignment {assignment_id} closed: {assignment.reason_for_unassignment}")
        return assignment

    def get_current_assignment(self, conversation_id: int) -> AgentAssignment | None:
        return (
            self.db.query(AgentAssignment)
            .filter(
                AgentAssignment.conversation_id == conversation_id,
                AgentAssignment.unassigned_at.is_(None),
            )
            .order_by(AgentAssignment.assigned_at.desc(), AgentAssignment.id.desc())
            .first()
        )

    def record_usage(self, assignment: AgentAssignment, credits: int) -> None:
        """Count one handled message and its cost against the assignment."""
        assignment.messages_handled = (assignment.messages_handled or 0) + 1
        assignment.credits_used = (assignment.credits_used or 0) + credits
        self.db.commit()

    # ═══════════════════════════════════════════════════════════════════
    #  ESCALATION & WORKLOAD
    # ═══════════════════════════════════════════════════════════════════

    @staticmethod
    def should_escalate(
        agent: Agent,
        message_count: int,
        sentiment: str | None = None,
        keywords: list[str] | None = None,
    ) -> bool:
        """Check the agent's escalation rules. Malformed rules never escalate."""
        rules = parse_escalation_rules(agent.escalation_rules)
        if rules is None:
            return False

        if rules.max_messages is not None and message_count >= rules.max_messages:
            return True

        if rules.escalate_on_negative_sentiment and sentiment == "negative":
            return True

        if keywords and rules.escalation_keywords:
            configured = [k.lower() for k in rules.escalation_keywords]
            for kw in keywords:
                kw = kw.lower()
                if any(c in kw for c in configured):
                    return True

        return False

    def get_workload(self, agent_id: int) -> int:
        """Open assignments currently held by the agent."""
        return (
            self.db.query(func.count(AgentAssignment.id))
            .filter(AgentAssignment.agent_id == agent_id, AgentAssignment.unassigned_at.is_(None))
            .scalar()
            or 0
        )

    def find_best_available_agent(self, organization_id: int, criteria: AgentSelectionCriteria) -> Agent | None:
        """Best-scoring agent, unless overloaded; then the least-loaded agent."""
        best = self.select_best_agent(organization_id, criteria)
        if best is None:
            return None
        if self.get_workload(best.id) <= self.workload_threshold:
            return best

        agents = self._active_agents(organization_id)
        loads = [(self.get_workload(a.id), a) for a in agents]
        # min() keeps the first agent on ties
        _, least_loaded = min(loads, key=lambda pair: pair[0])
        log.info(f"Agent {best.id} over workload threshold, rebalanced to agent {least_loaded.id}")
        return least_loaded

    # ═══════════════════════════════════════════════════════════════════
    #  PERFORMANCE
    # ═══════════════════════════════════════════════════════════════════

    def get_agent_performance(
        self,
        agent_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict:
        """Aggregate stats over the agent's assignments in [start, end]."""
        q = self.db.query(AgentAssignment).filter(AgentAssignment.agent_id == agent_id)
        if start is not None:
            q = q.filter(AgentAssignment.assigned_at >= start)
        if end is not None:
            q = q.filter(AgentAssignment.assigned_at <= end)
        rows = q.all()

        ratings = [r.satisfaction for r in rows if r.satisfaction is not None]
        durations = [
            (r.unassigned_at - r.assigned_at).total_seconds()
            for r in rows
            if r.unassigned_at is not None and r.assigned_at is not None
        ]
        return {
            "total_assignments": len(rows),
            "active_assignments": sum(1 for r in rows if r.unassigned_at is None),
            "total_messages": sum(r.messages_handled or 0 for r in rows),
            "total_credits_used": sum(r.credits_used or 0 for r in rows),
            "average_satisfaction": round(sum(ratings) / len(ratings), 2) if ratings else None,
            "average_handling_seconds": int(sum(durations) // len(durations)) if durations else None,
        }
