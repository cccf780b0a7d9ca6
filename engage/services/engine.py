"""Conversation Engine — the AI reply pipeline for one inbound message.

Steps:
  1. resolve_agent   open assignment, or route and assign a new agent
  2. build_context   contact profile, agreements, notes, summary
  3. fetch_history   last N non-system messages, oldest first
  4. compose_prompt  agent prompt + objectives + knowledge + contact
  5. generate        LLM call
  6. decide_actions  pure, from the reply text
  7. execute         all actions concurrently, outcomes captured
  8. persist         outbound message (before any billing)
  9. charge          credit deduction; failures become reconciliation rows
 10. record_usage    assignment counters

A failure in steps 1-6 raises ProcessingError(step) and no reply is stored.
A failure to store the reply raises ProcessingError("persist"). Action and
charge failures are reported in the result, not raised.

The inbound message is stored by the caller before this runs, and the
caller runs at most one pipeline per conversation at a time.

Called by: channel ingestion workers
Depends on: agent_router, context_builder, decision_engine, actions,
            generation, billing_service, conversation_service
"""

import json
import logging
from typing import Callable

from sqlalchemy.orm import Session

from engage.config import settings
from engage.errors import ConflictError, NotFoundError, ProcessingError
from engage.models import Agent, Conversation, ConversationMessage
from engage.schemas.agents import AgentSelectionCriteria, parse_escalation_rules
from engage.schemas.context import ContactContext
from engage.schemas.pipeline import ProcessMessageResult
from engage.services.actions.executor import ActionExecutor
from engage.services.actions.handlers import build_action_executor
from engage.services.agent_router import AgentRouter
from engage.services.billing_service import CreditLedger
from engage.services.context_builder import build_context
from engage.services.conversation_service import append_message, get_history
from engage.services.decision_engine import decide_actions
from engage.services.generation import GenerationCapability
from engage.utils.json_fields import load_dict, load_str_list

log = logging.getLogger("engage.engine")

DEFAULT_TEMPERATURE = 70
DEFAULT_MAX_TOKENS = 1000
ESCALATION_WINDOW = 3

HUMAN_REQUEST_PHRASES = (
    "hablar con una persona",
    "hablar con un humano",
    "atención humana",
    "agente humano",
    "speak to a human",
    "talk to a person",
    "human agent",
    "real person",
)


def build_system_prompt(agent: Agent, context: ContactContext) -> str:
    """Agent prompt followed by objectives, knowledge base and contact facts."""
    parts = [(agent.system_prompt or "").strip(), ""]

    objectives = load_str_list(agent.objectives)
    if objectives:
        parts.append("## Your Objectives:")
        parts.extend(f"- {o}" for o in objectives)
        parts.append("")

    knowledge = load_dict(agent.knowledge_base)
    if knowledge:
        parts.append("## Knowledge Base:")
        parts.append(json.dumps(knowledge, indent=2, ensure_ascii=False, default=str))
        parts.append("")

    c = context.contact
    parts.append("## Contact Information:")
    parts.append(f"- Name: {c.first_name} {c.last_name}".rstrip())
    if c.email:
        parts.append(f"- Email: {c.email}")
    if c.phone:
        parts.append(f"- Phone: {c.phone}")
    parts.append(f"- Heat Score: {c.heat_score}/100")
    last = c.last_interaction_at.isoformat() if c.last_interaction_at else "never"
    parts.append(f"- Last Interaction: {last}")
    parts.append(f"- Total Interactions: {c.interaction_count}")

    if context.active_agreements:
        parts.append("")
        parts.append("## Active Agreements:")
        parts.extend(f"- {a.type}: {a.description}" for a in context.active_agreements)

    return "\n".join(parts).strip() + "\n"


class ConversationEngine:
    def __init__(
        self,
        db: Session,
        generator: GenerationCapability,
        executor: ActionExecutor | None = None,
        ledger: CreditLedger | None = None,
        router: AgentRouter | None = None,
        *,
        history_limit: int | None = None,
        complexity_scorer: Callable[[list[str]], float] | None = None,
    ):
        self.db = db
        self.generator = generator
        self.executor = executor or build_action_executor(db)
        self.ledger = ledger or CreditLedger(db)
        self.router = router or AgentRouter(db)
        self.history_limit = history_limit or settings.history_limit
        self.complexity_scorer = complexity_scorer

    # ═══════════════════════════════════════════════════════════════════
    #  PIPELINE
    # ═══════════════════════════════════════════════════════════════════

    async def process_message(
        self,
        conversation_id: int,
        message_content: str,
        organization_id: int,
        contact_id: int,
        channel: str,
    ) -> ProcessMessageResult:
        db = self.db
        step = "resolve_agent"
        try:
            conversation = self._conversation(conversation_id, organization_id)
            agent, assignment = self._resolve_agent(conversation, organization_id, contact_id, channel)

            step = "build_context"
            context = build_context(contact_id, conversation_id, db)

            step = "fetch_history"
            history = get_history(conversation_id, db, self.history_limit)

            step = "compose_prompt"
            system_prompt = build_system_prompt(agent, context)

            step = "generate"
            generation = await self.generator.generate(
                system_prompt=system_prompt,
                history=history,
                new_message=message_content,
                temperature=agent.temperature if agent.temperature is not None else DEFAULT_TEMPERATURE,
                max_tokens=agent.max_tokens or DEFAULT_MAX_TOKENS,
                model=agent.model or settings.default_model,
            )

            step = "decide_actions"
            actions = decide_actions(generation.text, agent, context, conversation_id)
        except Exception as e:
            db.rollback()
            log.error(f"Conversation {conversation_id}: {step} failed: {e}")
            raise ProcessingError(step, e) from e

        # ── 7. Execute ──
        outcomes = await self.executor.execute_all(actions)

        # ── 8. Persist ──
        try:
            conversation = db.get(Conversation, conversation_id)
            outbound = append_message(
                db,
                conversation,
                direction="outbound",
                role="assistant",
                content=generation.text,
                channel=channel,
                generated_by_ai=True,
                model=generation.model,
                credits_used=generation.cost_units,
                action_triggered=[o.model_dump(mode="json") for o in outcomes] or None,
            )
            summary = context.conversation_summary
            if summary and summary.sentiment:
                conversation.sentiment = summary.sentiment
            db.commit()
        except Exception as e:
            db.rollback()
            log.error(f"Conversation {conversation_id}: reply could not be stored: {e}")
            raise ProcessingError("persist", e) from e

        # ── 9. Charge ──
        billing_ok = self._charge(organization_id, generation, outbound, agent)

        # ── 10. Assignment counters ──
        try:
            self.router.record_usage(assignment, generation.cost_units)
        except Exception as e:
            db.rollback()
            log.error(f"Assignment {assignment.id}: usage counters not updated: {e}")

        log.info(
            f"Conversation {conversation_id}: replied via agent {agent.id}, "
            f"{len(outcomes)} actions, {generation.cost_units} credits"
        )
        return ProcessMessageResult(
            response=generation.text,
            actions_triggered=outcomes,
            credits_used=generation.cost_units,
            model=generation.model,
            billing_ok=billing_ok,
        )

    def _conversation(self, conversation_id: int, organization_id: int) -> Conversation:
        conversation = self.db.get(Conversation, conversation_id)
        if conversation is None or conversation.organization_id != organization_id:
            raise NotFoundError("Conversation", conversation_id)
        if conversation.transferred_to_human:
            raise ConflictError(f"Conversation {conversation_id} is handled by a human")
        return conversation

    def _resolve_agent(self, conversation: Conversation, organization_id: int, contact_id: int, channel: str):
        assignment = self.router.get_current_assignment(conversation.id)
        if assignment is not None:
            agent = self.db.get(Agent, assignment.agent_id)
            if agent is not None and agent.active:
                return agent, assignment
            log.info(f"Conversation {conversation.id}: assigned agent unavailable, re-routing")

        criteria = AgentSelectionCriteria(channel=channel, contact_id=contact_id)
        agent = self.router.find_best_available_agent(organization_id, criteria)
        if agent is None:
            raise NotFoundError("Agent", None, f"No active agent available for organization {organization_id}")
        assignment = self.router.assign_to_conversation(conversation.id, agent.id, contact_id)
        return agent, assignment

    def _charge(self, organization_id: int, generation, outbound: ConversationMessage, agent: Agent) -> bool:
        amount = generation.cost_units
        try:
            self.ledger.consume(
                organization_id,
                amount,
                f"AI response ({generation.model})",
                {
                    "conversation_id": outbound.conversation_id,
                    "message_id": outbound.id,
                    "agent_id": agent.id,
                },
            )
            return True
        except Exception as e:
            self.db.rollback()
            try:
                self.ledger.record_deduction_failure(
                    organization_id,
                    amount,
                    e,
                    model=generation.model,
                    reference_type="conversation_message",
                    reference_id=outbound.id,
                )
            except Exception as record_error:
                self.db.rollback()
                log.critical(
                    f"Unrecorded credit deduction failure: org {organization_id}, "
                    f"{amount} credits, message {outbound.id}: {e} / {record_error}"
                )
            return False

    # ═══════════════════════════════════════════════════════════════════
    #  ESCALATION
    # ═══════════════════════════════════════════════════════════════════

    def check_escalation(self, conversation_id: int, agent_id: int) -> bool:
        """Should a human take over? Any one condition is enough."""
        conversation = self.db.get(Conversation, conversation_id)
        agent = self.db.get(Agent, agent_id)
        if conversation is None or agent is None:
            return False

        recent = [
            m.content for m in (
                self.db.query(ConversationMessage)
                .filter(ConversationMessage.conversation_id == conversation_id)
                .order_by(ConversationMessage.created_at.desc(), ConversationMessage.id.desc())
                .limit(ESCALATION_WINDOW)
                .all()
            )
        ]
        if any(p in (text or "").lower() for text in recent for p in HUMAN_REQUEST_PHRASES):
            log.info(f"Conversation {conversation_id}: contact asked for a human")
            return True

        rules = parse_escalation_rules(agent.escalation_rules)
        if rules is None:
            return False

        if rules.max_messages is not None and (conversation.message_count or 0) > rules.max_messages:
            return True

        wants_sentiment = rules.check_sentiment or rules.escalate_on_negative_sentiment
        if wants_sentiment and conversation.sentiment == "negative":
            return True

        if rules.complexity_threshold is not None and self.complexity_scorer is not None:
            if self.complexity_scorer(recent) >= rules.complexity_threshold:
                return True

        return False
