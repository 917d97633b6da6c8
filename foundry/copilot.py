"""Venture copilot: phase-scoped chat and artifact generation.

Both draw on the venture's daily message quota. Units are reserved before
the LLM call and given back if the call fails, so a slow provider cannot
be used to run past the limit.
"""
from __future__ import annotations

import json
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from foundry import artifacts, gates, phases, quota
from foundry.artifacts import ArtifactType
from foundry.catalog import phase_definition
from foundry.config import ARTIFACT_MESSAGE_COST, MAX_MESSAGE_LENGTH
from foundry.errors import LLMCallError, ValidationError
from foundry.llm import LLMClient, parse_json_reply
from foundry.locks import locks
from foundry.models import Conversation, Venture
from foundry.utils import isoformat, json_parse, utcnow

log = logging.getLogger(__name__)

CHAT_MESSAGE_COST = 1
CHAT_MAX_TOKENS = 1024
GENERATE_MAX_TOKENS = 2048
HISTORY_WINDOW = 20

GENERATABLE_TYPES = frozenset({
    ArtifactType.BUSINESS_PLAN.value,
    ArtifactType.OFFER_STATEMENT.value,
    ArtifactType.GTM_PLAN.value,
    ArtifactType.GROWTH_PLAN.value,
})

BASE_PERSONA = (
    "You are an experienced entrepreneurial advisor guiding a first-time founder "
    "through building a real business. Be encouraging but honest, give specific "
    "actionable advice in plain language, and keep answers to 150-300 words unless "
    "asked for more. For legal or financial questions, add that they should consult "
    "a qualified professional."
)

_ARTIFACT_SHAPES = {
    "BUSINESS_PLAN": "problem, solution, target_customer, offer, revenue_model, "
                     "distribution_channel, estimated_costs {startup, monthly}, advantage",
    "OFFER_STATEMENT": "headline, target_customer, outcome, price, guarantee",
    "GTM_PLAN": "channels (list), first_customers (list), launch_timeline, budget",
    "GROWTH_PLAN": "current_metrics, growth_levers (list), next_90_days (list), risks (list)",
}


# ---------------------------------------------------------------------------
# Prompt assembly
# ---------------------------------------------------------------------------


def _venture_context(venture: Venture) -> str:
    lines = ["Current venture state:"]
    if venture.name:
        lines.append(f"- Name: {venture.name}")
    for key, value in gates.business_plan_values(venture).items():
        if value:
            lines.append(f"- {key.replace('_', ' ').capitalize()}: {value}")
    if venture.entity_type and venture.entity_type != "NONE":
        lines.append(f"- Entity: {venture.entity_type} {venture.entity_state or ''}".rstrip())
    return "\n".join(lines)


def _phase_context(view: phases.PhaseView) -> str:
    lines = [
        f"The user is working on Phase {view.phase_number}: {view.name}.",
        f"Core deliverable: {view.core_deliverable}",
        "Gate criteria:",
    ]
    for c in view.gate_criteria:
        lines.append(f"- [{'x' if c.satisfied else ' '}] {c.label}")
    lines.append("Keep advice focused on this phase. Do not push work from locked phases.")
    return "\n".join(lines)


def build_system_prompt(venture: Venture, view: phases.PhaseView, artifact_list) -> str:
    parts = [BASE_PERSONA, _venture_context(venture), _phase_context(view)]
    if artifact_list:
        summary = ", ".join(f"{a.type} v{a.version}" for a in artifact_list)
        parts.append(f"Artifacts so far: {summary}")
    return "\n\n".join(parts)


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


def _check_message(message) -> str:
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("Message is required", {"message": "Must not be empty"})
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValidationError(
            "Message is too long",
            {"message": f"Must be at most {MAX_MESSAGE_LENGTH} characters"},
        )
    return message


def _latest_conversation(session: Session, venture_id: str, phase_number: int) -> Conversation | None:
    return session.execute(
        select(Conversation)
        .where(Conversation.venture_id == venture_id, Conversation.phase_number == phase_number)
        .order_by(Conversation.created_at.desc())
        .execution_options(populate_existing=True)
    ).scalars().first()


def _resumed_conversation(session: Session, venture_id: str, conversation_id: str) -> Conversation | None:
    return session.execute(
        select(Conversation)
        .where(Conversation.id == conversation_id, Conversation.venture_id == venture_id)
        .execution_options(populate_existing=True)
    ).scalars().first()


async def chat(
    session: Session,
    venture: Venture,
    message: str,
    client: LLMClient,
    phase_number: int | None = None,
    conversation_id: str | None = None,
) -> dict:
    """Send a message to the copilot for one phase (default: the active phase).

    With *conversation_id*, the reply is appended to that conversation of the
    venture and the phase follows the conversation. An id that does not belong
    to the venture falls back to the latest conversation of the phase.
    """
    message = _check_message(message)
    resumed = _resumed_conversation(session, venture.id, conversation_id) if conversation_id else None
    if resumed is not None:
        if phase_number is not None and phase_number != resumed.phase_number:
            raise ValidationError(
                "Conversation belongs to another phase",
                {"phase_number": f"Conversation is for phase {resumed.phase_number}"},
            )
        phase_number = resumed.phase_number
    views = phases.phases_for(session, venture)
    if phase_number is None:
        view = phases.current_phase(views)
    else:
        phase_definition(phase_number)
        view = views[phase_number - 1]

    policy = quota.venture_daily(venture.id)
    grant = quota.consume(session, policy, CHAT_MESSAGE_COST)

    conversation = resumed or _latest_conversation(session, venture.id, view.phase_number)
    history = json_parse(conversation.messages_json, []) if conversation else []
    asked_at = utcnow()
    prompt = [*history[-HISTORY_WINDOW:], {"role": "user", "content": message}]
    system = build_system_prompt(venture, view, phases.load_artifacts(session, venture.id))
    try:
        reply = await client.complete(system, prompt, max_tokens=CHAT_MAX_TOKENS)
    except LLMCallError:
        quota.release(session, policy, CHAT_MESSAGE_COST)
        raise

    with locks.hold(f"conversation:{venture.id}:{view.phase_number}"):
        if resumed is not None:
            conversation = _resumed_conversation(session, venture.id, resumed.id)
        else:
            conversation = _latest_conversation(session, venture.id, view.phase_number)
        if conversation is None:
            conversation = Conversation(venture_id=venture.id, phase_number=view.phase_number,
                                        messages_json="[]", created_at=asked_at)
            session.add(conversation)
        entries = json_parse(conversation.messages_json, [])
        entries.append({"role": "user", "content": message, "timestamp": isoformat(asked_at)})
        entries.append({"role": "assistant", "content": reply, "timestamp": isoformat(utcnow())})
        conversation.messages_json = json.dumps(entries)
        conversation.updated_at = utcnow()
        try:
            session.commit()
        except Exception:
            session.rollback()
            raise

    return {
        "reply": reply,
        "phase_number": view.phase_number,
        "conversation_id": conversation.id,
        "remaining_today": grant.remaining,
    }


def chat_history(session: Session, venture_id: str, phase_number: int | None = None) -> list[dict]:
    query = select(Conversation).where(Conversation.venture_id == venture_id)
    if phase_number is not None:
        phase_definition(phase_number)
        query = query.where(Conversation.phase_number == phase_number)
    rows = session.execute(query.order_by(Conversation.created_at.desc())).scalars().all()
    return [
        {"id": c.id, "phase_number": c.phase_number,
         "messages": json_parse(c.messages_json, []), "created_at": isoformat(c.created_at)}
        for c in rows
    ]


# ---------------------------------------------------------------------------
# Artifact generation
# ---------------------------------------------------------------------------


def _generation_prompt(type_: str, venture: Venture) -> str:
    return (
        f"{BASE_PERSONA}\n\n{_venture_context(venture)}\n\n"
        f"Draft a {type_} for this venture. Respond with a single JSON object with "
        f"these keys: {_ARTIFACT_SHAPES[type_]}. No prose outside the JSON."
    )


def parse_generated(text: str) -> dict:
    """Parsed JSON content, or the raw text flagged with ``parse_error``."""
    try:
        return parse_json_reply(text)
    except LLMCallError:
        log.warning("Generated artifact was not valid JSON; storing raw text")
        return {"raw": text, "parse_error": True}


async def generate_artifact(
    session: Session, venture: Venture, phase_number: int, type_: str, client: LLMClient,
) -> dict:
    """Generate an artifact of *type_* with the LLM and store it as version 1."""
    phase_definition(phase_number)
    type_value = type_.value if isinstance(type_, ArtifactType) else type_
    if type_value not in GENERATABLE_TYPES:
        raise ValidationError(
            f"Cannot generate artifact type {type_value!r}",
            {"type": f"Must be one of: {', '.join(sorted(GENERATABLE_TYPES))}"},
        )

    policy = quota.venture_daily(venture.id)
    grant = quota.consume(session, policy, ARTIFACT_MESSAGE_COST)
    try:
        text = await client.complete(
            _generation_prompt(type_value, venture),
            [{"role": "user", "content": f"Generate a {type_value} artifact for my venture."}],
            max_tokens=GENERATE_MAX_TOKENS,
        )
    except LLMCallError:
        quota.release(session, policy, ARTIFACT_MESSAGE_COST)
        raise

    art = artifacts.create(session, venture.id, phase_number, type_value, parse_generated(text))
    log.info("Generated %s artifact %s for venture %s", type_value, art.id, venture.id)
    return {"artifact": artifacts.artifact_dict(art), "remaining_today": grant.remaining}
