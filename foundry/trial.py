"""Anonymous trial chat sessions.

A trial session takes up to three user messages before sign-up. It can be
claimed once by an authenticated user, after which it no longer accepts
chat but stays readable for status.
"""
from __future__ import annotations

import json
import logging
import secrets

from sqlalchemy import select
from sqlalchemy.orm import Session

from foundry import quota
from foundry.config import MAX_MESSAGE_LENGTH, TRIAL_MESSAGE_LIMIT
from foundry.errors import InvalidState, LLMCallError, NotFound, ValidationError
from foundry.llm import LLMClient
from foundry.locks import locks
from foundry.models import TrialSession
from foundry.utils import isoformat, json_parse, utcnow

log = logging.getLogger(__name__)

TRIAL_SYSTEM_PROMPT = (
    "You are an AI entrepreneurship coach helping a potential user explore the platform. "
    "You are friendly, encouraging, and focused on helping them think about their business idea. "
    "This is a trial conversation and the user hasn't signed up yet. Keep responses concise "
    "(2-3 paragraphs max). After giving helpful advice you may mention that signing up unlocks "
    "structured phases, artifact generation and a personalized business plan, without being pushy."
)

TRIAL_MAX_TOKENS = 512

CLAIMED_MESSAGE = "This trial session has been linked to an account. Please sign in to continue."


def _load(session: Session, token: str) -> TrialSession:
    trial = None
    if token:
        trial = session.execute(
            select(TrialSession)
            .where(TrialSession.token == token)
            .execution_options(populate_existing=True)
        ).scalars().first()
    if trial is None:
        raise NotFound("Trial session not found")
    return trial


def create(session: Session) -> TrialSession:
    trial = TrialSession(token=secrets.token_hex(16), messages_json="[]", messages_used=0,
                         created_at=utcnow())
    session.add(trial)
    session.commit()
    log.info("Trial session %s... created", trial.token[:8])
    return trial


async def chat(session: Session, token: str, message: str, client: LLMClient) -> dict:
    """Send one user message and return ``{reply, messages_used, remaining}``."""
    trial = _load(session, token)
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("Message is required", {"message": "Must not be empty"})
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValidationError(
            "Message is too long",
            {"message": f"Must be at most {MAX_MESSAGE_LENGTH} characters"},
        )
    if trial.claimed_by_user_id:
        raise InvalidState(CLAIMED_MESSAGE)

    policy = quota.trial_lifetime(trial.token)
    quota.consume(session, policy)

    asked_at = utcnow()
    history = json_parse(trial.messages_json, [])
    prompt = [*history, {"role": "user", "content": message}]
    try:
        reply = await client.complete(TRIAL_SYSTEM_PROMPT, prompt, max_tokens=TRIAL_MAX_TOKENS)
    except LLMCallError:
        quota.release(session, policy)
        raise

    with locks.hold(f"trial:{trial.token}"):
        session.refresh(trial)
        if trial.claimed_by_user_id:
            quota.release(session, policy)
            raise InvalidState(CLAIMED_MESSAGE)
        log_entries = json_parse(trial.messages_json, [])
        log_entries.append({"role": "user", "content": message, "timestamp": isoformat(asked_at)})
        log_entries.append({"role": "assistant", "content": reply, "timestamp": isoformat(utcnow())})
        trial.messages_json = json.dumps(log_entries)
        trial.messages_used = trial.messages_used + 1
        try:
            session.commit()
        except Exception:
            session.rollback()
            raise
        used = trial.messages_used

    return {
        "reply": reply,
        "messages_used": used,
        "messages_limit": TRIAL_MESSAGE_LIMIT,
        "remaining": max(0, TRIAL_MESSAGE_LIMIT - used),
        "session_token": trial.token,
    }


def status(session: Session, token: str) -> dict:
    trial = _load(session, token)
    return {
        "messages_used": trial.messages_used,
        "messages_limit": TRIAL_MESSAGE_LIMIT,
        "remaining": max(0, TRIAL_MESSAGE_LIMIT - trial.messages_used),
        "messages": json_parse(trial.messages_json, []),
        "claimed": trial.claimed_by_user_id is not None,
    }


def claim(session: Session, token: str, user_id: str) -> TrialSession:
    """Link the session to *user_id*. Claiming again as the same user is a no-op."""
    if not user_id:
        raise ValidationError("user_id is required")
    with locks.hold(f"trial:{token}"):
        trial = _load(session, token)
        if trial.claimed_by_user_id is not None:
            if trial.claimed_by_user_id == user_id:
                return trial
            raise InvalidState("Trial session has already been claimed")
        trial.claimed_by_user_id = user_id
        trial.claimed_at = utcnow()
        try:
            session.commit()
        except Exception:
            session.rollback()
            raise
    log.info("Trial session %s... claimed by user %s", trial.token[:8], user_id)
    return trial
