"""Venture lifecycle: capacity-capped creation, ownership checks, field updates."""
from __future__ import annotations

import json
import logging
import math
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from foundry.catalog import initial_gate_flags
from foundry.config import MAX_FIELD_LENGTH, MAX_VENTURES_PER_USER
from foundry.errors import CapacityExceeded, Forbidden, NotFound, ValidationError
from foundry.locks import locks
from foundry.models import Venture
from foundry.utils import isoformat, json_parse, utcnow

log = logging.getLogger(__name__)

ENTITY_TYPES = ("NONE", "SOLE_PROP", "LLC", "CORP")

TEXT_FIELDS = (
    "name", "problem_statement", "solution_statement", "target_customer",
    "offer_description", "revenue_model", "distribution_channel",
    "advantage", "entity_state",
)

BOOL_FIELDS = ("ein_obtained", "bank_account_opened")

UPDATABLE_FIELDS = TEXT_FIELDS + BOOL_FIELDS + ("entity_type", "estimated_costs")


# ---------------------------------------------------------------------------
# Capacity guard
# ---------------------------------------------------------------------------


def assert_can_create(user_id: str, existing_venture_count: int) -> None:
    if existing_venture_count >= MAX_VENTURES_PER_USER:
        log.warning("Venture limit reached for user %s (%d existing)", user_id, existing_venture_count)
        raise CapacityExceeded(f"Maximum {MAX_VENTURES_PER_USER} ventures per user")


def count_for_user(session: Session, user_id: str) -> int:
    return session.execute(
        select(func.count()).select_from(Venture).where(Venture.user_id == user_id)
    ).scalar_one()


def create_venture(session: Session, user_id: str, name: str | None = None) -> Venture:
    """Create a venture, enforcing the per-user ceiling.

    The count and the insert share one per-user critical section, so two
    simultaneous creates at count 2 cannot both succeed.
    """
    if not user_id:
        raise ValidationError("user_id is required")
    if name is not None:
        name = _clean_text("name", name)
    with locks.hold(f"user:{user_id}"):
        assert_can_create(user_id, count_for_user(session, user_id))
        now = utcnow()
        venture = Venture(
            user_id=user_id, name=name or "",
            gate_flags_json=json.dumps(initial_gate_flags()),
            created_at=now, updated_at=now,
        )
        session.add(venture)
        try:
            session.commit()
        except Exception:
            session.rollback()
            raise
    log.info("Venture %s created for user %s", venture.id, user_id)
    return venture


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def get_venture(session: Session, venture_id: str) -> Venture:
    venture = session.get(Venture, venture_id)
    if venture is None:
        raise NotFound("Venture not found")
    return venture


def get_owned(session: Session, venture_id: str, user_id: str | None) -> Venture:
    """Venture *venture_id*, provided *user_id* owns it."""
    venture = get_venture(session, venture_id)
    if user_id is not None and venture.user_id != user_id:
        raise Forbidden("You do not own this venture")
    return venture


def list_for_user(session: Session, user_id: str) -> list[Venture]:
    return list(session.execute(
        select(Venture).where(Venture.user_id == user_id).order_by(Venture.created_at)
    ).scalars().all())


# ---------------------------------------------------------------------------
# Field updates
# ---------------------------------------------------------------------------


def _clean_text(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", {key: "Must be a string"})
    if len(value) > MAX_FIELD_LENGTH:
        raise ValidationError(
            f"{key} is too long", {key: f"Must be at most {MAX_FIELD_LENGTH} characters"},
        )
    return value


def validate_updates(body: dict[str, Any]) -> dict[str, Any]:
    """Check a partial update, collecting every field error before raising."""
    errors: dict[str, str] = {}
    cleaned: dict[str, Any] = {}
    for key, val in body.items():
        if key not in UPDATABLE_FIELDS:
            errors[key] = f"Unknown field: {key}"
            continue
        if val is None:
            continue
        if key in TEXT_FIELDS:
            if not isinstance(val, str):
                errors[key] = "Must be a string"
                continue
            if len(val) > MAX_FIELD_LENGTH:
                errors[key] = f"Must be at most {MAX_FIELD_LENGTH} characters"
                continue
        elif key in BOOL_FIELDS:
            if not isinstance(val, bool):
                errors[key] = "Must be a boolean"
                continue
        elif key == "entity_type":
            if val not in ENTITY_TYPES:
                errors[key] = f"Must be one of: {', '.join(ENTITY_TYPES)}"
                continue
        elif key == "estimated_costs":
            if not isinstance(val, dict) or not all(
                isinstance(val.get(k), (int, float)) and not isinstance(val.get(k), bool)
                for k in ("startup", "monthly")
            ):
                errors[key] = "Must be {startup: number, monthly: number}"
                continue
            if any(val[k] < 0 or not math.isfinite(val[k]) for k in ("startup", "monthly")):
                errors[key] = "startup and monthly must be non-negative finite numbers"
                continue
            val = {"startup": val["startup"], "monthly": val["monthly"]}
        cleaned[key] = val
    if errors:
        raise ValidationError("Validation failed: " + "; ".join(errors.values()), errors)
    if not cleaned:
        raise ValidationError("No valid fields provided", {"_body": "No valid fields provided"})
    return cleaned


def update_venture(session: Session, venture: Venture, body: dict[str, Any]) -> tuple[Venture, list[str]]:
    """Apply a validated partial update; returns the venture and changed field names."""
    updates = validate_updates(body)
    with locks.hold(f"venture:{venture.id}"):
        session.refresh(venture)
        for key, val in updates.items():
            if key == "estimated_costs":
                venture.estimated_costs_json = json.dumps(val)
            else:
                setattr(venture, key, val)
        venture.updated_at = utcnow()
        try:
            session.commit()
        except Exception:
            session.rollback()
            raise
    log.info("Venture %s updated: %s", venture.id, sorted(updates))
    return venture, sorted(updates)


def venture_dict(venture: Venture) -> dict:
    costs = json_parse(venture.estimated_costs_json, {})
    return {
        "id": venture.id, "user_id": venture.user_id, "name": venture.name,
        **{f: getattr(venture, f) for f in TEXT_FIELDS if f != "name"},
        "estimated_costs": costs or None,
        "entity_type": venture.entity_type,
        "entity_skipped": venture.entity_skipped,
        "ein_obtained": venture.ein_obtained,
        "bank_account_opened": venture.bank_account_opened,
        "gate_flags": json_parse(venture.gate_flags_json, {}),
        "created_at": isoformat(venture.created_at),
        "updated_at": isoformat(venture.updated_at),
    }
