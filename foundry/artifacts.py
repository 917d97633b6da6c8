"""Versioned artifact storage.

Versions start at 1 and go up by exactly one per content update. Updates to
the same artifact are serialized, and version + content are written in one
commit, so no reader sees new content with a stale version or the reverse.
Each superseded content is kept in ``artifact_versions``.
"""
from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from foundry.catalog import PHASES
from foundry.errors import NotFound, ValidationError
from foundry.locks import locks
from foundry.models import Artifact, ArtifactVersion, Venture
from foundry.utils import isoformat, json_parse, utcnow

log = logging.getLogger(__name__)


class ArtifactType(str, Enum):
    BUSINESS_PLAN = "BUSINESS_PLAN"
    OFFER_STATEMENT = "OFFER_STATEMENT"
    BRAND_BRIEF = "BRAND_BRIEF"
    FINANCIAL_SHEET = "FINANCIAL_SHEET"
    CUSTOMER_LIST = "CUSTOMER_LIST"
    GTM_PLAN = "GTM_PLAN"
    GROWTH_PLAN = "GROWTH_PLAN"
    CUSTOM = "CUSTOM"


ALLOWED_TYPES = frozenset(t.value for t in ArtifactType)


def _check_phase(phase_number: Any) -> int:
    if isinstance(phase_number, bool) or not isinstance(phase_number, int) or phase_number not in PHASES:
        raise ValidationError(
            "phase_number must be between 1 and 5", {"phase_number": "Must be an integer 1-5"},
        )
    return phase_number


def _check_type(type_: Any) -> str:
    value = type_.value if isinstance(type_, ArtifactType) else type_
    if value not in ALLOWED_TYPES:
        raise ValidationError(
            f"Unknown artifact type: {type_!r}",
            {"type": f"Must be one of: {', '.join(sorted(ALLOWED_TYPES))}"},
        )
    return value


def _check_content(content: Any) -> dict:
    if not isinstance(content, dict):
        raise ValidationError("content must be a JSON object", {"content": "Must be an object"})
    return content


def artifact_dict(art: Artifact) -> dict:
    return {
        "id": art.id, "venture_id": art.venture_id, "phase_number": art.phase_number,
        "type": art.type, "content": json_parse(art.content_json, {}),
        "version": art.version,
        "created_at": isoformat(art.created_at), "updated_at": isoformat(art.updated_at),
    }


def create(session: Session, venture_id: str, phase_number: int, type_: str, content: dict) -> Artifact:
    phase_number = _check_phase(phase_number)
    type_value = _check_type(type_)
    content = _check_content(content)
    if session.get(Venture, venture_id) is None:
        raise NotFound("Venture not found")
    now = utcnow()
    art = Artifact(
        venture_id=venture_id, phase_number=phase_number, type=type_value,
        content_json=json.dumps(content), version=1, created_at=now, updated_at=now,
    )
    session.add(art)
    session.commit()
    log.info("Artifact %s (%s) created for venture %s phase %d",
             art.id, type_value, venture_id, phase_number)
    return art


def get(session: Session, artifact_id: str, venture_id: str | None = None) -> Artifact:
    query = select(Artifact).where(Artifact.id == artifact_id)
    if venture_id is not None:
        query = query.where(Artifact.venture_id == venture_id)
    art = session.execute(query).scalars().first()
    if art is None:
        raise NotFound("Artifact not found")
    return art


def update(session: Session, artifact_id: str, content: dict, venture_id: str | None = None) -> Artifact:
    """Replace content and bump the version by one.

    Scoped to *venture_id* when given; an artifact of another venture is
    reported as not found.
    """
    content = _check_content(content)
    with locks.hold(f"artifact:{artifact_id}"):
        art = get(session, artifact_id, venture_id)
        # Re-read under the lock so the version we bump is the committed one
        session.refresh(art)
        try:
            session.add(ArtifactVersion(
                artifact_id=art.id, version=art.version, content_json=art.content_json,
            ))
            art.content_json = json.dumps(content)
            art.version = art.version + 1
            art.updated_at = utcnow()
            session.commit()
        except Exception:
            session.rollback()
            raise
    log.info("Artifact %s updated to version %d", art.id, art.version)
    return art


def list_artifacts(
    session: Session, venture_id: str, phase_number: int | None = None, type_: str | None = None,
) -> list[Artifact]:
    query = select(Artifact).where(Artifact.venture_id == venture_id)
    if phase_number is not None:
        query = query.where(Artifact.phase_number == _check_phase(phase_number))
    if type_ is not None:
        query = query.where(Artifact.type == _check_type(type_))
    return list(session.execute(query.order_by(Artifact.seq)).scalars().all())


def history(session: Session, artifact_id: str, venture_id: str | None = None) -> list[dict]:
    """Superseded versions, oldest first, followed by the current one."""
    art = get(session, artifact_id, venture_id)
    rows = session.execute(
        select(ArtifactVersion)
        .where(ArtifactVersion.artifact_id == art.id)
        .order_by(ArtifactVersion.version)
    ).scalars().all()
    entries = [
        {"version": r.version, "content": json_parse(r.content_json, {}),
         "created_at": isoformat(r.created_at), "current": False}
        for r in rows
    ]
    entries.append({
        "version": art.version, "content": json_parse(art.content_json, {}),
        "created_at": isoformat(art.updated_at), "current": True,
    })
    return entries
