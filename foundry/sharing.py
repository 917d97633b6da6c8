"""Public share links for artifacts.

An artifact has at most one active share record. Sharing again while it is
active returns the same slug; after a revoke, the old slug resolves to
nothing and the next share mints a fresh one.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from foundry import artifacts
from foundry.catalog import PHASES
from foundry.config import MAX_SLUG_LENGTH, SLUG_LENGTH
from foundry.errors import NotFound, ValidationError
from foundry.locks import locks
from foundry.models import Artifact, ShareRecord, Venture
from foundry.utils import isoformat, json_parse, utcnow

log = logging.getLogger(__name__)

_MAX_MINT_ATTEMPTS = 10


@dataclass(frozen=True)
class SharedArtifact:
    artifact: Artifact
    venture_name: str | None
    phase_name: str

    def to_dict(self) -> dict:
        # public payload: no venture id
        art = self.artifact
        return {
            "artifact": {
                "id": art.id, "type": art.type, "phase_number": art.phase_number,
                "content": json_parse(art.content_json, {}), "version": art.version,
                "created_at": isoformat(art.created_at),
            },
            "venture_name": self.venture_name,
            "phase_name": self.phase_name,
        }


def _active_record(session: Session, artifact_id: str) -> ShareRecord | None:
    return session.execute(
        select(ShareRecord)
        .where(ShareRecord.artifact_id == artifact_id, ShareRecord.revoked.is_(False))
        .execution_options(populate_existing=True)
    ).scalars().first()


def _mint_slug(session: Session) -> str:
    for _ in range(_MAX_MINT_ATTEMPTS):
        slug = secrets.token_hex(SLUG_LENGTH // 2)
        taken = session.execute(
            select(ShareRecord.id).where(ShareRecord.slug == slug)
        ).first()
        if taken is None:
            return slug
    raise RuntimeError("Could not mint a unique share slug")


def share(session: Session, artifact_id: str, venture_id: str | None = None) -> str:
    art = artifacts.get(session, artifact_id, venture_id)
    with locks.hold(f"share:{art.id}"):
        record = _active_record(session, art.id)
        if record is not None:
            return record.slug
        record = ShareRecord(artifact_id=art.id, slug=_mint_slug(session), created_at=utcnow())
        session.add(record)
        try:
            session.commit()
        except Exception:
            session.rollback()
            raise
    log.info("Artifact %s shared as %s", art.id, record.slug)
    return record.slug


def revoke(session: Session, artifact_id: str, venture_id: str | None = None) -> bool:
    """Revoke the active share of an artifact. Returns False if it was not shared."""
    art = artifacts.get(session, artifact_id, venture_id)
    with locks.hold(f"share:{art.id}"):
        record = _active_record(session, art.id)
        if record is None:
            return False
        record.revoked = True
        record.revoked_at = utcnow()
        try:
            session.commit()
        except Exception:
            session.rollback()
            raise
    log.info("Share %s for artifact %s revoked", record.slug, art.id)
    return True


def resolve(session: Session, slug: str) -> SharedArtifact:
    if not slug or len(slug) > MAX_SLUG_LENGTH:
        raise ValidationError("Invalid slug")
    record = session.execute(
        select(ShareRecord)
        .where(ShareRecord.slug == slug)
        .execution_options(populate_existing=True)
    ).scalars().first()
    if record is None or record.revoked:
        raise NotFound("Shared artifact not found or link has been revoked")
    art = session.execute(
        select(Artifact).where(Artifact.id == record.artifact_id)
    ).scalars().one()
    venture = session.get(Venture, art.venture_id)
    phase = PHASES.get(art.phase_number)
    return SharedArtifact(
        artifact=art,
        venture_name=(venture.name or None) if venture else None,
        phase_name=phase.name if phase else f"Phase {art.phase_number}",
    )


def share_status(session: Session, artifact_id: str) -> str | None:
    record = _active_record(session, artifact_id)
    return record.slug if record else None
