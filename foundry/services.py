"""Shared read models for the Foundry API and MCP server."""
from __future__ import annotations

import logging
from collections import Counter

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from foundry import artifacts, phases, sharing
from foundry.models import Artifact, ShareRecord, TrialSession, Venture
from foundry.ventures import venture_dict

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def venture_summary(session: Session, venture: Venture) -> dict:
    views = phases.phases_for(session, venture)
    current = phases.current_phase(views)
    return {
        "id": venture.id, "name": venture.name, "user_id": venture.user_id,
        "current_phase": current.phase_number,
        "current_phase_name": current.name,
        "cycle_complete": current.cycle_complete,
        "artifact_count": len(venture.artifacts),
    }


def venture_detail(session: Session, venture: Venture) -> dict:
    views = phases.phases_for(session, venture)
    base = venture_dict(venture)
    base["current_phase"] = phases.current_phase(views).phase_number
    base["phases"] = [v.to_dict() for v in views]
    return base


def artifact_detail(session: Session, art: Artifact) -> dict:
    base = artifacts.artifact_dict(art)
    base["share_slug"] = sharing.share_status(session, art.id)
    return base


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def compute_stats(session: Session) -> dict:
    ventures = session.execute(select(Venture)).scalars().all()
    by_phase: Counter[int] = Counter()
    for venture in ventures:
        views = phases.derive(venture, phases.load_artifacts(session, venture.id))
        by_phase[phases.current_phase(views).phase_number] += 1
    by_type = dict(session.execute(
        select(Artifact.type, func.count()).group_by(Artifact.type)
    ).all())
    active_shares = session.execute(
        select(func.count()).select_from(ShareRecord).where(ShareRecord.revoked.is_(False))
    ).scalar_one()
    trials = session.execute(select(func.count()).select_from(TrialSession)).scalar_one()
    claimed = session.execute(
        select(func.count()).select_from(TrialSession)
        .where(TrialSession.claimed_by_user_id.is_not(None))
    ).scalar_one()
    return {
        "ventures": len(ventures),
        "users": len({v.user_id for v in ventures}),
        "by_current_phase": {str(k): v for k, v in sorted(by_phase.items())},
        "artifacts_by_type": by_type,
        "active_shares": active_shares,
        "trial_sessions": trials,
        "trial_sessions_claimed": claimed,
    }
