"""Phase state machine.

Phase status is never stored. Every read derives LOCKED / ACTIVE / COMPLETE
from the current venture and artifact snapshot:

- phase 1 is always reachable; phase *n* is reachable iff phase *n-1* is COMPLETE
- a reachable phase is COMPLETE iff every gate is satisfied, otherwise ACTIVE
- the final phase has no exit gate: once reached it stays ACTIVE and reports
  ``cycle_complete`` when its gates pass
- everything after the first non-COMPLETE phase is LOCKED

Because nothing is cached, clearing a self-reported flag regresses the phase
on the next read and locks everything after it. The only persisted phase
data is ``started_at``, written the first time a phase is observed reachable.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from foundry import gates
from foundry.catalog import FINAL_PHASE, PHASES, criteria_for, phase_definition
from foundry.errors import InvalidState, NotFound, ValidationError
from foundry.locks import locks
from foundry.models import Artifact, PhaseStart, Venture
from foundry.utils import isoformat, utcnow

log = logging.getLogger(__name__)

LOCKED = "LOCKED"
ACTIVE = "ACTIVE"
COMPLETE = "COMPLETE"


@dataclass(frozen=True)
class CriterionStatus:
    key: str
    label: str
    kind: str
    satisfied: bool


@dataclass(frozen=True)
class PhaseView:
    phase_number: int
    name: str
    description: str
    core_deliverable: str
    status: str
    gate_criteria: tuple[CriterionStatus, ...]
    started_at: datetime | None = None
    cycle_complete: bool = False

    @property
    def gate_satisfied(self) -> bool:
        return all(c.satisfied for c in self.gate_criteria)

    def to_dict(self) -> dict:
        return {
            "phase_number": self.phase_number,
            "name": self.name,
            "description": self.description,
            "core_deliverable": self.core_deliverable,
            "status": self.status,
            "gate_criteria": [
                {"key": c.key, "label": c.label, "gate_type": c.kind, "satisfied": c.satisfied}
                for c in self.gate_criteria
            ],
            "gate_satisfied": self.gate_satisfied,
            "started_at": isoformat(self.started_at),
            "cycle_complete": self.cycle_complete,
        }


@dataclass(frozen=True)
class GateEvaluation:
    phase_number: int
    passed: bool
    criteria: tuple[CriterionStatus, ...]
    missing: tuple[CriterionStatus, ...] = field(default_factory=tuple)
    cycle_complete: bool = False
    status: str = ACTIVE

    def to_dict(self) -> dict:
        return {
            "phase_number": self.phase_number,
            "passed": self.passed,
            "status": self.status,
            "cycle_complete": self.cycle_complete,
            "missing": [{"key": c.key, "label": c.label} for c in self.missing],
            "gate_criteria": [
                {"key": c.key, "label": c.label, "gate_type": c.kind, "satisfied": c.satisfied}
                for c in self.criteria
            ],
        }


def derive(
    venture: Venture,
    artifacts: Sequence[Artifact],
    started: Mapping[int, datetime] | None = None,
) -> list[PhaseView]:
    """Derive every phase's view from the venture/artifact snapshot. Pure."""
    started = started or {}
    views: list[PhaseView] = []
    previous_complete = True
    for number in sorted(PHASES):
        definition = phase_definition(number)
        satisfied = gates.evaluate(venture, artifacts, number)
        criteria = tuple(
            CriterionStatus(c.key, c.label, c.kind, satisfied[c.key])
            for c in criteria_for(number)
        )
        all_met = all(c.satisfied for c in criteria)
        cycle_complete = False
        if not previous_complete:
            status = LOCKED
        elif number == FINAL_PHASE:
            status = ACTIVE
            cycle_complete = all_met
        else:
            status = COMPLETE if all_met else ACTIVE
        views.append(PhaseView(
            phase_number=number,
            name=definition.name,
            description=definition.description,
            core_deliverable=definition.core_deliverable,
            status=status,
            gate_criteria=criteria,
            started_at=started.get(number),
            cycle_complete=cycle_complete,
        ))
        previous_complete = status == COMPLETE
    return views


def current_phase(views: Sequence[PhaseView]) -> PhaseView:
    active = [v for v in views if v.status == ACTIVE]
    if len(active) != 1:
        raise RuntimeError(f"Expected exactly one ACTIVE phase, found {len(active)}")
    return active[0]


def _started_map(session: Session, venture_id: str) -> dict[int, datetime]:
    rows = session.execute(
        select(PhaseStart).where(PhaseStart.venture_id == venture_id)
    ).scalars().all()
    return {r.phase_number: r.started_at for r in rows}


def record_starts(session: Session, venture: Venture, views: Sequence[PhaseView]) -> list[PhaseView]:
    """Persist ``started_at`` for reachable phases seen for the first time.

    Existing start times are never overwritten, so a phase that regresses and
    re-activates keeps its original start. Returns views with ``started_at``
    filled in.
    """
    reachable = [v.phase_number for v in views if v.status != LOCKED]
    with locks.hold(f"phase-starts:{venture.id}"):
        started = _started_map(session, venture.id)
        fresh = [n for n in reachable if n not in started]
        if fresh:
            now = utcnow()
            for number in fresh:
                session.add(PhaseStart(venture_id=venture.id, phase_number=number, started_at=now))
                started[number] = now
            session.commit()
            log.info("Venture %s: phases %s started", venture.id, fresh)
    return [
        replace(v, started_at=started.get(v.phase_number))
        for v in views
    ]


def load_artifacts(session: Session, venture_id: str) -> list[Artifact]:
    return list(session.execute(
        select(Artifact).where(Artifact.venture_id == venture_id).order_by(Artifact.seq)
    ).scalars().all())


def phases_for(session: Session, venture: Venture) -> list[PhaseView]:
    """Fresh phase views for *venture*, recording first activations."""
    views = derive(venture, load_artifacts(session, venture.id))
    return record_starts(session, venture, views)


def evaluate_gate(session: Session, venture: Venture, phase_number: int) -> GateEvaluation:
    phase_definition(phase_number)
    view = phases_for(session, venture)[phase_number - 1]
    if view.status == LOCKED:
        raise InvalidState(f"Cannot evaluate gate for locked phase {phase_number}")
    missing = tuple(c for c in view.gate_criteria if not c.satisfied)
    result = GateEvaluation(
        phase_number=phase_number,
        passed=not missing,
        criteria=view.gate_criteria,
        missing=missing,
        cycle_complete=view.cycle_complete,
        status=view.status,
    )
    log.info("Venture %s phase %d gate: passed=%s missing=%s",
             venture.id, phase_number, result.passed, [c.key for c in missing])
    return result


def set_gate_flag(
    session: Session, venture: Venture, phase_number: int, key: str, satisfied: bool,
) -> list[PhaseView]:
    """Set or clear a self-reported gate and return the re-derived phases.

    ``entity_chosen`` is auto-evaluated but may be satisfied by explicitly
    skipping entity formation; setting it toggles that skip.
    """
    criteria = {c.key: c for c in criteria_for(phase_number)}
    criterion = criteria.get(key)
    if criterion is None:
        raise NotFound(f"Gate '{key}' not found in phase {phase_number}")
    if not isinstance(satisfied, bool):
        raise ValidationError("satisfied must be a boolean")

    with locks.hold(f"venture:{venture.id}"):
        session.refresh(venture)
        if criterion.kind == "self_reported":
            flags = gates.gate_flags(venture)
            flags[key] = satisfied
            venture.gate_flags_json = json.dumps(flags)
        elif key == "entity_chosen":
            venture.entity_skipped = satisfied
        else:
            raise ValidationError(f"Gate '{key}' is evaluated automatically")
        venture.updated_at = utcnow()
        session.commit()
    log.info("Venture %s: gate %s set to %s", venture.id, key, satisfied)
    return phases_for(session, venture)
