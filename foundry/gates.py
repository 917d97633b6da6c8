"""Gate evaluation: which criteria of a phase are currently satisfied.

Auto criteria are named predicates registered against their gate key;
there is no generic inference from field names. Self-reported criteria
read the venture's flag verbatim and default to false.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable, Sequence

from foundry.catalog import GATE_CRITERIA, criteria_for
from foundry.models import Artifact, Venture
from foundry.utils import json_parse

log = logging.getLogger(__name__)

MIN_PROBLEM_STATEMENT_LENGTH = 20
MIN_COMPETITORS = 3

BUSINESS_PLAN_FIELDS = (
    "problem_statement", "solution_statement", "target_customer",
    "offer_description", "revenue_model", "distribution_channel",
    "estimated_costs", "advantage",
)

Predicate = Callable[[Venture, Sequence[Artifact]], bool]

_PREDICATES: dict[str, Predicate] = {}


def predicate(key: str) -> Callable[[Predicate], Predicate]:
    def register(fn: Predicate) -> Predicate:
        _PREDICATES[key] = fn
        return fn
    return register


def _artifacts_of(artifacts: Iterable[Artifact], type_: str, phase_number: int) -> list[Artifact]:
    return [a for a in artifacts if a.type == type_ and a.phase_number == phase_number]


def gate_flags(venture: Venture) -> dict[str, bool]:
    flags = json_parse(venture.gate_flags_json, {})
    return flags if isinstance(flags, dict) else {}


def business_plan_values(venture: Venture) -> dict[str, object]:
    values: dict[str, object] = {f: getattr(venture, f, "") for f in BUSINESS_PLAN_FIELDS if f != "estimated_costs"}
    values["estimated_costs"] = json_parse(venture.estimated_costs_json, {})
    return values


@predicate("problem_statement")
def _problem_statement(venture: Venture, artifacts: Sequence[Artifact]) -> bool:
    return len((venture.problem_statement or "").strip()) >= MIN_PROBLEM_STATEMENT_LENGTH


@predicate("competitors_identified")
def _competitors_identified(venture: Venture, artifacts: Sequence[Artifact]) -> bool:
    # Competitors live in phase-1 CUSTOMER_LIST artifacts, as top-level lists
    count = 0
    for art in _artifacts_of(artifacts, "CUSTOMER_LIST", 1):
        content = json_parse(art.content_json, {})
        if isinstance(content, list):
            count += len(content)
        elif isinstance(content, dict):
            count += sum(len(v) for v in content.values() if isinstance(v, list))
    return count >= MIN_COMPETITORS


@predicate("business_plan_complete")
def _business_plan_complete(venture: Venture, artifacts: Sequence[Artifact]) -> bool:
    return all(v not in (None, "", {}) for v in business_plan_values(venture).values())


@predicate("offer_statement")
def _offer_statement(venture: Venture, artifacts: Sequence[Artifact]) -> bool:
    return bool(_artifacts_of(artifacts, "OFFER_STATEMENT", 2))


@predicate("entity_chosen")
def _entity_chosen(venture: Venture, artifacts: Sequence[Artifact]) -> bool:
    return (venture.entity_type or "NONE") != "NONE" or bool(venture.entity_skipped)


@predicate("growth_plan")
def _growth_plan(venture: Venture, artifacts: Sequence[Artifact]) -> bool:
    return bool(_artifacts_of(artifacts, "GROWTH_PLAN", 5))


def _check_registry() -> None:
    auto_keys = {c.key for criteria in GATE_CRITERIA.values() for c in criteria if c.kind == "auto"}
    missing = auto_keys - set(_PREDICATES)
    if missing:
        raise RuntimeError(f"Auto gates without a predicate: {sorted(missing)}")


_check_registry()


def evaluate(venture: Venture, artifacts: Sequence[Artifact], phase_number: int) -> dict[str, bool]:
    """Return ``{gate_key: satisfied}`` for every criterion of *phase_number*.

    Pure function of the given snapshot; raises ``InvalidPhase`` for a phase
    outside the catalog.
    """
    flags = gate_flags(venture)
    result: dict[str, bool] = {}
    for criterion in criteria_for(phase_number):
        if criterion.kind == "auto":
            result[criterion.key] = bool(_PREDICATES[criterion.key](venture, artifacts))
        else:
            result[criterion.key] = flags.get(criterion.key) is True
    return result
