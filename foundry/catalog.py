"""Static phase and gate catalog.

One table feeds both venture seeding (the initial flag snapshot) and live
gate evaluation. Everything here is frozen at import time and exposed
through read-only mappings; there is no mutation API.
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Literal, Mapping

from foundry.errors import InvalidPhase

GateKind = Literal["auto", "self_reported"]


@dataclass(frozen=True)
class GateCriterion:
    key: str
    label: str
    kind: GateKind


@dataclass(frozen=True)
class PhaseDefinition:
    phase_number: int
    name: str
    description: str
    core_deliverable: str
    tool_recommendations: tuple[str, ...]


_GATES: dict[int, tuple[GateCriterion, ...]] = {
    1: (
        GateCriterion("problem_statement", "Problem statement written (≥20 chars)", "auto"),
        GateCriterion("competitors_identified", "≥3 competitor/existing solutions identified", "auto"),
        GateCriterion("customer_conversations", "≥5 customer conversations logged", "self_reported"),
    ),
    2: (
        GateCriterion("business_plan_complete", "All 8 business plan fields populated", "auto"),
        GateCriterion("offer_statement", "Offer statement finalized", "auto"),
        GateCriterion("pricing_set", "Pricing set", "self_reported"),
    ),
    3: (
        GateCriterion("entity_chosen", "Entity type chosen or explicitly skipped", "auto"),
        GateCriterion("bookkeeping_selected", "Bookkeeping method selected", "self_reported"),
        GateCriterion("bank_status_logged", "Bank account status logged", "self_reported"),
    ),
    4: (
        GateCriterion("distribution_active", "≥1 distribution channel active", "self_reported"),
        GateCriterion("first_outreach", "First outreach sent", "self_reported"),
        GateCriterion("first_customer", "≥1 customer acquired or ≥1 pre-sale", "self_reported"),
    ),
    5: (
        GateCriterion("revenue_positive", "Revenue > $0 (self-reported)", "self_reported"),
        GateCriterion("growth_plan", "90-day growth plan generated", "auto"),
    ),
}

_PHASES: dict[int, PhaseDefinition] = {
    1: PhaseDefinition(
        1, "Discovery",
        "Validate your business idea by understanding the problem, researching "
        "competitors, and talking to potential customers.",
        "Validated problem statement",
        (
            "Google Trends: validate search demand for your problem area",
            "Reddit / Quora: find real conversations about the problem",
            "Calendly: schedule customer discovery calls",
        ),
    ),
    2: PhaseDefinition(
        2, "Planning",
        "Build your 1-page business plan, design your offer, and set pricing, "
        "even if it's 'free beta.'",
        "1-page business plan + offer statement",
        (
            "Lean Canvas template: structured business model format",
            "Stripe or Gumroad: pricing research and payment setup",
            "Google Sheets: financial projections (startup + monthly costs)",
        ),
    ),
    3: PhaseDefinition(
        3, "Formation",
        "Set up the legal and financial foundation: entity type, EIN, bank "
        "account, and bookkeeping method.",
        "Legal entity + bookkeeping setup",
        (
            "IRS EIN Assistant: free online EIN application",
            "Wave: free accounting and invoicing software",
            "Mercury or Relay: business banking with no fees",
        ),
    ),
    4: PhaseDefinition(
        4, "Launch",
        "Activate your first distribution channel, send your first outreach, "
        "and acquire your first customer.",
        "First customer acquired",
        (
            "Mailchimp or ConvertKit: email marketing",
            "Carrd or Linktree: simple landing page",
            "Stripe: accept payments",
        ),
    ),
    5: PhaseDefinition(
        5, "Scale",
        "Generate your 90-day growth plan, integrate AI into your workflow, and "
        "build systems for repeatable revenue.",
        "90-day growth plan (loops indefinitely)",
        (
            "Zapier or Make: workflow automation",
            "Google Analytics: website traffic analysis",
            "Airtable: CRM and pipeline management",
        ),
    ),
}

GATE_CRITERIA: Mapping[int, tuple[GateCriterion, ...]] = MappingProxyType(_GATES)
PHASES: Mapping[int, PhaseDefinition] = MappingProxyType(_PHASES)

# gate key -> owning phase number
GATE_PHASE: Mapping[str, int] = MappingProxyType(
    {c.key: phase for phase, criteria in _GATES.items() for c in criteria}
)

FINAL_PHASE = max(_PHASES)


def _check_catalog() -> None:
    keys = [c.key for criteria in _GATES.values() for c in criteria]
    if len(keys) != len(set(keys)):
        raise RuntimeError("Gate keys must be unique across phases")
    if set(_GATES) != set(_PHASES) or any(not c for c in _GATES.values()):
        raise RuntimeError("Every phase needs a definition and at least one gate")


_check_catalog()


def criteria_for(phase_number: int) -> tuple[GateCriterion, ...]:
    try:
        return GATE_CRITERIA[phase_number]
    except (KeyError, TypeError):
        raise InvalidPhase(phase_number) from None


def phase_definition(phase_number: int) -> PhaseDefinition:
    try:
        return PHASES[phase_number]
    except (KeyError, TypeError):
        raise InvalidPhase(phase_number) from None


def self_reported_keys(phase_number: int) -> frozenset[str]:
    return frozenset(c.key for c in criteria_for(phase_number) if c.kind == "self_reported")


def initial_gate_flags() -> dict[str, bool]:
    """Flag snapshot seeded onto every new venture: all self-reported gates false."""
    return {
        c.key: False
        for criteria in GATE_CRITERIA.values()
        for c in criteria
        if c.kind == "self_reported"
    }
