"""Tests for the phase catalog and gate predicates."""
from __future__ import annotations

import json

import pytest

from foundry import artifacts, gates
from foundry.catalog import (
    FINAL_PHASE,
    GATE_CRITERIA,
    GATE_PHASE,
    PHASES,
    criteria_for,
    initial_gate_flags,
    phase_definition,
    self_reported_keys,
)
from foundry.errors import InvalidPhase, ValidationError
from foundry.models import Artifact, Venture


def _venture(**fields) -> Venture:
    fields.setdefault("gate_flags_json", json.dumps(initial_gate_flags()))
    return Venture(user_id="u", **fields)


def _artifact(type_: str, phase: int, content) -> Artifact:
    return Artifact(venture_id="v", phase_number=phase, type=type_, content_json=json.dumps(content), version=1)


class TestCatalog:
    def test_five_phases_in_order(self):
        assert sorted(PHASES) == [1, 2, 3, 4, 5]
        assert [PHASES[n].name for n in sorted(PHASES)] == [
            "Discovery", "Planning", "Formation", "Launch", "Scale",
        ]
        assert FINAL_PHASE == 5

    def test_gate_keys_unique_and_mapped(self):
        keys = [c.key for criteria in GATE_CRITERIA.values() for c in criteria]
        assert len(keys) == len(set(keys)) == 14
        assert GATE_PHASE["entity_chosen"] == 3
        assert GATE_PHASE["growth_plan"] == 5

    def test_catalog_is_read_only(self):
        with pytest.raises(TypeError):
            PHASES[6] = PHASES[1]  # type: ignore[index]
        with pytest.raises(AttributeError):
            PHASES[1].name = "Renamed"  # type: ignore[misc]

    def test_self_reported_keys(self):
        assert self_reported_keys(1) == {"customer_conversations"}
        assert self_reported_keys(4) == {"distribution_active", "first_outreach", "first_customer"}

    def test_initial_flags_all_false(self):
        flags = initial_gate_flags()
        assert flags and not any(flags.values())
        assert "problem_statement" not in flags

    @pytest.mark.parametrize("bad", [0, 6, -1, "1", None])
    def test_out_of_range_phase(self, bad):
        with pytest.raises(InvalidPhase):
            criteria_for(bad)
        with pytest.raises(ValidationError):
            phase_definition(bad)


class TestGatePredicates:
    def test_problem_statement_length_is_stripped(self):
        short = _venture(problem_statement="   too short, padded     ")
        ok = _venture(problem_statement="Bakers waste 30% of dough daily")
        assert gates.evaluate(short, [], 1)["problem_statement"] is False
        assert gates.evaluate(ok, [], 1)["problem_statement"] is True

    def test_competitors_counted_across_customer_lists(self):
        v = _venture()
        arts = [
            _artifact("CUSTOMER_LIST", 1, {"competitors": ["A", "B"]}),
            _artifact("CUSTOMER_LIST", 1, {"alternatives": ["C"], "note": "n/a"}),
        ]
        assert gates.evaluate(v, arts, 1)["competitors_identified"] is True
        assert gates.evaluate(v, arts[:1], 1)["competitors_identified"] is False

    def test_competitors_ignore_other_phases_and_types(self):
        v = _venture()
        arts = [
            _artifact("CUSTOMER_LIST", 2, {"competitors": ["A", "B", "C"]}),
            _artifact("CUSTOMER", 1, {"competitors": ["A", "B", "C"]}),
        ]
        assert gates.evaluate(v, arts, 1)["competitors_identified"] is False

    def test_business_plan_needs_all_eight_fields(self):
        fields = {f: "x" for f in gates.BUSINESS_PLAN_FIELDS if f != "estimated_costs"}
        partial = _venture(**fields)
        assert gates.evaluate(partial, [], 2)["business_plan_complete"] is False
        full = _venture(**fields, estimated_costs_json=json.dumps({"startup": 0, "monthly": 0}))
        assert gates.evaluate(full, [], 2)["business_plan_complete"] is True

    def test_offer_statement_requires_phase_two_artifact(self):
        v = _venture()
        assert gates.evaluate(v, [_artifact("OFFER_STATEMENT", 1, {})], 2)["offer_statement"] is False
        assert gates.evaluate(v, [_artifact("OFFER_STATEMENT", 2, {})], 2)["offer_statement"] is True

    def test_entity_chosen_by_type_or_skip(self):
        assert gates.evaluate(_venture(entity_type="NONE"), [], 3)["entity_chosen"] is False
        assert gates.evaluate(_venture(entity_type="LLC"), [], 3)["entity_chosen"] is True
        assert gates.evaluate(_venture(entity_type="NONE", entity_skipped=True), [], 3)["entity_chosen"] is True

    def test_self_reported_requires_literal_true(self):
        flags = initial_gate_flags()
        flags["customer_conversations"] = "yes"
        v = _venture(gate_flags_json=json.dumps(flags))
        assert gates.evaluate(v, [], 1)["customer_conversations"] is False
        flags["customer_conversations"] = True
        v = _venture(gate_flags_json=json.dumps(flags))
        assert gates.evaluate(v, [], 1)["customer_conversations"] is True

    def test_missing_flags_default_false(self):
        v = Venture(user_id="u", gate_flags_json="not json")
        assert gates.evaluate(v, [], 4) == {
            "distribution_active": False, "first_outreach": False, "first_customer": False,
        }

    def test_growth_plan(self):
        v = _venture()
        assert gates.evaluate(v, [_artifact("GROWTH_PLAN", 5, {"plan": []})], 5)["growth_plan"] is True

    def test_evaluate_unknown_phase(self):
        with pytest.raises(InvalidPhase):
            gates.evaluate(_venture(), [], 9)


def test_artifact_types_cover_gate_inputs():
    assert {"CUSTOMER_LIST", "OFFER_STATEMENT", "GROWTH_PLAN"} <= artifacts.ALLOWED_TYPES
