"""Tests for versioned artifact storage."""
from __future__ import annotations

import threading

import pytest
from sqlalchemy import select

from foundry import artifacts, ventures
from foundry.errors import NotFound, ValidationError
from foundry.models import ArtifactVersion


class TestCreate:
    def test_starts_at_version_one(self, session, venture):
        art = artifacts.create(session, venture.id, 2, "BUSINESS_PLAN", {"problem": "p"})
        assert art.version == 1
        data = artifacts.artifact_dict(art)
        assert data["content"] == {"problem": "p"}
        assert data["type"] == "BUSINESS_PLAN"

    def test_accepts_enum_type(self, session, venture):
        art = artifacts.create(session, venture.id, 1, artifacts.ArtifactType.CUSTOMER_LIST, {})
        assert art.type == "CUSTOMER_LIST"

    @pytest.mark.parametrize("phase", [0, 6, "2", True, None])
    def test_bad_phase(self, session, venture, phase):
        with pytest.raises(ValidationError) as exc:
            artifacts.create(session, venture.id, phase, "CUSTOM", {})
        assert "phase_number" in exc.value.details

    def test_bad_type(self, session, venture):
        with pytest.raises(ValidationError):
            artifacts.create(session, venture.id, 1, "PITCH_DECK", {})

    def test_content_must_be_object(self, session, venture):
        with pytest.raises(ValidationError):
            artifacts.create(session, venture.id, 1, "CUSTOM", ["a", "b"])

    def test_unknown_venture(self, session):
        with pytest.raises(NotFound):
            artifacts.create(session, "missing", 1, "CUSTOM", {})


class TestUpdate:
    def test_each_update_bumps_by_one(self, session, venture):
        art = artifacts.create(session, venture.id, 2, "OFFER_STATEMENT", {"headline": "v1"})
        for n in range(2, 5):
            art = artifacts.update(session, art.id, {"headline": f"v{n}"})
            assert art.version == n
        assert artifacts.artifact_dict(art)["content"] == {"headline": "v4"}

    def test_history_keeps_superseded_content(self, session, venture):
        art = artifacts.create(session, venture.id, 2, "OFFER_STATEMENT", {"headline": "first"})
        artifacts.update(session, art.id, {"headline": "second"})
        entries = artifacts.history(session, art.id)
        assert [(e["version"], e["content"]["headline"], e["current"]) for e in entries] == [
            (1, "first", False), (2, "second", True),
        ]

    def test_rejected_update_changes_nothing(self, session, venture):
        art = artifacts.create(session, venture.id, 1, "CUSTOM", {"a": 1})
        with pytest.raises(ValidationError):
            artifacts.update(session, art.id, "not an object")
        assert artifacts.get(session, art.id).version == 1
        assert session.execute(select(ArtifactVersion)).scalars().all() == []

    def test_scoped_to_venture(self, session, venture):
        other = ventures.create_venture(session, "user-2", "Other")
        art = artifacts.create(session, other.id, 1, "CUSTOM", {})
        with pytest.raises(NotFound):
            artifacts.update(session, art.id, {"x": 1}, venture_id=venture.id)
        with pytest.raises(NotFound):
            artifacts.get(session, art.id, venture.id)

    def test_unknown_artifact(self, session):
        with pytest.raises(NotFound):
            artifacts.update(session, "nope", {})


class TestListing:
    def test_creation_order_and_filters(self, session, venture):
        a = artifacts.create(session, venture.id, 1, "CUSTOMER_LIST", {})
        b = artifacts.create(session, venture.id, 2, "BUSINESS_PLAN", {})
        c = artifacts.create(session, venture.id, 1, "CUSTOM", {})
        assert [x.id for x in artifacts.list_artifacts(session, venture.id)] == [a.id, b.id, c.id]
        assert [x.id for x in artifacts.list_artifacts(session, venture.id, phase_number=1)] == [a.id, c.id]
        assert [x.id for x in artifacts.list_artifacts(session, venture.id, type_="BUSINESS_PLAN")] == [b.id]

    def test_filter_validation(self, session, venture):
        with pytest.raises(ValidationError):
            artifacts.list_artifacts(session, venture.id, phase_number=9)


def test_concurrent_updates_produce_gapless_versions(file_sessions):
    setup = file_sessions()
    venture = ventures.create_venture(setup, "user-c", "Concurrent")
    art = artifacts.create(setup, venture.id, 1, "CUSTOM", {"n": 0})
    setup.close()

    workers, per_worker = 8, 5
    errors: list[BaseException] = []
    barrier = threading.Barrier(workers)

    def run(worker: int):
        sess = file_sessions()
        try:
            barrier.wait()
            for i in range(per_worker):
                artifacts.update(sess, art.id, {"worker": worker, "i": i})
        except BaseException as exc:  # surfaced below
            errors.append(exc)
        finally:
            sess.close()

    threads = [threading.Thread(target=run, args=(w,)) for w in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    check = file_sessions()
    try:
        final = artifacts.get(check, art.id)
        assert final.version == 1 + workers * per_worker
        versions = [e["version"] for e in artifacts.history(check, art.id)]
        assert versions == list(range(1, final.version + 1))
    finally:
        check.close()
