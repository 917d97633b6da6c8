"""Tests for public artifact share links."""
from __future__ import annotations

import pytest

from foundry import artifacts, sharing, ventures
from foundry.errors import NotFound, ValidationError


@pytest.fixture()
def artifact(session, venture):
    return artifacts.create(session, venture.id, 2, "OFFER_STATEMENT", {"headline": "Starter, monthly"})


class TestShare:
    def test_share_is_idempotent(self, session, artifact):
        first = sharing.share(session, artifact.id)
        second = sharing.share(session, artifact.id)
        assert first == second
        assert len(first) == 12
        assert sharing.share_status(session, artifact.id) == first

    def test_public_payload(self, session, artifact):
        slug = sharing.share(session, artifact.id)
        payload = sharing.resolve(session, slug).to_dict()
        assert payload["venture_name"] == "Sourdough Subscriptions"
        assert payload["phase_name"] == "Planning"
        assert payload["artifact"]["content"] == {"headline": "Starter, monthly"}
        assert "venture_id" not in payload["artifact"]

    def test_resolve_sees_latest_version(self, session, artifact):
        slug = sharing.share(session, artifact.id)
        artifacts.update(session, artifact.id, {"headline": "Now with flour"})
        payload = sharing.resolve(session, slug).to_dict()
        assert payload["artifact"]["version"] == 2
        assert payload["artifact"]["content"]["headline"] == "Now with flour"

    def test_share_scoped_to_venture(self, session, artifact):
        other = ventures.create_venture(session, "user-2")
        with pytest.raises(NotFound):
            sharing.share(session, artifact.id, other.id)


class TestRevoke:
    def test_revoked_slug_is_gone(self, session, artifact):
        slug = sharing.share(session, artifact.id)
        assert sharing.revoke(session, artifact.id) is True
        with pytest.raises(NotFound) as exc:
            sharing.resolve(session, slug)
        assert exc.value.message == "Shared artifact not found or link has been revoked"
        assert sharing.share_status(session, artifact.id) is None

    def test_revoke_unshared(self, session, artifact):
        assert sharing.revoke(session, artifact.id) is False

    def test_reshare_mints_new_slug(self, session, artifact):
        old = sharing.share(session, artifact.id)
        sharing.revoke(session, artifact.id)
        new = sharing.share(session, artifact.id)
        assert new != old
        assert sharing.resolve(session, new).artifact.id == artifact.id


class TestResolve:
    @pytest.mark.parametrize("slug", ["", "x" * 21])
    def test_malformed_slug(self, session, slug):
        with pytest.raises(ValidationError):
            sharing.resolve(session, slug)

    def test_unknown_slug(self, session):
        with pytest.raises(NotFound):
            sharing.resolve(session, "abcdef123456")
