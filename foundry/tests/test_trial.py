"""Tests for anonymous trial sessions."""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from foundry import quota, trial
from foundry.errors import InvalidState, LLMCallError, NotFound, RateLimited, ValidationError


@pytest.fixture()
def llm():
    client = AsyncMock()
    client.complete.return_value = "Talk to five bakers this week."
    return client


@pytest.fixture()
def token(session):
    return trial.create(session).token


class TestCreate:
    def test_fresh_session(self, session, token):
        assert len(token) == 32
        assert trial.status(session, token) == {
            "messages_used": 0, "messages_limit": 3, "remaining": 3,
            "messages": [], "claimed": False,
        }

    def test_unknown_token(self, session):
        with pytest.raises(NotFound):
            trial.status(session, "nope")


class TestChat:
    @pytest.mark.asyncio
    async def test_three_messages_then_rate_limited(self, session, token, llm):
        remaining = []
        for i in range(3):
            result = await trial.chat(session, token, f"Question {i}", llm)
            remaining.append(result["remaining"])
            assert result["reply"] == "Talk to five bakers this week."
        assert remaining == [2, 1, 0]

        with pytest.raises(RateLimited) as exc:
            await trial.chat(session, token, "One more?", llm)
        assert exc.value.remaining == 0
        assert llm.complete.await_count == 3

        status = trial.status(session, token)
        assert status["messages_used"] == 3
        assert len(status["messages"]) == 6
        assert [m["role"] for m in status["messages"]] == ["user", "assistant"] * 3

    @pytest.mark.asyncio
    async def test_history_sent_to_llm(self, session, token, llm):
        await trial.chat(session, token, "First", llm)
        await trial.chat(session, token, "Second", llm)
        system, messages = llm.complete.await_args.args[:2]
        assert system == trial.TRIAL_SYSTEM_PROMPT
        assert [m["content"] for m in messages] == ["First", "Talk to five bakers this week.", "Second"]
        assert llm.complete.await_args.kwargs["max_tokens"] == 512

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", ["", "   ", "x" * 2001])
    async def test_invalid_message(self, session, token, llm, message):
        with pytest.raises(ValidationError):
            await trial.chat(session, token, message, llm)
        assert trial.status(session, token)["messages_used"] == 0

    @pytest.mark.asyncio
    async def test_unknown_token(self, session, llm):
        with pytest.raises(NotFound):
            await trial.chat(session, "missing", "hi", llm)

    @pytest.mark.asyncio
    async def test_llm_failure_refunds_quota(self, session, token, llm):
        llm.complete.side_effect = LLMCallError("provider down")
        with pytest.raises(LLMCallError):
            await trial.chat(session, token, "Hello?", llm)
        assert quota.peek(session, quota.trial_lifetime(token)).used == 0
        assert trial.status(session, token)["messages"] == []


class TestClaim:
    @pytest.mark.asyncio
    async def test_claimed_session_rejects_chat(self, session, token, llm):
        await trial.chat(session, token, "Is my idea any good?", llm)
        trial.claim(session, token, "user-9")

        status = trial.status(session, token)
        assert status["claimed"] is True
        assert status["remaining"] == 2

        with pytest.raises(InvalidState) as exc:
            await trial.chat(session, token, "Still there?", llm)
        assert exc.value.status_code == 400
        assert llm.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_claim_during_reply_discards_exchange(self, session, token, llm):
        async def claim_then_reply(*args, **kwargs):
            trial.claim(session, token, "user-9")
            return "Sure."

        llm.complete.side_effect = claim_then_reply
        with pytest.raises(InvalidState):
            await trial.chat(session, token, "Quick question", llm)

        status = trial.status(session, token)
        assert status["claimed"] is True
        assert status["messages_used"] == 0
        assert status["messages"] == []
        assert quota.peek(session, quota.trial_lifetime(token)).used == 0

    def test_claim_is_idempotent_for_same_user(self, session, token):
        trial.claim(session, token, "user-9")
        assert trial.claim(session, token, "user-9").claimed_by_user_id == "user-9"

    def test_claim_by_another_user(self, session, token):
        trial.claim(session, token, "user-9")
        with pytest.raises(InvalidState):
            trial.claim(session, token, "user-10")

    def test_claim_unknown(self, session):
        with pytest.raises(NotFound):
            trial.claim(session, "missing", "user-9")

    def test_claim_requires_user(self, session, token):
        with pytest.raises(ValidationError):
            trial.claim(session, token, "")
