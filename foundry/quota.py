"""Message quota ledger.

Two policies share one contract, ``try_consume(scope_key, limit)``:

- **venture-daily**: 30 messages per venture per UTC calendar day. The first
  consumption under a new date resets ``used`` before the limit check.
- **trial-lifetime**: 3 messages per anonymous trial session, never reset.

Read, check and increment happen under a per-scope lock and are committed
before the lock is released, so two concurrent requests can never both pass
the check and jointly exceed the limit. A rejected request leaves ``used``
untouched. Callers consume quota *before* any slow external call and must
not hold the lock while awaiting it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from foundry.config import DAILY_MESSAGE_LIMIT, TRIAL_MESSAGE_LIMIT
from foundry.errors import RateLimited, ValidationError
from foundry.locks import locks
from foundry.models import QuotaCounter
from foundry.utils import utcnow

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaGrant:
    granted: bool
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


@dataclass(frozen=True)
class QuotaPolicy:
    scope_key: str
    limit: int
    window_key: str = ""


def venture_daily(venture_id: str, now: datetime | None = None) -> QuotaPolicy:
    now = now or utcnow()
    return QuotaPolicy(f"venture:{venture_id}", DAILY_MESSAGE_LIMIT, now.date().isoformat())


def trial_lifetime(token: str) -> QuotaPolicy:
    return QuotaPolicy(f"trial:{token}", TRIAL_MESSAGE_LIMIT)


def next_reset(now: datetime | None = None) -> datetime:
    """Next UTC midnight, when the venture-daily window rolls over."""
    now = now or utcnow()
    return datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=now.tzinfo)


def _counter(session: Session, scope_key: str) -> QuotaCounter | None:
    return session.execute(
        select(QuotaCounter)
        .where(QuotaCounter.scope_key == scope_key)
        .execution_options(populate_existing=True)
    ).scalars().first()


def try_consume(
    session: Session, scope_key: str, limit: int, window_key: str = "", cost: int = 1,
) -> QuotaGrant:
    """Atomically consume *cost* units from *scope_key* if the limit allows."""
    if cost < 1:
        raise ValidationError("cost must be a positive integer")
    with locks.hold(f"quota:{scope_key}"):
        counter = _counter(session, scope_key)
        used = 0
        if counter is not None and counter.window_key == window_key:
            used = counter.used
        if used + cost > limit:
            log.warning("Quota rejected for %s: %d/%d used, cost %d", scope_key, used, limit, cost)
            return QuotaGrant(granted=False, used=used, limit=limit)
        try:
            if counter is None:
                counter = QuotaCounter(scope_key=scope_key, used=0, limit=limit, window_key=window_key)
                session.add(counter)
            counter.window_key = window_key
            counter.limit = limit
            counter.used = used + cost
            session.commit()
        except Exception:
            session.rollback()
            raise
        return QuotaGrant(granted=True, used=counter.used, limit=limit)


def consume(session: Session, policy: QuotaPolicy, cost: int = 1) -> QuotaGrant:
    """``try_consume`` for *policy*, raising ``RateLimited`` on rejection."""
    grant = try_consume(session, policy.scope_key, policy.limit, policy.window_key, cost)
    if not grant.granted:
        raise RateLimited(
            f"Message limit reached ({policy.limit}). Try again later.",
            limit=policy.limit, remaining=grant.remaining,
        )
    return grant


def release(session: Session, policy: QuotaPolicy, cost: int = 1) -> None:
    """Give back *cost* units consumed for a request whose external call failed.

    A window that has rolled over since the grant is left alone.
    """
    with locks.hold(f"quota:{policy.scope_key}"):
        counter = _counter(session, policy.scope_key)
        if counter is None or counter.window_key != policy.window_key:
            return
        try:
            counter.used = max(0, counter.used - cost)
            session.commit()
        except Exception:
            session.rollback()
            raise
    log.info("Released %d quota unit(s) on %s", cost, policy.scope_key)


def peek(session: Session, policy: QuotaPolicy) -> QuotaGrant:
    """Current usage for *policy* without consuming anything."""
    counter = _counter(session, policy.scope_key)
    used = counter.used if counter is not None and counter.window_key == policy.window_key else 0
    return QuotaGrant(granted=used < policy.limit, used=used, limit=policy.limit)


def venture_status(session: Session, venture_id: str, now: datetime | None = None) -> dict:
    now = now or utcnow()
    grant = peek(session, venture_daily(venture_id, now))
    return {
        "messages_used": grant.used,
        "messages_limit": grant.limit,
        "remaining_today": grant.remaining,
        "resets_at": next_reset(now).isoformat(),
    }
