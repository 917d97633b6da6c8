from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from foundry import artifacts, phases, quota, services, sharing, ventures
from foundry.catalog import PHASES, criteria_for
from foundry.config import DAILY_MESSAGE_LIMIT, MAX_VENTURES_PER_USER, TRIAL_MESSAGE_LIMIT
from foundry.db import current_db_path, init_db, session_scope
from foundry.errors import EngineError

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def foundry_lifespan(server: FastMCP) -> AsyncIterator[None]:
    if current_db_path() is None:
        init_db()
    yield


mcp = FastMCP(
    "Foundry",
    instructions=(
        "Foundry tracks ventures through five gated phases. Use these read-only tools "
        "to inspect a user's ventures, their phase progress, artifacts and message quota. "
        "Start with get_stats() for an overview, then list_ventures(user_id), then "
        "get_phases(venture_id) for gate details."
    ),
    lifespan=foundry_lifespan,
    json_response=True,
)


def _error(exc: EngineError) -> dict:
    return {"error": {"code": exc.code, "message": exc.message}}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("foundry://overview")
def foundry_overview() -> str:
    """Phase catalog and gate criteria."""
    return json.dumps({
        "system": "Foundry: Venture Progression Engine",
        "phases": [
            {
                "phase_number": p.phase_number, "name": p.name,
                "description": p.description, "core_deliverable": p.core_deliverable,
                "tool_recommendations": list(p.tool_recommendations),
                "gate_criteria": [
                    {"key": c.key, "label": c.label, "gate_type": c.kind}
                    for c in criteria_for(p.phase_number)
                ],
            }
            for p in PHASES.values()
        ],
        "statuses": {
            "LOCKED": "Earlier phase not complete yet.",
            "ACTIVE": "The phase the venture is working on. Exactly one per venture.",
            "COMPLETE": "All gate criteria satisfied.",
        },
        "limits": {
            "ventures_per_user": MAX_VENTURES_PER_USER,
            "daily_messages": DAILY_MESSAGE_LIMIT,
            "trial_messages": TRIAL_MESSAGE_LIMIT,
        },
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
def get_stats() -> dict:
    """Counts of ventures, artifacts, share links and trial sessions."""
    with session_scope() as session:
        return services.compute_stats(session)


@mcp.tool()
def list_ventures(user_id: str) -> list[dict] | dict:
    """List a user's ventures with their current phase."""
    with session_scope() as session:
        try:
            return [services.venture_summary(session, v) for v in ventures.list_for_user(session, user_id)]
        except EngineError as exc:
            return _error(exc)


@mcp.tool()
def get_phases(venture_id: str) -> list[dict] | dict:
    """Derived status and gate criteria of all five phases for a venture."""
    with session_scope() as session:
        try:
            venture = ventures.get_venture(session, venture_id)
            return [v.to_dict() for v in phases.phases_for(session, venture)]
        except EngineError as exc:
            return _error(exc)


@mcp.tool()
def list_artifacts(venture_id: str, phase_number: int | None = None, type: str | None = None) -> list[dict] | dict:
    """List a venture's artifacts.

    Args:
        venture_id: Venture id.
        phase_number: Only artifacts of this phase (1-5).
        type: Only this artifact type, e.g. BUSINESS_PLAN or CUSTOMER_LIST.
    """
    with session_scope() as session:
        try:
            ventures.get_venture(session, venture_id)
            items = artifacts.list_artifacts(session, venture_id, phase_number, type)
            return [services.artifact_detail(session, a) for a in items]
        except EngineError as exc:
            return _error(exc)


@mcp.tool()
def get_shared_artifact(slug: str) -> dict:
    """Resolve a public share slug to its artifact."""
    with session_scope() as session:
        try:
            return sharing.resolve(session, slug).to_dict()
        except EngineError as exc:
            return _error(exc)


@mcp.tool()
def get_quota(venture_id: str) -> dict:
    """Today's message quota for a venture."""
    with session_scope() as session:
        try:
            ventures.get_venture(session, venture_id)
            return quota.venture_status(session, venture_id)
        except EngineError as exc:
            return _error(exc)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Foundry MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
