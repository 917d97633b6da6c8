from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Generator

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from foundry import artifacts, copilot, phases, quota, services, sharing, trial, ventures
from foundry.db import current_db_path, get_session, init_db
from foundry.errors import EngineError, Forbidden, RateLimited, Unauthorized, ValidationError
from foundry.llm import LLMClient
from foundry.models import Venture
from foundry.schemas import (
    ArtifactCreate,
    ArtifactUpdate,
    ChatRequest,
    Envelope,
    GateFlagUpdate,
    GenerateRequest,
    PhaseOut,
    QuotaOut,
    StatsOut,
    TrialChatRequest,
    TrialClaimRequest,
    VentureCreate,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if current_db_path() is None:
        init_db()
    yield


app = FastAPI(
    title="Foundry",
    version="0.1.0",
    description=(
        "Venture progression API. Tracks a founder's venture through five gated "
        "phases (Discovery, Planning, Formation, Launch, Scale), stores versioned "
        "artifacts, enforces message quotas and serves public share links. "
        "Authenticated routes read the caller from the X-User-Id header."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Ventures", "description": "Create, list and update ventures."},
        {"name": "Phases", "description": "Derived phase status and gate criteria."},
        {"name": "Artifacts", "description": "Versioned phase deliverables."},
        {"name": "Sharing", "description": "Public read-only artifact links."},
        {"name": "Copilot", "description": "LLM chat and artifact generation. Uses the daily quota."},
        {"name": "Trial", "description": "Anonymous three-message trial chat."},
        {"name": "Stats", "description": "Aggregate counts."},
    ],
)


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"code": code, "message": message, **extra}})


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    extra: dict[str, Any] = {}
    if isinstance(exc, ValidationError) and exc.details:
        extra["details"] = exc.details
    if isinstance(exc, RateLimited):
        extra.update(remaining=exc.remaining, messages_limit=exc.limit)
    if exc.status_code >= 500:
        log.warning("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.code, exc.message, **extra)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = {".".join(str(p) for p in e["loc"][1:]) or "_body": e["msg"] for e in exc.errors()}
    return _error(400, "VALIDATION", "Invalid request", details=details)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def current_user(x_user_id: str | None = Header(None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise Unauthorized("Authentication required")
    return x_user_id.strip()


def llm_client() -> LLMClient:
    return LLMClient()


def _owned(session: Session, venture_id: str, user_id: str) -> Venture:
    return ventures.get_owned(session, venture_id, user_id)


def _data(value: Any) -> dict:
    return {"data": value}


# ---------------------------------------------------------------------------
# Routes: Ventures
# ---------------------------------------------------------------------------


@app.post("/api/ventures", status_code=201, tags=["Ventures"],
          summary="Create a venture (at most 3 per user)")
async def create_venture(body: VentureCreate | None = None, user_id: str = Depends(current_user),
                         session: Session = Depends(db_session)):
    venture = ventures.create_venture(session, user_id, body.name if body else None)
    return _data(services.venture_detail(session, venture))


@app.get("/api/users/{user_id}/ventures", tags=["Ventures"], summary="List a user's ventures")
async def list_ventures(user_id: str, caller: str = Depends(current_user),
                        session: Session = Depends(db_session)):
    if user_id != caller:
        raise Forbidden("You can only list your own ventures")
    return _data([services.venture_summary(session, v) for v in ventures.list_for_user(session, user_id)])


@app.get("/api/ventures/{venture_id}", tags=["Ventures"], summary="Venture detail with phases")
async def get_venture(venture_id: str, user_id: str = Depends(current_user),
                      session: Session = Depends(db_session)):
    return _data(services.venture_detail(session, _owned(session, venture_id, user_id)))


@app.patch("/api/ventures/{venture_id}", tags=["Ventures"],
           summary="Update venture fields (partial update, unknown fields rejected)")
async def update_venture(venture_id: str, body: dict[str, Any], user_id: str = Depends(current_user),
                         session: Session = Depends(db_session)):
    venture = _owned(session, venture_id, user_id)
    venture, changed = ventures.update_venture(session, venture, body)
    return _data({**services.venture_detail(session, venture), "changed_fields": changed})


# ---------------------------------------------------------------------------
# Routes: Phases
# ---------------------------------------------------------------------------


@app.get("/api/ventures/{venture_id}/phases", response_model=Envelope[list[PhaseOut]],
         tags=["Phases"], summary="Derived status of all five phases")
async def get_phases(venture_id: str, user_id: str = Depends(current_user),
                     session: Session = Depends(db_session)):
    venture = _owned(session, venture_id, user_id)
    return _data([v.to_dict() for v in phases.phases_for(session, venture)])


@app.post("/api/ventures/{venture_id}/phases/{phase_number}/gate", tags=["Phases"],
          summary="Evaluate a phase's gate and report missing criteria")
async def evaluate_gate(venture_id: str, phase_number: int, user_id: str = Depends(current_user),
                        session: Session = Depends(db_session)):
    venture = _owned(session, venture_id, user_id)
    return _data(phases.evaluate_gate(session, venture, phase_number).to_dict())


@app.patch("/api/ventures/{venture_id}/phases/{phase_number}/gate/{key}", tags=["Phases"],
           summary="Set or clear a self-reported gate criterion")
async def set_gate_flag(venture_id: str, phase_number: int, key: str, body: GateFlagUpdate,
                        user_id: str = Depends(current_user), session: Session = Depends(db_session)):
    venture = _owned(session, venture_id, user_id)
    views = phases.set_gate_flag(session, venture, phase_number, key, body.satisfied)
    return _data([v.to_dict() for v in views])


# ---------------------------------------------------------------------------
# Routes: Artifacts
# ---------------------------------------------------------------------------


@app.get("/api/ventures/{venture_id}/artifacts", tags=["Artifacts"],
         summary="List artifacts, optionally by phase and type")
async def list_artifacts(
    venture_id: str,
    phase_number: int | None = Query(None, ge=1, le=5),
    type: str | None = Query(None, description="Artifact type, e.g. BUSINESS_PLAN"),
    user_id: str = Depends(current_user),
    session: Session = Depends(db_session),
):
    _owned(session, venture_id, user_id)
    items = artifacts.list_artifacts(session, venture_id, phase_number, type)
    return _data([services.artifact_detail(session, a) for a in items])


@app.post("/api/ventures/{venture_id}/artifacts", status_code=201, tags=["Artifacts"],
          summary="Create an artifact at version 1")
async def create_artifact(venture_id: str, body: ArtifactCreate, user_id: str = Depends(current_user),
                          session: Session = Depends(db_session)):
    _owned(session, venture_id, user_id)
    art = artifacts.create(session, venture_id, body.phase_number, body.type, body.content)
    return _data(artifacts.artifact_dict(art))


@app.put("/api/ventures/{venture_id}/artifacts/{artifact_id}", tags=["Artifacts"],
         summary="Replace artifact content and bump the version")
async def update_artifact(venture_id: str, artifact_id: str, body: ArtifactUpdate,
                          user_id: str = Depends(current_user), session: Session = Depends(db_session)):
    _owned(session, venture_id, user_id)
    art = artifacts.update(session, artifact_id, body.content, venture_id)
    return _data(artifacts.artifact_dict(art))


@app.get("/api/ventures/{venture_id}/artifacts/{artifact_id}/versions", tags=["Artifacts"],
         summary="Version history, oldest first")
async def artifact_versions(venture_id: str, artifact_id: str, user_id: str = Depends(current_user),
                            session: Session = Depends(db_session)):
    _owned(session, venture_id, user_id)
    return _data(artifacts.history(session, artifact_id, venture_id))


# ---------------------------------------------------------------------------
# Routes: Sharing
# ---------------------------------------------------------------------------


@app.post("/api/ventures/{venture_id}/artifacts/{artifact_id}/share", tags=["Sharing"],
          summary="Create (or return the existing) public share link")
async def share_artifact(venture_id: str, artifact_id: str, user_id: str = Depends(current_user),
                         session: Session = Depends(db_session)):
    _owned(session, venture_id, user_id)
    slug = sharing.share(session, artifact_id, venture_id)
    return _data({"slug": slug, "share_url": f"/shared/{slug}"})


@app.delete("/api/ventures/{venture_id}/artifacts/{artifact_id}/share", tags=["Sharing"],
            summary="Revoke the artifact's public share link")
async def revoke_share(venture_id: str, artifact_id: str, user_id: str = Depends(current_user),
                       session: Session = Depends(db_session)):
    _owned(session, venture_id, user_id)
    return _data({"revoked": sharing.revoke(session, artifact_id, venture_id)})


@app.get("/api/shared/{slug}", tags=["Sharing"], summary="Public read of a shared artifact (no auth)")
async def get_shared(slug: str, session: Session = Depends(db_session)):
    return _data(sharing.resolve(session, slug).to_dict())


# ---------------------------------------------------------------------------
# Routes: Copilot
# ---------------------------------------------------------------------------


@app.post("/api/ventures/{venture_id}/chat", tags=["Copilot"],
          summary="Chat with the copilot about a phase (1 quota unit)")
async def venture_chat(venture_id: str, body: ChatRequest, user_id: str = Depends(current_user),
                       session: Session = Depends(db_session), client: LLMClient = Depends(llm_client)):
    venture = _owned(session, venture_id, user_id)
    return _data(await copilot.chat(session, venture, body.message, client,
                                    body.phase_number, body.conversation_id))


@app.get("/api/ventures/{venture_id}/conversations", tags=["Copilot"],
         summary="Copilot conversation history, newest first")
async def venture_conversations(venture_id: str, phase_number: int | None = Query(None, ge=1, le=5),
                                user_id: str = Depends(current_user), session: Session = Depends(db_session)):
    _owned(session, venture_id, user_id)
    return _data(copilot.chat_history(session, venture_id, phase_number))


@app.post("/api/ventures/{venture_id}/generate", status_code=201, tags=["Copilot"],
          summary="Generate an artifact with the LLM (3 quota units)")
async def generate_artifact(venture_id: str, body: GenerateRequest, user_id: str = Depends(current_user),
                            session: Session = Depends(db_session), client: LLMClient = Depends(llm_client)):
    venture = _owned(session, venture_id, user_id)
    return _data(await copilot.generate_artifact(session, venture, body.phase_number, body.type, client))


@app.get("/api/ventures/{venture_id}/quota", response_model=Envelope[QuotaOut], tags=["Copilot"],
         summary="Today's message quota for the venture")
async def venture_quota(venture_id: str, user_id: str = Depends(current_user),
                        session: Session = Depends(db_session)):
    _owned(session, venture_id, user_id)
    return _data(quota.venture_status(session, venture_id))


# ---------------------------------------------------------------------------
# Routes: Trial
# ---------------------------------------------------------------------------


@app.post("/api/trial/session", status_code=201, tags=["Trial"], summary="Start an anonymous trial session")
async def create_trial(session: Session = Depends(db_session)):
    created = trial.create(session)
    return _data({"session_token": created.token, **trial.status(session, created.token)})


@app.post("/api/trial/chat", tags=["Trial"], summary="Send a trial message (3 per session)")
async def trial_chat(body: TrialChatRequest, session: Session = Depends(db_session),
                     client: LLMClient = Depends(llm_client)):
    return _data(await trial.chat(session, body.session_token, body.message, client))


@app.get("/api/trial/session/{token}", tags=["Trial"], summary="Trial session status and message log")
async def trial_status(token: str, session: Session = Depends(db_session)):
    return _data(trial.status(session, token))


@app.post("/api/trial/claim", tags=["Trial"], summary="Link a trial session to the signed-in user")
async def claim_trial(body: TrialClaimRequest, user_id: str = Depends(current_user),
                      session: Session = Depends(db_session)):
    claimed = trial.claim(session, body.session_token, user_id)
    return _data({"claimed": True, "claimed_by_user_id": claimed.claimed_by_user_id})


# ---------------------------------------------------------------------------
# Routes: Stats
# ---------------------------------------------------------------------------


@app.get("/api/stats", response_model=Envelope[StatsOut], tags=["Stats"], summary="Aggregate counts")
async def get_stats(session: Session = Depends(db_session)):
    return _data(services.compute_stats(session))


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("foundry.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
