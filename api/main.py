from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from os import getenv
from typing import List, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy import desc, select

from billing.events import BillingEvent, handle_billing_event
from core.errors import ErrorKind, GenerationError, NotFoundError
from core.logging import setup_logging
from credits.ledger import CreditLedger
from credits.renewal import renew_free_credits
from db.models import Job
from db.session import SessionLocal
from llm.mediator import _load_route
from pipeline.batches import (
    BatchRequest,
    batch_progress,
    create_batch,
    list_scripts,
    request_regeneration,
    script_to_dict,
)

setup_logging("scriptfactory-api")

app = FastAPI(title="ScriptFactory API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_HTTP_STATUS = {
    ErrorKind.INSUFFICIENT_CREDITS: 402,
    ErrorKind.INVARIANT_VIOLATION: 409,
    ErrorKind.MALFORMED_OUTPUT: 502,
    ErrorKind.TRANSIENT: 503,
}


def _ledger() -> CreditLedger:
    return CreditLedger(SessionLocal)


@lru_cache(maxsize=1)
def _queues():
    from pipeline.queue import JobQueues

    return JobQueues.from_env(SessionLocal)


def _http_error(exc: GenerationError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=_HTTP_STATUS.get(exc.kind, 400), detail=str(exc))


def _require_user(x_user_id: str | None = Header(default=None)) -> UUID:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="user_id_required")
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="user_id_invalid")


def _require_operator(x_operator_token: str | None = Header(default=None)) -> None:
    expected = getenv("OPERATOR_TOKEN", "")
    if not expected:
        if getenv("ALLOW_OPS_WITHOUT_TOKEN", "0") == "1":
            return
        raise HTTPException(status_code=503, detail="operator_token_missing")
    if x_operator_token != expected:
        raise HTTPException(status_code=401, detail="operator_token_required")


class RegenerateRequest(BaseModel):
    instruction: str = Field(min_length=1, max_length=2000)


class GrantRequest(BaseModel):
    user_id: UUID
    credit_type: str = "pack"
    amount: int = Field(ge=1)
    expires_at: datetime | None = None
    description: str | None = None


class RenewRequest(BaseModel):
    now: datetime | None = None


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/projects/{project_id}/batches", status_code=202)
def start_batch(
    project_id: UUID,
    payload: BatchRequest,
    user_id: UUID = Depends(_require_user),
) -> dict:
    try:
        batch = create_batch(
            SessionLocal,
            _ledger(),
            _queues(),
            user_id=user_id,
            project_id=project_id,
            request=payload,
        )
    except GenerationError as exc:
        raise _http_error(exc)
    return {
        "batch_id": str(batch.id),
        "status": batch.status,
        "credits_charged": batch.credits_charged,
    }


@app.get("/batches/{batch_id}")
def get_batch(batch_id: UUID, user_id: UUID = Depends(_require_user)) -> dict:
    try:
        return jsonable_encoder(batch_progress(SessionLocal, user_id, batch_id))
    except GenerationError as exc:
        raise _http_error(exc)


@app.get("/batches/{batch_id}/scripts")
def get_batch_scripts(
    batch_id: UUID,
    include_variants: bool = True,
    user_id: UUID = Depends(_require_user),
) -> List[dict]:
    try:
        return jsonable_encoder(list_scripts(SessionLocal, user_id, batch_id, include_variants))
    except GenerationError as exc:
        raise _http_error(exc)


@app.post("/scripts/{script_id}/regenerate", status_code=202)
def regenerate_script(
    script_id: UUID,
    payload: RegenerateRequest,
    user_id: UUID = Depends(_require_user),
) -> dict:
    try:
        variant = request_regeneration(
            SessionLocal,
            _ledger(),
            _queues(),
            user_id=user_id,
            script_id=script_id,
            instruction=payload.instruction,
        )
    except GenerationError as exc:
        raise _http_error(exc)
    return jsonable_encoder(script_to_dict(variant))


@app.get("/users/{user_id}/credits")
def get_credits(user_id: UUID, caller: UUID = Depends(_require_user)) -> dict:
    if caller != user_id:
        raise HTTPException(status_code=404, detail="user_not_found")
    balances = _ledger().get_balances(user_id)
    return {
        "balances": [view.as_dict() for view in balances],
        "total_available": sum(view.effective_balance for view in balances),
    }


@app.get("/users/{user_id}/credits/transactions")
def get_credit_transactions(
    user_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    caller: UUID = Depends(_require_user),
) -> List[dict]:
    if caller != user_id:
        raise HTTPException(status_code=404, detail="user_not_found")
    rows = _ledger().transaction_history(user_id, limit=limit)
    return [
        {
            "id": row.id,
            "credit_type": row.credit_type,
            "amount": row.amount,
            "balance_after": row.balance_after,
            "kind": row.kind,
            "description": row.description,
            "correlation_id": row.correlation_id,
            "created_at": row.created_at,
        }
        for row in rows
    ]


@app.post("/ops/credits/grant")
def ops_grant_credits(payload: GrantRequest, _guard: None = Depends(_require_operator)) -> dict:
    try:
        balance = _ledger().grant(
            payload.user_id,
            payload.credit_type,
            payload.amount,
            payload.expires_at,
            "admin",
            description=payload.description or "Manual grant",
        )
    except GenerationError as exc:
        raise _http_error(exc)
    return {"user_id": str(payload.user_id), "credit_type": payload.credit_type, "balance": balance}


@app.post("/ops/billing-events")
def ops_billing_event(event: BillingEvent, _guard: None = Depends(_require_operator)) -> dict:
    try:
        return handle_billing_event(_ledger(), SessionLocal, event)
    except GenerationError as exc:
        raise _http_error(exc)


@app.post("/ops/credits/renew")
def ops_renew_credits(
    payload: RenewRequest | None = None,
    _guard: None = Depends(_require_operator),
) -> dict:
    summary = renew_free_credits(_ledger(), SessionLocal, now=payload.now if payload else None)
    return summary.as_dict()


@app.get("/ops/jobs")
def list_jobs(
    status: Optional[str] = None,
    job_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _guard: None = Depends(_require_operator),
) -> List[dict]:
    session = SessionLocal()
    try:
        stmt = select(Job)
        if status:
            stmt = stmt.where(Job.status == status)
        if job_type:
            stmt = stmt.where(Job.job_type == job_type)
        stmt = stmt.order_by(desc(Job.created_at)).limit(limit).offset(offset)
        rows = session.execute(stmt).scalars().all()
        return jsonable_encoder(rows)
    finally:
        session.close()


@app.get("/ops/llm-routes")
def llm_routes(_guard: None = Depends(_require_operator)) -> dict:
    routes: dict[str, dict] = {}
    for task in ("plan_generate", "script_expand", "json_repair", "script_regenerate"):
        try:
            route = _load_route(task)
            routes[task] = {
                "provider": route.provider,
                "model": route.model,
                "base_url": route.base_url,
                "api_key_present": bool(route.api_key),
            }
        except Exception as exc:
            routes[task] = {"error": str(exc)}
    return {"routes": routes}

