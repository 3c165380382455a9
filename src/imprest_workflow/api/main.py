from __future__ import annotations

import json
import os
from typing import Any

from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from imprest_workflow.approvals import approval_progress
from imprest_workflow.common.db import db_session, make_engine
from imprest_workflow.common.logging import configure_logging, get_logger
from imprest_workflow.common.settings import Settings, get_settings
from imprest_workflow.common.storage import ReceiptStore
from imprest_workflow.common.utils import utcnow
from imprest_workflow.kernel.errors import ImprestError, InvalidFieldError, UnauthenticatedError
from imprest_workflow.kernel.record import ROLES, Actor, ImprestRecord
from imprest_workflow.store.service import ImprestService, ReceiptFile

log = get_logger("imprest-api")

ENGINE: Engine | None = None
RECEIPT_STORE: ReceiptStore | None = None


# ---------------------------------------------------------------------------
# Request bodies (snake_case or camelCase accepted)
# ---------------------------------------------------------------------------


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateImprestBody(_Body):
    payment_reason: str = Field(alias="paymentReason")
    currency: str
    amount: Any
    payment_type: str = Field(alias="paymentType")
    explanation: str
    attachment_urls: list[str] = Field(default_factory=list, alias="attachmentUrls")
    department: str | None = None


class ExpectBody(_Body):
    expected_status: str | None = Field(default=None, alias="expectedStatus")


class CommentsBody(ExpectBody):
    comments: str = ""


class RejectBody(ExpectBody):
    reason: str = ""


class DisburseBody(ExpectBody):
    amount: Any
    comments: str = ""
    payment_reference: str | None = Field(default=None, alias="paymentReference")


class AcknowledgeBody(ExpectBody):
    received: bool
    comments: str | None = None


class ReceiptBody(_Body):
    description: str = ""
    amount: Any = None
    receipt_url: str | None = Field(default=None, alias="receiptUrl")


class AccountingBody(ExpectBody):
    receipts: list[ReceiptBody] = Field(default_factory=list)
    comments: str | None = None


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_engine_dep(settings: Settings = Depends(get_settings)) -> Engine:
    if ENGINE is not None:
        return ENGINE
    # Fallback for import-time usage (tests).
    return make_engine(settings.imprest_db_dsn)


def get_session(engine: Engine = Depends(get_engine_dep)) -> Session:
    with db_session(engine) as s:
        yield s


def get_service(session: Session = Depends(get_session), settings: Settings = Depends(get_settings)) -> ImprestService:
    return ImprestService(session, settings, receipt_store=RECEIPT_STORE)


def get_actor(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
    x_actor_role: str | None = Header(default=None, alias="X-Actor-Role"),
    x_actor_name: str | None = Header(default=None, alias="X-Actor-Name"),
    x_actor_email: str | None = Header(default=None, alias="X-Actor-Email"),
    x_actor_department: str | None = Header(default=None, alias="X-Actor-Department"),
    settings: Settings = Depends(get_settings),
) -> Actor:
    if settings.auth_mode == "api_key" and (not x_api_key or x_api_key != settings.api_key):
        raise UnauthenticatedError("missing or invalid API key")
    actor_id = (x_actor_id or "").strip()
    role = (x_actor_role or "").strip().lower()
    if not actor_id:
        raise UnauthenticatedError("X-Actor-Id header is required")
    if role not in ROLES:
        raise UnauthenticatedError(f"X-Actor-Role must be one of {', '.join(ROLES)}")
    return Actor(
        id=actor_id,
        role=role,
        name=(x_actor_name or "").strip(),
        email=(x_actor_email or "").strip(),
        department=(x_actor_department or "").strip() or None,
    )


def expected_version(if_match: str | None = Header(default=None, alias="If-Match")) -> int | None:
    if not if_match:
        return None
    tag = if_match.strip()
    if tag.startswith("W/"):
        tag = tag[2:]
    tag = tag.strip('"')
    try:
        return int(tag)
    except ValueError as e:
        raise InvalidFieldError("If-Match must carry the record version", field="If-Match") from e


def _expect(body: ExpectBody, version: int | None) -> dict[str, Any]:
    return {"expected_status": body.expected_status, "expected_version": version}


def _record_out(record: ImprestRecord) -> dict[str, Any]:
    today = utcnow().date()
    out = record.to_dict()
    out["approval_progress"] = approval_progress(record)
    out["days_remaining"] = record.days_remaining(today)
    out["is_overdue"] = record.is_overdue(today)
    return out


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


app = FastAPI(title="Imprest Workflow Service", version=os.getenv("APP_VERSION", "0.1.0"))


@app.on_event("startup")
def _startup() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    global ENGINE
    ENGINE = make_engine(settings.imprest_db_dsn)
    log.info("startup", imprest_env=settings.imprest_env, auth_mode=settings.auth_mode)


@app.exception_handler(ImprestError)
def _imprest_error(request: Request, exc: ImprestError) -> JSONResponse:
    return JSONResponse(status_code=exc.http_status, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:]) or None
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "category": "validation",
                "code": "VALIDATION_FAILED",
                "message": first.get("msg", "invalid request"),
                "field": field,
                "details": {"errors": json.loads(json.dumps(errors, default=str))},
            }
        },
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/imprest/v1/imprests")
def create_imprest(
    body: CreateImprestBody,
    actor: Actor = Depends(get_actor),
    svc: ImprestService = Depends(get_service),
) -> dict[str, Any]:
    record = svc.create_imprest_request(
        actor,
        payment_reason=body.payment_reason,
        currency=body.currency,
        amount=body.amount,
        payment_type=body.payment_type,
        explanation=body.explanation,
        attachment_urls=body.attachment_urls,
        department=body.department,
    )
    return _record_out(record)


@app.get("/imprest/v1/imprests")
def list_imprests(
    status: str | None = None,
    actor: Actor = Depends(get_actor),
    svc: ImprestService = Depends(get_service),
) -> dict[str, Any]:
    return {"items": [_record_out(r) for r in svc.get_all_imprests(actor, status=status)]}


@app.get("/imprest/v1/imprests/mine")
def list_my_imprests(actor: Actor = Depends(get_actor), svc: ImprestService = Depends(get_service)) -> dict[str, Any]:
    return {"items": [_record_out(r) for r in svc.get_my_imprests(actor)]}


@app.get("/imprest/v1/imprests/{imprest_id}")
def get_imprest(
    imprest_id: str, actor: Actor = Depends(get_actor), svc: ImprestService = Depends(get_service)
) -> dict[str, Any]:
    return _record_out(svc.get_imprest_by_id(actor, imprest_id))


@app.post("/imprest/v1/imprests/{imprest_id}/approve/hod")
def approve_hod(
    imprest_id: str,
    body: CommentsBody,
    version: int | None = Depends(expected_version),
    actor: Actor = Depends(get_actor),
    svc: ImprestService = Depends(get_service),
) -> dict[str, Any]:
    return _record_out(svc.approve_hod(actor, imprest_id, body.comments, **_expect(body, version)))


@app.post("/imprest/v1/imprests/{imprest_id}/approve/accountant")
def approve_accountant(
    imprest_id: str,
    body: CommentsBody,
    version: int | None = Depends(expected_version),
    actor: Actor = Depends(get_actor),
    svc: ImprestService = Depends(get_service),
) -> dict[str, Any]:
    return _record_out(svc.approve_accountant(actor, imprest_id, body.comments, **_expect(body, version)))


@app.post("/imprest/v1/imprests/{imprest_id}/reject")
def reject(
    imprest_id: str,
    body: RejectBody,
    version: int | None = Depends(expected_version),
    actor: Actor = Depends(get_actor),
    svc: ImprestService = Depends(get_service),
) -> dict[str, Any]:
    return _record_out(svc.reject(actor, imprest_id, body.reason, **_expect(body, version)))


@app.post("/imprest/v1/imprests/{imprest_id}/disburse")
def disburse(
    imprest_id: str,
    body: DisburseBody,
    request: Request,
    version: int | None = Depends(expected_version),
    actor: Actor = Depends(get_actor),
    svc: ImprestService = Depends(get_service),
) -> dict[str, Any]:
    record = svc.disburse(
        actor,
        imprest_id,
        body.amount,
        body.comments,
        payment_reference=body.payment_reference,
        idempotency_key=request.headers.get("Idempotency-Key"),
        **_expect(body, version),
    )
    return _record_out(record)


@app.post("/imprest/v1/imprests/{imprest_id}/acknowledge")
def acknowledge(
    imprest_id: str,
    body: AcknowledgeBody,
    version: int | None = Depends(expected_version),
    actor: Actor = Depends(get_actor),
    svc: ImprestService = Depends(get_service),
) -> dict[str, Any]:
    record = svc.acknowledge_receipt(actor, imprest_id, body.received, body.comments, **_expect(body, version))
    return _record_out(record)


@app.post("/imprest/v1/imprests/{imprest_id}/accounting")
def submit_accounting(
    imprest_id: str,
    body: AccountingBody,
    request: Request,
    version: int | None = Depends(expected_version),
    actor: Actor = Depends(get_actor),
    svc: ImprestService = Depends(get_service),
) -> dict[str, Any]:
    record = svc.submit_accounting(
        actor,
        imprest_id,
        [r.model_dump() for r in body.receipts],
        body.comments,
        idempotency_key=request.headers.get("Idempotency-Key"),
        **_expect(body, version),
    )
    return _record_out(record)


@app.post("/imprest/v1/imprests/{imprest_id}/accounting/upload")
def submit_accounting_upload(
    imprest_id: str,
    request: Request,
    receipts: str = Form(...),
    comments: str | None = Form(default=None),
    expected_status: str | None = Form(default=None, alias="expectedStatus"),
    receipt_files: list[UploadFile] | None = File(default=None, alias="receiptFiles"),
    version: int | None = Depends(expected_version),
    actor: Actor = Depends(get_actor),
    svc: ImprestService = Depends(get_service),
) -> dict[str, Any]:
    try:
        parsed = json.loads(receipts)
    except json.JSONDecodeError as e:
        raise InvalidFieldError("receipts must be a JSON array", field="receipts") from e
    if not isinstance(parsed, list):
        raise InvalidFieldError("receipts must be a JSON array", field="receipts")
    files = [
        ReceiptFile(filename=f.filename or "receipt", content=f.file.read(), content_type=f.content_type)
        for f in receipt_files or []
    ]
    record = svc.submit_accounting(
        actor,
        imprest_id,
        parsed,
        comments,
        receipt_files=files,
        idempotency_key=request.headers.get("Idempotency-Key"),
        expected_status=expected_status,
        expected_version=version,
    )
    return _record_out(record)


@app.post("/imprest/v1/imprests/{imprest_id}/accounting/verify")
def verify_accounting(
    imprest_id: str,
    body: CommentsBody,
    version: int | None = Depends(expected_version),
    actor: Actor = Depends(get_actor),
    svc: ImprestService = Depends(get_service),
) -> dict[str, Any]:
    return _record_out(svc.verify_accounting(actor, imprest_id, body.comments, **_expect(body, version)))


@app.post("/imprest/v1/imprests/{imprest_id}/resolve")
def resolve(
    imprest_id: str,
    body: CommentsBody,
    version: int | None = Depends(expected_version),
    actor: Actor = Depends(get_actor),
    svc: ImprestService = Depends(get_service),
) -> dict[str, Any]:
    return _record_out(svc.resolve(actor, imprest_id, body.comments, **_expect(body, version)))


@app.get("/imprest/v1/imprests/{imprest_id}/progress")
def get_progress(
    imprest_id: str, actor: Actor = Depends(get_actor), svc: ImprestService = Depends(get_service)
) -> dict[str, Any]:
    return svc.approval_progress(actor, imprest_id)


@app.get("/imprest/v1/imprests/{imprest_id}/balance")
def get_balance(
    imprest_id: str, actor: Actor = Depends(get_actor), svc: ImprestService = Depends(get_service)
) -> dict[str, Any]:
    return {"imprest_id": imprest_id, **svc.balance_preview(actor, imprest_id).to_dict()}


@app.get("/imprest/v1/stats")
def get_stats(actor: Actor = Depends(get_actor), svc: ImprestService = Depends(get_service)) -> dict[str, Any]:
    return svc.stats(actor).to_dict()


@app.get("/imprest/v1/stats/mine")
def get_my_stats(actor: Actor = Depends(get_actor), svc: ImprestService = Depends(get_service)) -> dict[str, Any]:
    return svc.stats(actor, mine=True).to_dict()


def run() -> None:
    import uvicorn

    uvicorn.run(
        "imprest_workflow.api.main:app",
        host=os.getenv("IMPREST_HOST", "0.0.0.0"),
        port=int(os.getenv("IMPREST_PORT", "8000")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
