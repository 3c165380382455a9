"""Transactional imprest operations.

Each mutating call runs inside the caller's session:

    load -> authorize -> expected status/version -> handler (state, guards) -> CAS update -> audit

Handlers work on frozen records, so a refusal at any step leaves nothing to
undo in memory; the surrounding ``db_session`` rolls back the database side.
Every call returns the authoritative post-transition record.
"""
from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from imprest_workflow import approvals, disbursement, recon, reports
from imprest_workflow.common.logging import get_logger
from imprest_workflow.common.settings import Settings
from imprest_workflow.common.storage import ReceiptStore
from imprest_workflow.common.utils import new_uuid, utcnow
from imprest_workflow.kernel import policy
from imprest_workflow.kernel.errors import (
    ForbiddenError,
    IdempotencyConflictError,
    ImprestError,
    InvalidFieldError,
    StaleStateError,
)
from imprest_workflow.kernel.money import money_str, positive_amount
from imprest_workflow.kernel.record import ROLE_HOD, Actor, ImprestRecord
from imprest_workflow.kernel.states import ImprestEvent, ImprestStatus, StateMachine, default_machine
from imprest_workflow.store.repository import ImprestRepository

log = get_logger("imprest.service")

PAYMENT_TYPES = ("Contingency Cash", "Purchase Cash", "Travel Cash", "Others")

PAYMENT_REASON_MIN, PAYMENT_REASON_MAX = 5, 100
EXPLANATION_MIN, EXPLANATION_MAX = 10, 500


@dataclass(frozen=True)
class ReceiptFile:
    filename: str
    content: bytes
    content_type: str | None = None


def _text_field(value: Any, field: str, lo: int, hi: int) -> str:
    text = str(value or "").strip()
    if not lo <= len(text) <= hi:
        raise InvalidFieldError(f"{field} must be between {lo} and {hi} characters", field=field)
    return text


class ImprestService:
    def __init__(
        self,
        session: Session,
        settings: Settings,
        *,
        receipt_store: ReceiptStore | None = None,
        clock: Callable[[], datetime] = utcnow,
        machine: StateMachine = default_machine,
    ) -> None:
        self.repo = ImprestRepository(session)
        self.settings = settings
        self.receipt_store = receipt_store
        self.clock = clock
        self.machine = machine

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_imprest_request(
        self,
        actor: Actor,
        *,
        payment_reason: str,
        currency: str,
        amount: Any,
        payment_type: str,
        explanation: str,
        attachment_urls: Sequence[str] | None = None,
        department: str | None = None,
        request_date: date | None = None,
    ) -> ImprestRecord:
        now = self.clock()
        reason = _text_field(payment_reason, "payment_reason", PAYMENT_REASON_MIN, PAYMENT_REASON_MAX)
        expl = _text_field(explanation, "explanation", EXPLANATION_MIN, EXPLANATION_MAX)
        code = str(currency or "").strip().upper()
        if code not in self.settings.allowed_currencies:
            raise InvalidFieldError(
                f"currency must be one of {', '.join(self.settings.allowed_currencies)}",
                field="currency",
            )
        if payment_type not in PAYMENT_TYPES:
            raise InvalidFieldError(f"payment_type must be one of {', '.join(PAYMENT_TYPES)}", field="payment_type")
        requested = positive_amount(amount)
        dept = (department or actor.department or "").strip()
        if not dept:
            raise InvalidFieldError("department is required", field="department")

        requested_on = request_date or now.date()
        record = ImprestRecord(
            id=new_uuid(),
            requester=Actor(
                id=actor.id,
                role=actor.role,
                name=actor.name,
                email=actor.email,
                department=dept,
                payroll_number=actor.payroll_number,
            ),
            department=dept,
            payment_reason=reason,
            payment_type=payment_type,
            currency=code,
            amount=requested,
            explanation=expl,
            request_date=requested_on,
            due_date=requested_on + timedelta(days=self.settings.accounting_window_days),
            status=ImprestStatus.PENDING_HOD,
            created_at=now,
            updated_at=now,
            attachment_urls=tuple(u for u in (attachment_urls or ()) if u),
        )
        self.repo.insert(record)
        self.repo.append_audit(
            record, event="create", from_status=None, actor=actor, payload={"amount": money_str(requested)}
        )
        log.info(
            "imprest_transition",
            imprest_id=record.id,
            transition="create",
            from_status=None,
            to_status=record.status.value,
            actor_id=actor.id,
            version=record.version,
        )
        return record

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        actor: Actor,
        imprest_id: str,
        event: ImprestEvent,
        apply: Callable[[ImprestRecord, datetime], ImprestRecord],
        *,
        expected_status: str | None = None,
        expected_version: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> ImprestRecord:
        record = self.repo.get(imprest_id)
        ev = ImprestEvent(event)
        try:
            policy.authorize(actor, record, ev)
            if expected_status is not None and record.status.value != expected_status:
                raise StaleStateError(
                    record.id,
                    f"imprest {record.id} is {record.status.value}, expected {expected_status}",
                    expected_status=expected_status,
                    status=record.status.value,
                )
            if expected_version is not None and record.version != expected_version:
                raise StaleStateError(
                    record.id,
                    f"imprest {record.id} is at version {record.version}, expected {expected_version}",
                    expected_version=expected_version,
                    version=record.version,
                )
            updated = apply(record, self.clock())
            saved = self.repo.update(updated, expected_version=record.version)
        except ImprestError as e:
            log.warning(
                "imprest_transition_refused",
                imprest_id=record.id,
                transition=ev.value,
                status=record.status.value,
                actor_id=actor.id,
                code=e.code,
                error=e.message,
            )
            raise
        self.repo.append_audit(saved, event=ev.value, from_status=record.status.value, actor=actor, payload=payload)
        log.info(
            "imprest_transition",
            imprest_id=saved.id,
            transition=ev.value,
            from_status=record.status.value,
            to_status=saved.status.value,
            actor_id=actor.id,
            version=saved.version,
        )
        return saved

    def _replay(
        self, actor: Actor, key: str | None, event: ImprestEvent, imprest_id: str
    ) -> ImprestRecord | None:
        if not key:
            return None
        existing = self.repo.get_idempotency(key)
        if existing is None:
            return None
        operation = event.value
        if existing.operation != operation or existing.imprest_id != imprest_id:
            raise IdempotencyConflictError(
                "Idempotency-Key was already used for a different request",
                details={"operation": existing.operation, "imprest_id": existing.imprest_id},
            )
        record = self.repo.get(imprest_id)
        # A replay is still a call to the operation: same authorization, same caller.
        policy.authorize(actor, record, event)
        if existing.actor_id != actor.id:
            raise IdempotencyConflictError(
                "Idempotency-Key belongs to another caller",
                details={"operation": operation, "imprest_id": imprest_id},
            )
        log.info("imprest_idempotent_replay", imprest_id=imprest_id, operation=operation, actor_id=actor.id)
        return record

    def approve_hod(self, actor: Actor, imprest_id: str, comments: str = "", **expect: Any) -> ImprestRecord:
        return self._transition(
            actor,
            imprest_id,
            ImprestEvent.HOD_APPROVE,
            lambda r, now: approvals.approve_hod(r, actor, comments, now=now, machine=self.machine),
            **expect,
        )

    def approve_accountant(self, actor: Actor, imprest_id: str, comments: str = "", **expect: Any) -> ImprestRecord:
        return self._transition(
            actor,
            imprest_id,
            ImprestEvent.ACCOUNTANT_APPROVE,
            lambda r, now: approvals.approve_accountant(r, actor, comments, now=now, machine=self.machine),
            **expect,
        )

    def reject(self, actor: Actor, imprest_id: str, reason: str, **expect: Any) -> ImprestRecord:
        return self._transition(
            actor,
            imprest_id,
            ImprestEvent.REJECT,
            lambda r, now: approvals.reject(r, actor, reason, now=now, machine=self.machine),
            payload={"reason": reason},
            **expect,
        )

    def disburse(
        self,
        actor: Actor,
        imprest_id: str,
        amount: Any,
        comments: str = "",
        *,
        payment_reference: str | None = None,
        idempotency_key: str | None = None,
        **expect: Any,
    ) -> ImprestRecord:
        replayed = self._replay(actor, idempotency_key, ImprestEvent.DISBURSE, imprest_id)
        if replayed is not None:
            return replayed
        saved = self._transition(
            actor,
            imprest_id,
            ImprestEvent.DISBURSE,
            lambda r, now: disbursement.disburse(
                r,
                actor,
                amount,
                comments,
                now=now,
                payment_reference=payment_reference,
                allow_over_disbursement=self.settings.allow_over_disbursement,
                machine=self.machine,
            ),
            payload={"amount": str(amount), "payment_reference": payment_reference},
            **expect,
        )
        if idempotency_key:
            self.repo.save_idempotency(
                idempotency_key, operation="disburse", imprest_id=imprest_id, actor_id=actor.id, version=saved.version
            )
        return saved

    def acknowledge_receipt(
        self, actor: Actor, imprest_id: str, received: bool, comments: str | None = None, **expect: Any
    ) -> ImprestRecord:
        return self._transition(
            actor,
            imprest_id,
            ImprestEvent.CONFIRM_RECEIPT if received else ImprestEvent.DISPUTE_RECEIPT,
            lambda r, now: disbursement.acknowledge(r, actor, received, comments, now=now, machine=self.machine),
            **expect,
        )

    def resolve(self, actor: Actor, imprest_id: str, comments: str, **expect: Any) -> ImprestRecord:
        return self._transition(
            actor,
            imprest_id,
            ImprestEvent.RESOLVE_DISPUTE,
            lambda r, now: disbursement.resolve_dispute(r, actor, comments, now=now, machine=self.machine),
            **expect,
        )

    def _upload_receipts(self, imprest_id: str, files: Sequence[ReceiptFile]) -> list[str]:
        if not files:
            return []
        if self.receipt_store is None:
            self.receipt_store = ReceiptStore(self.settings)
        return [
            self.receipt_store.upload_receipt(imprest_id, f.filename, f.content, f.content_type).uri()
            for f in files
        ]

    def submit_accounting(
        self,
        actor: Actor,
        imprest_id: str,
        receipts: Sequence[Any],
        comments: str | None = None,
        *,
        receipt_files: Sequence[ReceiptFile] = (),
        idempotency_key: str | None = None,
        **expect: Any,
    ) -> ImprestRecord:
        replayed = self._replay(actor, idempotency_key, ImprestEvent.SUBMIT_ACCOUNTING, imprest_id)
        if replayed is not None:
            return replayed

        def apply(record: ImprestRecord, now: datetime) -> ImprestRecord:
            # Files are uploaded only once state and receipts are known good.
            self.machine.require(record, ImprestEvent.SUBMIT_ACCOUNTING)
            recon.parse_receipts(receipts, uploaded_at=now)
            if len(receipt_files) > len(receipts):
                raise InvalidFieldError("more receipt files than receipts", field="receipt_files")
            urls = self._upload_receipts(record.id, receipt_files)
            return recon.submit_accounting(
                record, actor, receipts, comments, now=now, receipt_urls=urls, machine=self.machine
            )

        saved = self._transition(
            actor,
            imprest_id,
            ImprestEvent.SUBMIT_ACCOUNTING,
            apply,
            payload={"receipts": len(receipts), "files": len(receipt_files)},
            **expect,
        )
        if idempotency_key:
            self.repo.save_idempotency(
                idempotency_key,
                operation="submit_accounting",
                imprest_id=imprest_id,
                actor_id=actor.id,
                version=saved.version,
            )
        return saved

    def verify_accounting(
        self, actor: Actor, imprest_id: str, comments: str | None = None, **expect: Any
    ) -> ImprestRecord:
        return self._transition(
            actor,
            imprest_id,
            ImprestEvent.VERIFY_ACCOUNTING,
            lambda r, now: recon.verify_accounting(r, actor, comments, now=now, machine=self.machine),
            **expect,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_imprest_by_id(self, actor: Actor, imprest_id: str) -> ImprestRecord:
        record = self.repo.get(imprest_id)
        if not policy.can_view(actor, record):
            raise ForbiddenError("not allowed to view this imprest", details={"imprest_id": imprest_id})
        return record

    def get_my_imprests(self, actor: Actor) -> list[ImprestRecord]:
        return self.repo.list_records(requester_id=actor.id)

    def get_all_imprests(self, actor: Actor, *, status: str | None = None) -> list[ImprestRecord]:
        policy.authorize_portfolio(actor)
        department = actor.department if actor.role == ROLE_HOD else None
        return self.repo.list_records(department=department, status=status)

    def approval_progress(self, actor: Actor, imprest_id: str) -> dict[str, Any]:
        record = self.get_imprest_by_id(actor, imprest_id)
        return {
            "imprest_id": record.id,
            "status": record.status.value,
            "progress": approvals.approval_progress(record),
            "timeline": approvals.approval_timeline(record),
            "allowed_events": [e.value for e in self.machine.allowed_events(record.status)],
        }

    def balance_preview(
        self, actor: Actor, imprest_id: str, receipts: Sequence[Any] | None = None
    ) -> recon.ReconciliationResult:
        record = self.get_imprest_by_id(actor, imprest_id)
        if receipts is None:
            return recon.reconcile_record(record)
        return recon.compute_balance(record.reconciliation_basis, receipts)

    def stats(self, actor: Actor, *, mine: bool = False) -> reports.ImprestStats:
        records = self.get_my_imprests(actor) if mine else self.get_all_imprests(actor)
        return reports.aggregate(
            records,
            now=self.clock(),
            due_soon_days=self.settings.due_soon_days,
            activity_limit=self.settings.recent_activity_limit,
        )
