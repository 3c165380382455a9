"""ImprestRecord and its sub-structures.

Records are frozen: every transition produces a new record via
``dataclasses.replace`` so a failed operation can never leave a half-written
value behind. ``to_dict``/``from_dict`` give the JSON shape stored in the
database and returned by the API (amounts as strings, timestamps as ISO-8601).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from imprest_workflow.common.utils import isoformat, parse_datetime
from imprest_workflow.kernel.money import ZERO, money_str, to_decimal
from imprest_workflow.kernel.states import ImprestStatus

ROLE_REQUESTER = "requester"
ROLE_HOD = "hod"
ROLE_ACCOUNTANT = "accountant"
ROLE_ADMIN = "admin"
ROLES = (ROLE_REQUESTER, ROLE_HOD, ROLE_ACCOUNTANT, ROLE_ADMIN)


@dataclass(frozen=True)
class Actor:
    """A caller or a party snapshot stored on the record."""

    id: str
    role: str = ROLE_REQUESTER
    name: str = ""
    email: str = ""
    department: str | None = None
    payroll_number: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "name": self.name,
            "email": self.email,
            "department": self.department,
            "payroll_number": self.payroll_number,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Actor:
        return cls(
            id=str(data["id"]),
            role=data.get("role") or ROLE_REQUESTER,
            name=data.get("name") or "",
            email=data.get("email") or "",
            department=data.get("department"),
            payroll_number=data.get("payroll_number"),
        )


@dataclass(frozen=True)
class Approval:
    approved_by: Actor
    approved_at: datetime
    comments: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "approved_by": self.approved_by.to_dict(),
            "approved_at": isoformat(self.approved_at),
            "comments": self.comments,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Approval:
        return cls(
            approved_by=Actor.from_dict(data["approved_by"]),
            approved_at=parse_datetime(data["approved_at"]),
            comments=data.get("comments") or "",
        )


@dataclass(frozen=True)
class Rejection:
    rejected_by: Actor
    rejected_at: datetime
    reason: str
    stage: ImprestStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "rejected_by": self.rejected_by.to_dict(),
            "rejected_at": isoformat(self.rejected_at),
            "reason": self.reason,
            "stage": self.stage.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Rejection:
        return cls(
            rejected_by=Actor.from_dict(data["rejected_by"]),
            rejected_at=parse_datetime(data["rejected_at"]),
            reason=data["reason"],
            stage=ImprestStatus(data["stage"]),
        )


@dataclass(frozen=True)
class Disbursement:
    disbursed_by: Actor
    disbursed_at: datetime
    amount: Decimal
    comments: str = ""
    payment_reference: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "disbursed_by": self.disbursed_by.to_dict(),
            "disbursed_at": isoformat(self.disbursed_at),
            "amount": money_str(self.amount),
            "comments": self.comments,
            "payment_reference": self.payment_reference,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Disbursement:
        return cls(
            disbursed_by=Actor.from_dict(data["disbursed_by"]),
            disbursed_at=parse_datetime(data["disbursed_at"]),
            amount=to_decimal(data["amount"]),
            comments=data.get("comments") or "",
            payment_reference=data.get("payment_reference"),
        )


@dataclass(frozen=True)
class Acknowledgment:
    acknowledged_by: Actor
    acknowledged_at: datetime
    received: bool
    comments: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "acknowledged_by": self.acknowledged_by.to_dict(),
            "acknowledged_at": isoformat(self.acknowledged_at),
            "received": self.received,
            "comments": self.comments,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Acknowledgment:
        return cls(
            acknowledged_by=Actor.from_dict(data["acknowledged_by"]),
            acknowledged_at=parse_datetime(data["acknowledged_at"]),
            received=bool(data["received"]),
            comments=data.get("comments") or "",
        )


@dataclass(frozen=True)
class DisputeResolution:
    resolved_by: Actor
    resolved_at: datetime
    comments: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "resolved_by": self.resolved_by.to_dict(),
            "resolved_at": isoformat(self.resolved_at),
            "comments": self.comments,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DisputeResolution:
        return cls(
            resolved_by=Actor.from_dict(data["resolved_by"]),
            resolved_at=parse_datetime(data["resolved_at"]),
            comments=data.get("comments") or "",
        )


@dataclass(frozen=True)
class Receipt:
    description: str
    amount: Decimal
    receipt_url: str | None = None
    uploaded_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "amount": money_str(self.amount),
            "receipt_url": self.receipt_url,
            "uploaded_at": isoformat(self.uploaded_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Receipt:
        return cls(
            description=data["description"],
            amount=to_decimal(data["amount"]),
            receipt_url=data.get("receipt_url"),
            uploaded_at=parse_datetime(data.get("uploaded_at")),
        )


@dataclass(frozen=True)
class Accounting:
    """Submitted accountability; totals are always derived from ``receipts``."""

    submitted_by: Actor
    submitted_at: datetime
    receipts: tuple[Receipt, ...]
    reconciled_amount: Decimal
    comments: str = ""
    verified_by: Actor | None = None
    verified_at: datetime | None = None
    verification_comments: str = ""

    @property
    def total_amount(self) -> Decimal:
        return sum((r.amount for r in self.receipts), ZERO)

    @property
    def balance(self) -> Decimal:
        return self.reconciled_amount - self.total_amount

    @property
    def classification(self) -> str:
        from imprest_workflow.recon import classify_balance

        return classify_balance(self.balance)

    @property
    def is_verified(self) -> bool:
        return self.verified_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "submitted_by": self.submitted_by.to_dict(),
            "submitted_at": isoformat(self.submitted_at),
            "receipts": [r.to_dict() for r in self.receipts],
            "reconciled_amount": money_str(self.reconciled_amount),
            "total_amount": money_str(self.total_amount),
            "balance": money_str(self.balance),
            "classification": self.classification,
            "comments": self.comments,
            "verified_by": self.verified_by.to_dict() if self.verified_by else None,
            "verified_at": isoformat(self.verified_at),
            "verification_comments": self.verification_comments,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Accounting:
        # total_amount/balance in ``data`` are derived values and ignored on load.
        return cls(
            submitted_by=Actor.from_dict(data["submitted_by"]),
            submitted_at=parse_datetime(data["submitted_at"]),
            receipts=tuple(Receipt.from_dict(r) for r in data.get("receipts") or []),
            reconciled_amount=to_decimal(data["reconciled_amount"]),
            comments=data.get("comments") or "",
            verified_by=Actor.from_dict(data["verified_by"]) if data.get("verified_by") else None,
            verified_at=parse_datetime(data.get("verified_at")),
            verification_comments=data.get("verification_comments") or "",
        )


@dataclass(frozen=True)
class ImprestRecord:
    id: str
    requester: Actor
    department: str
    payment_reason: str
    payment_type: str
    currency: str
    amount: Decimal
    explanation: str
    request_date: date
    due_date: date
    status: ImprestStatus
    created_at: datetime
    updated_at: datetime
    version: int = 1
    attachment_urls: tuple[str, ...] = ()
    hod_approval: Approval | None = None
    accountant_approval: Approval | None = None
    rejection: Rejection | None = None
    disbursement: Disbursement | None = None
    acknowledgment: Acknowledgment | None = None
    dispute_resolution: DisputeResolution | None = None
    accounting: Accounting | None = None

    @property
    def disbursed_amount(self) -> Decimal | None:
        return self.disbursement.amount if self.disbursement else None

    @property
    def reconciliation_basis(self) -> Decimal:
        """Amount receipts are reconciled against: disbursed if released, else requested."""
        return self.disbursement.amount if self.disbursement else self.amount

    def days_remaining(self, today: date) -> int:
        return (self.due_date - today).days

    def is_overdue(self, today: date) -> bool:
        return self.status == ImprestStatus.DISBURSED and self.days_remaining(today) < 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "requester": self.requester.to_dict(),
            "department": self.department,
            "payment_reason": self.payment_reason,
            "payment_type": self.payment_type,
            "currency": self.currency,
            "amount": money_str(self.amount),
            "explanation": self.explanation,
            "request_date": self.request_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "status": self.status.value,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "version": self.version,
            "attachment_urls": list(self.attachment_urls),
            "hod_approval": self.hod_approval.to_dict() if self.hod_approval else None,
            "accountant_approval": self.accountant_approval.to_dict() if self.accountant_approval else None,
            "rejection": self.rejection.to_dict() if self.rejection else None,
            "disbursement": self.disbursement.to_dict() if self.disbursement else None,
            "acknowledgment": self.acknowledgment.to_dict() if self.acknowledgment else None,
            "dispute_resolution": self.dispute_resolution.to_dict() if self.dispute_resolution else None,
            "accounting": self.accounting.to_dict() if self.accounting else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImprestRecord:
        def _opt(key: str, loader):
            value = data.get(key)
            return loader(value) if value else None

        return cls(
            id=data["id"],
            requester=Actor.from_dict(data["requester"]),
            department=data.get("department") or "",
            payment_reason=data["payment_reason"],
            payment_type=data["payment_type"],
            currency=data["currency"],
            amount=to_decimal(data["amount"]),
            explanation=data.get("explanation") or "",
            request_date=date.fromisoformat(data["request_date"]),
            due_date=date.fromisoformat(data["due_date"]),
            status=ImprestStatus(data["status"]),
            created_at=parse_datetime(data["created_at"]),
            updated_at=parse_datetime(data["updated_at"]),
            version=int(data.get("version") or 1),
            attachment_urls=tuple(data.get("attachment_urls") or ()),
            hod_approval=_opt("hod_approval", Approval.from_dict),
            accountant_approval=_opt("accountant_approval", Approval.from_dict),
            rejection=_opt("rejection", Rejection.from_dict),
            disbursement=_opt("disbursement", Disbursement.from_dict),
            acknowledgment=_opt("acknowledgment", Acknowledgment.from_dict),
            dispute_resolution=_opt("dispute_resolution", DisputeResolution.from_dict),
            accounting=_opt("accounting", Accounting.from_dict),
        )


_PAST_HOD = frozenset(set(ImprestStatus) - {ImprestStatus.PENDING_HOD})


def invariant_violations(record: ImprestRecord) -> list[str]:
    """List every data-model invariant the record breaks (empty when consistent)."""
    problems: list[str] = []
    if record.amount <= ZERO:
        problems.append("requested amount must be positive")
    if record.hod_approval is not None and record.status not in _PAST_HOD:
        problems.append("hod_approval present while still pending_hod")
    if record.accountant_approval is not None and record.hod_approval is None:
        problems.append("accountant_approval without hod_approval")
    if record.rejection is not None and record.accountant_approval is not None:
        problems.append("record is both rejected and fully approved")
    if record.rejection is not None and record.status != ImprestStatus.REJECTED:
        problems.append("rejection present but status is not rejected")
    if record.disbursement is not None:
        if record.hod_approval is None or record.accountant_approval is None:
            problems.append("disbursement without both approvals")
        if record.rejection is not None:
            problems.append("disbursement on a rejected record")
        if record.disbursement.amount <= ZERO:
            problems.append("disbursed amount must be positive")
    if record.acknowledgment is not None and record.disbursement is None:
        problems.append("acknowledgment without disbursement")
    if record.dispute_resolution is not None and (
        record.acknowledgment is None or record.acknowledgment.received
    ):
        problems.append("dispute resolution without a disputed acknowledgment")
    if record.accounting is not None:
        if record.acknowledgment is None or not record.acknowledgment.received:
            problems.append("accounting without a confirmed receipt")
        if not record.accounting.receipts:
            problems.append("accounting without receipts")
    return problems
