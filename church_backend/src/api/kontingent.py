"""
Kontingent (monthly membership dues) tracking.

One row per (member, month). Marking a month paid stamps today's date as payment_date;
marking it unpaid clears it again.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.api.audit import AuditRecorder, get_audit_recorder, snapshot
from src.api.auth import Principal, get_current_admin
from src.api.database import get_db
from src.api.models import AuditActionEnum, KontingentPayment, Member
from src.api.openapi_schemas import ErrorResponse
from src.api.rate_limit import get_client_ip
from src.api.schemas import (
    MONTH_PATTERN, KontingentMonthOut, KontingentMonthRow, KontingentOut, KontingentUpdate
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/kontingent", tags=["Kontingent"])


def _get_member_or_404(db: Session, principal: Principal, member_id: int) -> Member:
    member = principal.scope.apply(db.query(Member), Member).filter(Member.id == member_id).first()
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")
    return member


def _find_payment(db: Session, member_id: int, month: str):
    return (
        db.query(KontingentPayment)
        .filter(KontingentPayment.member_id == member_id, KontingentPayment.payment_month == month)
        .first()
    )


def _apply(payment: KontingentPayment, payload: KontingentUpdate, recorded_by: str) -> None:
    payment.paid = payload.paid
    payment.payment_date = date.today() if payload.paid else None
    if payload.amount is not None:
        payment.amount = payload.amount
    if payload.notes is not None:
        payment.notes = payload.notes
    payment.recorded_by = recorded_by

# PUBLIC_INTERFACE
@router.post("/update", response_model=KontingentOut, responses={404: {"model": ErrorResponse}}, summary="Set paid status for a member and month")
def update_kontingent(
    payload: KontingentUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Upsert keyed by (memberId, month)."""
    member_id = _get_member_or_404(db, principal, payload.member_id).id
    payment = _find_payment(db, member_id, payload.month)
    old_values = snapshot(payment) if payment else None
    if payment is None:
        payment = KontingentPayment(member_id=member_id, payment_month=payload.month)
        db.add(payment)
    _apply(payment, payload, principal.username)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the row for this month first; update that one instead
        db.rollback()
        payment = _find_payment(db, member_id, payload.month)
        if payment is None:
            raise
        logger.info("Kontingent %s/%s created concurrently, updating it", member_id, payload.month)
        old_values = snapshot(payment)
        _apply(payment, payload, principal.username)
        db.commit()
    db.refresh(payment)
    action = AuditActionEnum.update if old_values else AuditActionEnum.create
    background_tasks.add_task(
        audit.record, principal.username, action.value, "kontingent_payments", payment.id,
        old_values, snapshot(payment), get_client_ip(request),
    )
    return payment

# PUBLIC_INTERFACE
@router.get("", response_model=KontingentMonthOut, summary="Payment overview for one month")
def month_overview(
    month: str = Query(..., pattern=MONTH_PATTERN, description="YYYY-MM"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
):
    members = (
        principal.scope.apply(db.query(Member), Member)
        .filter(Member.is_active.is_(True))
        .order_by(Member.full_name)
        .all()
    )
    payments = {}
    if members:
        payments = {
            p.member_id: p
            for p in db.query(KontingentPayment).filter(
                KontingentPayment.payment_month == month,
                KontingentPayment.member_id.in_([m.id for m in members]),
            )
        }
    rows: List[KontingentMonthRow] = []
    total_amount = Decimal("0")
    for m in members:
        p = payments.get(m.id)
        paid = bool(p and p.paid)
        if paid and p.amount is not None:
            total_amount += Decimal(p.amount)
        rows.append(KontingentMonthRow(
            member_id=m.id,
            full_name=m.full_name,
            member_number=m.member_number,
            paid=paid,
            payment_date=p.payment_date if p else None,
            amount=p.amount if p else None,
            notes=p.notes if p else None,
        ))
    paid_count = sum(1 for r in rows if r.paid)
    return KontingentMonthOut(
        month=month,
        total_members=len(rows),
        paid_count=paid_count,
        unpaid_count=len(rows) - paid_count,
        total_amount=total_amount,
        members=rows,
    )

# PUBLIC_INTERFACE
@router.get("/member/{member_id}", response_model=List[KontingentOut], responses={404: {"model": ErrorResponse}}, summary="Payment history for one member")
def member_history(
    member_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
):
    member = _get_member_or_404(db, principal, member_id)
    return (
        db.query(KontingentPayment)
        .filter(KontingentPayment.member_id == member.id)
        .order_by(KontingentPayment.payment_month.desc())
        .all()
    )
