"""
SMS endpoints: broadcast to selected members, delivery history and usage statistics.

The broadcast itself lives in broadcast.BroadcastService; this module only maps its
result onto HTTP and schedules the audit entry.
"""
import logging
from datetime import datetime
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy import case, func
from sqlalchemy.orm import Session, selectinload

from src.api.audit import AuditRecorder, get_audit_recorder
from src.api.auth import Principal, get_current_admin
from src.api.broadcast import BroadcastService, get_broadcast_service
from src.api.database import get_db
from src.api.models import AuditActionEnum, SmsLog, SmsRecipient
from src.api.openapi_schemas import ErrorResponse
from src.api.rate_limit import get_client_ip
from src.api.schemas import SmsLogOut, SmsRecipientOut, SmsSendRequest, SmsSendResponse, SmsStats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sms", tags=["SMS"])

# PUBLIC_INTERFACE
@router.post(
    "/send",
    response_model=SmsSendResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Send SMS to selected members",
)
def send_sms(
    payload: SmsSendRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
    broadcast: BroadcastService = Depends(get_broadcast_service),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """
    Only consenting, active members of the caller's church are messaged. Every attempted
    recipient is recorded whether or not the gateway accepted it.
    """
    result = broadcast.send(db, principal.scope, principal.username, payload.member_ids, payload.message)
    background_tasks.add_task(
        audit.record, principal.username, AuditActionEnum.send_sms.value, "sms_logs", result.sms_log_id,
        None,
        {
            "recipient_count": result.attempted,
            "sent": result.sent,
            "failed": result.failed,
            "message": payload.message[:100],
            "cost": result.cost_display,
        },
        get_client_ip(request),
    )
    if result.sent == 0:
        logger.warning("SMS broadcast #%s by %s: all %d recipients failed",
                       result.sms_log_id, principal.username, result.failed)
        return JSONResponse(
            status_code=502,
            content={"error": "SMS sending failed", "sms_log_id": result.sms_log_id, "failed": result.failed},
            background=background_tasks,
        )
    return SmsSendResponse(
        message=f'SMS sent from "{result.sender}" to {result.sent} members',
        sent=result.sent,
        failed=result.failed,
        cost=result.cost_display,
        currency=broadcast.cost_policy.currency,
        sender=result.sender,
        message_id=result.provider_message_id,
        sms_log_id=result.sms_log_id,
    )

# PUBLIC_INTERFACE
@router.get("/logs", response_model=List[SmsLogOut], summary="SMS history with recipients")
def list_sms_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
):
    query = principal.scope.apply(db.query(SmsLog), SmsLog).options(
        selectinload(SmsLog.recipients).selectinload(SmsRecipient.member)
    )
    logs = query.order_by(SmsLog.sent_at.desc(), SmsLog.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return [
        SmsLogOut(
            id=log.id,
            church_id=log.church_id,
            message=log.message,
            recipient_count=log.recipient_count,
            sent_at=log.sent_at,
            sent_by=log.sent_by,
            cost_estimate=log.cost_estimate,
            provider=log.provider,
            provider_message_id=log.provider_message_id,
            recipients=[
                SmsRecipientOut(
                    id=r.id,
                    member_id=r.member_id,
                    full_name=r.member.full_name if r.member else None,
                    phone_number=r.phone_number,
                    status=r.status,
                    provider_message_id=r.provider_message_id,
                    error_message=r.error_message,
                )
                for r in sorted(log.recipients, key=lambda r: r.id)
            ],
        )
        for log in logs
    ]

# PUBLIC_INTERFACE
@router.get("/stats", response_model=SmsStats, summary="SMS usage statistics")
def sms_stats(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
):
    """Recipient totals (overall and for the current month) and the summed cost estimate."""
    month_start = datetime.now().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    query = db.query(
        func.coalesce(func.sum(SmsLog.recipient_count), 0),
        func.coalesce(func.sum(case((SmsLog.sent_at >= month_start, SmsLog.recipient_count), else_=0)), 0),
        func.coalesce(func.sum(SmsLog.cost_estimate), 0),
    )
    total_sent, this_month, total_cost = principal.scope.apply(query, SmsLog).one()
    return SmsStats(total_sent=int(total_sent), this_month=int(this_month), total_cost=total_cost)
