"""
CRUD endpoints for Members, scoped to the caller's church.

Includes:
- List/search members (name, phone, personnummer; active filter)
- Create member (personnummer format and duplicate phone checks)
- Update member (audited with before/after snapshots)
- Soft delete (is_active = false; SMS history is kept)

Every mutation is followed by one audit entry, recorded after commit as a background task.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.api.audit import AuditRecorder, get_audit_recorder, snapshot
from src.api.auth import Principal, get_current_admin
from src.api.database import get_db
from src.api.models import AuditActionEnum, Member
from src.api.openapi_schemas import APIResponse, ErrorResponse
from src.api.rate_limit import get_client_ip
from src.api.schemas import MemberCreate, MemberOut, MemberUpdate
from src.api.tenancy import TenantScope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/members", tags=["Members"])


def _get_member_or_404(db: Session, scope: TenantScope, member_id: int) -> Member:
    member = scope.apply(db.query(Member), Member).filter(Member.id == member_id).first()
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")
    return member


def _phone_taken(db: Session, church_id: Optional[int], phone_number: str, exclude_id: Optional[int] = None) -> bool:
    query = TenantScope(church_id).apply(db.query(Member.id), Member).filter(Member.phone_number == phone_number)
    if exclude_id is not None:
        query = query.filter(Member.id != exclude_id)
    return query.first() is not None


def _commit_member(db: Session, member: Member) -> None:
    """Commit; a concurrent insert of the same phone in the church surfaces as a 400, not a 500."""
    phone = member.phone_number
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if "phone_number" not in str(exc.orig) and "uq_members_church_phone" not in str(exc.orig):
            raise
        logger.warning("Member phone %s rejected by unique constraint", phone)
        raise HTTPException(status_code=400, detail="Member with this phone number already exists")
    db.refresh(member)

# PUBLIC_INTERFACE
@router.get("", response_model=List[MemberOut], summary="List/search members")
def list_members(
    search: Optional[str] = Query(None, description="Match on name, phone number or personnummer"),
    active: Optional[bool] = Query(None, description="Filter on active flag"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
):
    query = principal.scope.apply(db.query(Member), Member)
    if active is not None:
        query = query.filter(Member.is_active.is_(active))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Member.full_name.ilike(pattern),
            Member.phone_number.ilike(pattern),
            Member.personnummer.ilike(pattern),
        ))
    return query.order_by(Member.full_name).all()

# PUBLIC_INTERFACE
@router.get("/{member_id}", response_model=MemberOut, responses={404: {"model": ErrorResponse}}, summary="Get member")
def get_member(
    member_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
):
    return _get_member_or_404(db, principal.scope, member_id)

# PUBLIC_INTERFACE
@router.post("", response_model=MemberOut, status_code=status.HTTP_201_CREATED, responses={400: {"model": ErrorResponse}}, summary="Create member")
def create_member(
    member_in: MemberCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """
    Create a member. Tenant admins always create inside their own church;
    the phone number must be unique within that church.
    """
    church_id = principal.scope.assign(
        member_in.church_id if member_in.church_id is not None else principal.church_id
    )
    if _phone_taken(db, church_id, member_in.phone_number):
        raise HTTPException(status_code=400, detail="Member with this phone number already exists")
    data = member_in.model_dump(exclude={"church_id"})
    member = Member(
        **data,
        church_id=church_id,
        created_by=principal.username,
        updated_by=principal.username,
    )
    db.add(member)
    _commit_member(db, member)
    logger.info("Member %s created by %s", member.id, principal.username)
    background_tasks.add_task(
        audit.record, principal.username, AuditActionEnum.create.value, "members", member.id,
        None, snapshot(member), get_client_ip(request),
    )
    return member

# PUBLIC_INTERFACE
@router.put("/{member_id}", response_model=MemberOut, responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}, summary="Update member")
def update_member(
    member_id: int,
    member_in: MemberUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    member = _get_member_or_404(db, principal.scope, member_id)
    old_values = snapshot(member)
    update = member_in.model_dump(exclude_unset=True)
    new_phone = update.get("phone_number")
    if new_phone and new_phone != member.phone_number and _phone_taken(db, member.church_id, new_phone, exclude_id=member.id):
        raise HTTPException(status_code=400, detail="Member with this phone number already exists")
    for k, v in update.items():
        setattr(member, k, v)
    member.updated_by = principal.username
    _commit_member(db, member)
    background_tasks.add_task(
        audit.record, principal.username, AuditActionEnum.update.value, "members", member.id,
        old_values, snapshot(member), get_client_ip(request),
    )
    return member

# PUBLIC_INTERFACE
@router.delete("/{member_id}", response_model=APIResponse, responses={404: {"model": ErrorResponse}}, summary="Deactivate member")
def delete_member(
    member_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """
    Soft delete: the member is flagged inactive and drops out of SMS broadcasts,
    while earlier delivery records stay intact.
    """
    member = _get_member_or_404(db, principal.scope, member_id)
    member.is_active = False
    member.updated_by = principal.username
    db.commit()
    background_tasks.add_task(
        audit.record, principal.username, AuditActionEnum.delete.value, "members", member.id,
        None, {"is_active": False}, get_client_ip(request),
    )
    return APIResponse(success=True, message="Member deleted successfully")
