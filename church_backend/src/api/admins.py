"""
Admin account management, restricted to super admins.

- List admins (optionally per church)
- Create admin (bcrypt-hashed password, unique username)
- Update admin (profile, tenant, flags, optional password reset)
- Deactivate admin (soft delete; a super admin cannot deactivate themselves)
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from src.api.audit import AuditRecorder, get_audit_recorder, snapshot
from src.api.auth import Principal, hash_password, super_admin_required
from src.api.database import get_db
from src.api.models import Admin, AuditActionEnum, Church
from src.api.openapi_schemas import APIResponse, ErrorResponse
from src.api.rate_limit import get_client_ip
from src.api.schemas import AdminCreate, AdminOut, AdminUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admins", tags=["Admins"])


def _get_admin_or_404(db: Session, admin_id: int) -> Admin:
    admin = db.query(Admin).filter(Admin.id == admin_id).first()
    if not admin:
        raise HTTPException(status_code=404, detail="Admin not found")
    return admin


def _require_church(db: Session, church_id: Optional[int]) -> None:
    if church_id is not None and not db.query(Church.id).filter(Church.id == church_id).first():
        raise HTTPException(status_code=400, detail="Church not found")

# PUBLIC_INTERFACE
@router.get("", response_model=List[AdminOut], summary="List admins")
def list_admins(
    church_id: Optional[int] = Query(None, description="Filter by church"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(super_admin_required),
):
    query = db.query(Admin)
    if church_id is not None:
        query = query.filter(Admin.church_id == church_id)
    return query.order_by(Admin.username).all()

# PUBLIC_INTERFACE
@router.post("", response_model=AdminOut, status_code=status.HTTP_201_CREATED, responses={400: {"model": ErrorResponse}}, summary="Create admin")
def create_admin(
    admin_in: AdminCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal = Depends(super_admin_required),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    if db.query(Admin.id).filter(Admin.username == admin_in.username).first():
        raise HTTPException(status_code=400, detail="Username already exists")
    _require_church(db, admin_in.church_id)
    admin = Admin(
        username=admin_in.username,
        password_hash=hash_password(admin_in.password),
        full_name=admin_in.full_name,
        email=admin_in.email,
        church_id=admin_in.church_id,
        is_super_admin=admin_in.is_super_admin,
        is_active=True,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info("Admin %s created by %s", admin.username, principal.username)
    background_tasks.add_task(
        audit.record, principal.username, AuditActionEnum.create.value, "members_admins", admin.id,
        None, snapshot(admin), get_client_ip(request),
    )
    return admin

# PUBLIC_INTERFACE
@router.put("/{admin_id}", response_model=AdminOut, responses={404: {"model": ErrorResponse}}, summary="Update admin")
def update_admin(
    admin_id: int,
    admin_in: AdminUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal = Depends(super_admin_required),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    admin = _get_admin_or_404(db, admin_id)
    old_values = snapshot(admin)
    update = admin_in.model_dump(exclude_unset=True)
    if "church_id" in update:
        _require_church(db, update["church_id"])
    if admin.id == principal.id and (update.get("is_active") is False or update.get("is_super_admin") is False):
        raise HTTPException(status_code=400, detail="You cannot revoke your own access")
    for k, v in update.items():
        if k == "password":
            if v:
                admin.password_hash = hash_password(v)
        else:
            setattr(admin, k, v)
    db.commit()
    db.refresh(admin)
    new_values = snapshot(admin)
    if update.get("password"):
        new_values["password_changed"] = True
    background_tasks.add_task(
        audit.record, principal.username, AuditActionEnum.update.value, "members_admins", admin.id,
        old_values, new_values, get_client_ip(request),
    )
    return admin

# PUBLIC_INTERFACE
@router.delete("/{admin_id}", response_model=APIResponse, responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}, summary="Deactivate admin")
def delete_admin(
    admin_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    principal: Principal = Depends(super_admin_required),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    admin = _get_admin_or_404(db, admin_id)
    if admin.id == principal.id:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    admin.is_active = False
    db.commit()
    background_tasks.add_task(
        audit.record, principal.username, AuditActionEnum.delete.value, "members_admins", admin.id,
        None, {"is_active": False}, get_client_ip(request),
    )
    return APIResponse(success=True, message="Admin deactivated")
