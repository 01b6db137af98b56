"""
Authentication endpoints and access control for the Church Members backend.

- Sign In (JWT issuance, bcrypt verification)
- JWT Auth dependency producing the caller's Principal (admin id, tenant, super-admin flag)
- Super-admin capability check
- Tenant scope of the caller (church_id partitioning; super admins are installation-wide)

Tokens are stateless and expire after JWT_ACCESS_TOKEN_EXPIRE_MINUTES (24h default);
logout is client-side only.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import ValidationError
from sqlalchemy.orm import Session

from src.api.config import Settings
from src.api.database import get_db
from src.api.errors import InvalidCredentials
from src.api.models import Admin
from src.api.openapi_schemas import (
    ErrorResponse, LoginRequest, LoginResponse, PrincipalOut, TokenPayload
)
from src.api.tenancy import TenantScope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Principal:
    """The authenticated admin making the request."""
    id: int
    username: str
    church_id: Optional[int] = None
    is_super_admin: bool = False
    full_name: Optional[str] = None

    @property
    def scope(self) -> TenantScope:
        # A super admin's home church is only a default for new rows, never a fence
        return TenantScope(None if self.is_super_admin else self.church_id)

# =============================
# Utility Functions
# =============================

def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return pwd_context.hash(password)

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify that a plaintext password matches its hash."""
    return pwd_context.verify(plain_password, hashed_password)

def get_settings(request: Request) -> Settings:
    return request.app.state.context.settings

# PUBLIC_INTERFACE
def create_access_token(
    admin: Admin,
    settings: Settings,
    expires_delta: Optional[timedelta] = None,
    issued_at: Optional[datetime] = None,
) -> str:
    """Create a signed JWT carrying the admin id, tenant and super-admin flag."""
    now = issued_at or datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes))
    claims = {
        "sub": str(admin.id),
        "username": admin.username,
        "church_id": admin.church_id,
        "is_super_admin": bool(admin.is_super_admin),
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)

# PUBLIC_INTERFACE
def decode_access_token(token: str, settings: Settings) -> TokenPayload:
    """Verify signature and expiry; raises JWTError or ValidationError."""
    payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    return TokenPayload(**payload)

def _to_principal(admin: Admin) -> Principal:
    return Principal(
        id=admin.id,
        username=admin.username,
        church_id=admin.church_id,
        is_super_admin=bool(admin.is_super_admin),
        full_name=admin.full_name,
    )

# =============================
# Authentication Logic
# =============================

# PUBLIC_INTERFACE
def authenticate(db: Session, settings: Settings, username: str, password: str):
    """
    Check credentials and return (token, principal).
    Unknown, inactive and wrong-password logins all raise the same InvalidCredentials.
    """
    admin = db.query(Admin).filter(Admin.username == username, Admin.is_active.is_(True)).first()
    if admin is None:
        # Spend the same bcrypt time as a real comparison
        pwd_context.dummy_verify()
        raise InvalidCredentials()
    if not verify_password(password, admin.password_hash):
        raise InvalidCredentials()
    return create_access_token(admin, settings), _to_principal(admin)

# =============================
# JWT Auth Dependency
# =============================

# PUBLIC_INTERFACE
def get_current_admin(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """Get the current admin from the bearer token, raise 401 if missing, invalid or expired."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        token_data = decode_access_token(token, settings)
    except (JWTError, ValidationError):
        raise credentials_exception
    admin = db.query(Admin).filter(Admin.id == int(token_data.sub)).first()
    if admin is None or not admin.is_active:
        raise credentials_exception
    return _to_principal(admin)

# PUBLIC_INTERFACE
def super_admin_required(principal: Principal = Depends(get_current_admin)) -> Principal:
    """Restrict an endpoint to admins carrying the super-admin flag."""
    if not principal.is_super_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Super admin access required")
    return principal

# =============================
# ENDPOINTS: Authentication
# =============================

@router.post("/login", response_model=LoginResponse, responses={401: {"model": ErrorResponse}}, summary="Admin login", description="Authenticate an admin and return a 24h JWT access token")
def login(
    credentials: LoginRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    token, principal = authenticate(db, settings, credentials.username, credentials.password)
    logger.info("Admin %s logged in", principal.username)
    return LoginResponse(
        token=token,
        admin=PrincipalOut(
            id=principal.id,
            username=principal.username,
            full_name=principal.full_name,
            church_id=principal.church_id,
            is_super_admin=principal.is_super_admin,
        ),
    )

@router.get("/me", response_model=PrincipalOut, summary="Get current admin info", description="Returns info for the currently authenticated admin")
def me(principal: Principal = Depends(get_current_admin)):
    return PrincipalOut(
        id=principal.id,
        username=principal.username,
        full_name=principal.full_name,
        church_id=principal.church_id,
        is_super_admin=principal.is_super_admin,
    )
