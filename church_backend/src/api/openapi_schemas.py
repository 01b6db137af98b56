"""
OpenAPI-compatible Pydantic schemas for authentication and the common response envelopes,
plus the tag mapping used by the FastAPI application.
"""

from typing import Any, Optional
from pydantic import BaseModel, Field

# ----------------------------------------
# PUBLIC_INTERFACE
class LoginRequest(BaseModel):
    """
    Login request schema.
    """
    username: str = Field(..., description="Admin username")
    password: str = Field(..., description="Admin password")

# ----------------------------------------
# PUBLIC_INTERFACE
class TokenPayload(BaseModel):
    """
    JWT token payload/basic claims schema.
    """
    sub: str = Field(..., description="The subject identifier (the admin ID).")
    exp: int = Field(..., description="Expiration timestamp (unix epoch).")
    username: str = Field(..., description="Admin username, used as the actor in audit and log rows.")
    church_id: Optional[int] = Field(None, description="Tenant the admin belongs to; null for installation-wide admins.")
    is_super_admin: bool = Field(False, description="Capability flag for super-admin routes.")

# ----------------------------------------
# PUBLIC_INTERFACE
class PrincipalOut(BaseModel):
    """
    The authenticated caller as seen by the API.
    """
    id: int
    username: str
    full_name: Optional[str] = None
    church_id: Optional[int] = None
    is_super_admin: bool = False

# ----------------------------------------
# PUBLIC_INTERFACE
class LoginResponse(BaseModel):
    """
    Access token response schema.
    """
    token: str = Field(..., description="JWT access token")
    token_type: str = Field("bearer", description="The token type, always 'bearer'.")
    admin: PrincipalOut

# ----------------------------------------
# PUBLIC_INTERFACE
class APIResponse(BaseModel):
    """
    Standard API response wrapper.
    """
    success: bool = Field(..., description="Request was successful")
    message: Optional[str] = Field(None, description="A human-readable message")
    data: Optional[Any] = Field(None, description="Payload")

# ----------------------------------------
# PUBLIC_INTERFACE
class ErrorResponse(BaseModel):
    """
    Error response wrapper. Every failing request returns this shape.
    """
    error: str = Field(..., description="Error details")

# ---- Endpoint Contracts: Tag Mapping (for OpenAPI tags) ----
openapi_tags = [
    {"name": "Authentication", "description": "Admin login and token introspection."},
    {"name": "Members", "description": "Member records, consent and soft deletion."},
    {"name": "Admins", "description": "Admin account management (super admin only)."},
    {"name": "Kontingent", "description": "Monthly membership dues."},
    {"name": "SMS", "description": "SMS broadcasts, delivery logs and statistics."},
    {"name": "Misc", "description": "Health and service status."},
]
