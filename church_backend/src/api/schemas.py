"""
Pydantic schemas for the core entities (Member, Admin, KontingentPayment, SmsLog, SmsRecipient)
for FastAPI endpoints, validation, and OpenAPI contract.

Each entity: Create, Update, and Output as needed.
"""

import re
from typing import Annotated, List, Optional
from datetime import date, datetime
from decimal import Decimal
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, EmailStr, constr

PERSONNUMMER_PATTERN = re.compile(r"^\d{11}$")
MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


def _check_personnummer(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    if not PERSONNUMMER_PATTERN.match(value):
        raise ValueError("Personnummer must be 11 digits")
    return value


def _reject_null(value):
    if value is None:
        raise ValueError("Field cannot be null")
    return value


Personnummer = Annotated[Optional[str], AfterValidator(_check_personnummer)]
# Update fields backed by NOT NULL columns: may be omitted, never sent as null
RequiredName = Annotated[Optional[constr(strip_whitespace=True, min_length=1)], AfterValidator(_reject_null)]
RequiredFlag = Annotated[Optional[bool], AfterValidator(_reject_null)]

# --- MEMBERS ---

# PUBLIC_INTERFACE
class MemberCreate(BaseModel):
    full_name: constr(strip_whitespace=True, min_length=1) = Field(..., description="Full name")
    phone_number: constr(strip_whitespace=True, min_length=1) = Field(..., description="Phone number, free text")
    email: Optional[EmailStr] = None
    personnummer: Personnummer = Field(None, description="11-digit national id")
    member_number: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    member_since: Optional[date] = None
    baptized: bool = False
    baptism_date: Optional[date] = None
    sms_consent: bool = True
    notes: Optional[str] = None
    church_id: Optional[int] = Field(None, description="Only honoured for super admins")

class MemberUpdate(BaseModel):
    full_name: RequiredName = None
    phone_number: RequiredName = None
    email: Optional[EmailStr] = None
    personnummer: Personnummer = None
    member_number: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    member_since: Optional[date] = None
    baptized: RequiredFlag = None
    baptism_date: Optional[date] = None
    sms_consent: RequiredFlag = None
    is_active: RequiredFlag = None
    notes: Optional[str] = None

# PUBLIC_INTERFACE
class MemberOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    church_id: Optional[int] = None
    member_number: Optional[str] = None
    full_name: str
    phone_number: str
    email: Optional[str] = None
    personnummer: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    member_since: Optional[date] = None
    baptized: bool
    baptism_date: Optional[date] = None
    sms_consent: bool
    is_active: bool
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

# --- ADMINS ---

# PUBLIC_INTERFACE
class AdminCreate(BaseModel):
    username: constr(strip_whitespace=True, min_length=3)
    password: constr(min_length=8)
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    church_id: Optional[int] = None
    is_super_admin: bool = False

class AdminUpdate(BaseModel):
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[constr(min_length=8)] = None
    church_id: Optional[int] = None
    is_active: RequiredFlag = None
    is_super_admin: RequiredFlag = None

# PUBLIC_INTERFACE
class AdminOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    church_id: Optional[int] = None
    is_active: bool
    is_super_admin: bool
    created_at: Optional[datetime] = None

# --- KONTINGENT (membership dues) ---

# PUBLIC_INTERFACE
class KontingentUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    member_id: int = Field(..., alias="memberId")
    month: str = Field(..., pattern=MONTH_PATTERN, description="Payment month, YYYY-MM")
    paid: bool
    amount: Optional[Decimal] = None
    notes: Optional[str] = None

# PUBLIC_INTERFACE
class KontingentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    member_id: int
    payment_month: str
    paid: bool
    payment_date: Optional[date] = None
    amount: Optional[Decimal] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None
    updated_at: Optional[datetime] = None

class KontingentMonthRow(BaseModel):
    member_id: int
    full_name: str
    member_number: Optional[str] = None
    paid: bool = False
    payment_date: Optional[date] = None
    amount: Optional[Decimal] = None
    notes: Optional[str] = None

# PUBLIC_INTERFACE
class KontingentMonthOut(BaseModel):
    month: str
    total_members: int
    paid_count: int
    unpaid_count: int
    total_amount: Decimal
    members: List[KontingentMonthRow] = Field(default_factory=list)

# --- SMS ---

# PUBLIC_INTERFACE
class SmsSendRequest(BaseModel):
    member_ids: List[int] = Field(default_factory=list, description="Members to message")
    message: str = Field("", description="SMS body")

# PUBLIC_INTERFACE
class SmsSendResponse(BaseModel):
    message: str
    sent: int
    failed: int
    cost: str = Field(..., description="Estimated cost, e.g. '0.37 NOK'")
    currency: str = "NOK"
    sender: Optional[str] = None
    message_id: Optional[str] = None
    sms_log_id: int

class SmsRecipientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    member_id: int
    full_name: Optional[str] = None
    phone_number: str
    status: str
    provider_message_id: Optional[str] = None
    error_message: Optional[str] = None

# PUBLIC_INTERFACE
class SmsLogOut(BaseModel):
    id: int
    church_id: Optional[int] = None
    message: str
    recipient_count: int
    sent_at: Optional[datetime] = None
    sent_by: Optional[str] = None
    cost_estimate: Optional[Decimal] = None
    provider: Optional[str] = None
    provider_message_id: Optional[str] = None
    recipients: List[SmsRecipientOut] = Field(default_factory=list)

# PUBLIC_INTERFACE
class SmsStats(BaseModel):
    total_sent: int
    this_month: int
    total_cost: Decimal
