"""
SQLAlchemy ORM models for the Church Members backend.
Defines Church (tenant), Admin, Member, SmsLog, SmsRecipient, AuditEntry and KontingentPayment.

Conventions:
- `church_id` is the tenant key; NULL means the row belongs to the installation as a whole.
- Members and admins are never hard-deleted; `is_active` is flipped instead.
- Actor columns (created_by, updated_by, sent_by, recorded_by, audit user_id) hold the admin
  username, not a foreign key.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    Boolean,
    Date,
    Numeric,
    ForeignKey,
    JSON,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.sql import func
import enum

Base = declarative_base()

# --- ENUMs ---

class DeliveryStatusEnum(str, enum.Enum):
    sent = "sent"
    failed = "failed"

class AuditActionEnum(str, enum.Enum):
    create = "CREATE"
    update = "UPDATE"
    delete = "DELETE"
    send_sms = "SEND_SMS"

# --- MODELS ---

class Church(Base):
    __tablename__ = "churches"
    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=func.now())

    admins = relationship("Admin", back_populates="church")
    members = relationship("Member", back_populates="church")

class Admin(Base):
    __tablename__ = "members_admins"
    id = Column(Integer, primary_key=True)
    church_id = Column(Integer, ForeignKey("churches.id", ondelete="SET NULL"), index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(200))
    email = Column(String(100))
    is_active = Column(Boolean, default=True, nullable=False)
    is_super_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=func.now())

    church = relationship("Church", back_populates="admins")

class Member(Base):
    __tablename__ = "members"
    id = Column(Integer, primary_key=True)
    church_id = Column(Integer, ForeignKey("churches.id", ondelete="CASCADE"), index=True)
    member_number = Column(String(50), unique=True)
    full_name = Column(String(200), nullable=False)
    phone_number = Column(String(20), nullable=False)
    email = Column(String(100))
    personnummer = Column(String(11))
    address = Column(String(500))
    postal_code = Column(String(10))
    city = Column(String(100))
    member_since = Column(Date)
    baptized = Column(Boolean, default=False, nullable=False)
    baptism_date = Column(Date)
    sms_consent = Column(Boolean, default=True, nullable=False)
    consent_date = Column(DateTime, default=func.now())
    is_active = Column(Boolean, default=True, nullable=False)
    notes = Column(Text)
    created_at = Column(DateTime, default=func.now())
    created_by = Column(String(100))
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
    updated_by = Column(String(100))

    church = relationship("Church", back_populates="members")
    kontingent_payments = relationship("KontingentPayment", back_populates="member", cascade="all, delete", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("church_id", "phone_number", name="uq_members_church_phone"),
        Index("idx_members_phone", "phone_number"),
        Index("idx_members_active", "is_active"),
        Index("idx_members_name", "full_name"),
    )

class SmsLog(Base):
    __tablename__ = "sms_logs"
    id = Column(Integer, primary_key=True)
    church_id = Column(Integer, ForeignKey("churches.id", ondelete="CASCADE"), index=True)
    message = Column(Text, nullable=False)
    recipient_count = Column(Integer, nullable=False)
    sent_at = Column(DateTime, default=func.now(), index=True)
    sent_by = Column(String(100))
    cost_estimate = Column(Numeric(10, 2))
    provider = Column(String(32))
    provider_message_id = Column(String(100))

    recipients = relationship("SmsRecipient", back_populates="sms_log", cascade="all, delete", passive_deletes=True)

class SmsRecipient(Base):
    __tablename__ = "sms_recipients"
    id = Column(Integer, primary_key=True)
    sms_log_id = Column(Integer, ForeignKey("sms_logs.id", ondelete="CASCADE"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    phone_number = Column(String(20), nullable=False)
    status = Column(String(50), nullable=False, default=DeliveryStatusEnum.sent.value)
    provider_message_id = Column(String(100))
    error_message = Column(String(500))
    created_at = Column(DateTime, default=func.now())

    sms_log = relationship("SmsLog", back_populates="recipients")
    member = relationship("Member")

class AuditEntry(Base):
    __tablename__ = "audit_log"
    id = Column(Integer, primary_key=True)
    user_id = Column(String(100))
    action = Column(String(100), nullable=False)
    table_name = Column(String(100))
    record_id = Column(Integer)
    old_values = Column(JSON)
    new_values = Column(JSON)
    ip_address = Column(String(50))
    timestamp = Column(DateTime, default=func.now(), index=True)

class KontingentPayment(Base):
    __tablename__ = "kontingent_payments"
    id = Column(Integer, primary_key=True)
    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    payment_month = Column(String(7), nullable=False)
    paid = Column(Boolean, default=False, nullable=False)
    payment_date = Column(Date)
    amount = Column(Numeric(10, 2))
    notes = Column(Text)
    recorded_by = Column(String(100))
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    member = relationship("Member", back_populates="kontingent_payments")

    __table_args__ = (
        UniqueConstraint("member_id", "payment_month", name="uq_kontingent_member_month"),
        Index("idx_kontingent_member_month", "member_id", "payment_month"),
        Index("idx_kontingent_month", "payment_month"),
    )
