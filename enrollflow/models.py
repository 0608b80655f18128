import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_uuid():
    return str(uuid.uuid4())


class Policy(Base):
    """Terms/privacy snapshot that enrollments reference at creation time"""

    __tablename__ = "policies"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    terms_url = Column(String(1000), nullable=False)
    privacy_url = Column(String(1000), nullable=False)
    version = Column(String(50), nullable=False)
    terms_text = Column(Text, nullable=True)
    privacy_text = Column(Text, nullable=True)
    terms_content_sha256 = Column(String(64), nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Surgeon(Base):
    """Surgeon directory copied from the CRM Surgeons module"""

    __tablename__ = "surgeons"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    zoho_id = Column(String(100), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    specialty = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patients = relationship("Patient", back_populates="surgeon")


class Patient(Base):
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    # Unique when present (NULLs never collide)
    email = Column(String(255), unique=True, nullable=True)
    phone = Column(String(50), unique=True, nullable=True)
    notes = Column(Text, nullable=True)
    surgeon_id = Column(String(36), ForeignKey("surgeons.id"), nullable=True, index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    enrollments = relationship("Enrollment", back_populates="patient")
    surgeon = relationship("Surgeon", back_populates="patients")

    @property
    def surgeon_name(self):
        return self.surgeon.name if self.surgeon else None


class Enrollment(Base):
    __tablename__ = "enrollments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    # SHA-256 hex of the raw link token; the raw token is never stored
    token_hash = Column(String(64), unique=True, index=True, nullable=False)
    token_last4 = Column(String(4), nullable=False)

    # CRM linkage ("manual" module for admin-created enrollments)
    zoho_module = Column(String(100), nullable=False)
    zoho_record_id = Column(String(255), nullable=False, index=True)

    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=True, index=True)
    patient_name = Column(String(255), nullable=True)
    patient_email = Column(String(255), nullable=True)
    patient_phone = Column(String(50), nullable=True)

    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), default="usd", nullable=False)

    # created, sent, opened, processing, paid, failed, expired, canceled
    status = Column(String(20), default="created", nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)

    opened_at = Column(DateTime, nullable=True)
    processing_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)
    canceled_at = Column(DateTime, nullable=True)

    # Payment provider linkage (non-PCI metadata only)
    payment_method_type = Column(String(10), nullable=True)  # card, ach
    payment_session_id = Column(String(255), nullable=True)
    payment_intent_id = Column(String(255), nullable=True)
    payment_customer_id = Column(String(255), nullable=True)

    # Policy snapshot taken at creation
    policy_id = Column(String(36), ForeignKey("policies.id"), nullable=True)
    terms_url = Column(String(1000), nullable=False)
    privacy_url = Column(String(1000), nullable=False)
    terms_version = Column(String(50), nullable=False)
    terms_sha256 = Column(String(64), nullable=False)

    terms_accepted_at = Column(DateTime, nullable=True)
    terms_accept_ip = Column(String(100), nullable=True)
    terms_accept_user_agent = Column(String(500), nullable=True)
    signature_data = Column(Text, nullable=True)  # data:image/png;base64,...
    consent_pdf_path = Column(String(500), nullable=True)  # relative to CONSENT_PDF_DIR

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient", back_populates="enrollments")
    policy = relationship("Policy")
    events = relationship(
        "EnrollmentEvent",
        back_populates="enrollment",
        order_by="EnrollmentEvent.id",
        cascade="all, delete-orphan",
    )

    @property
    def is_from_crm(self) -> bool:
        return bool(self.zoho_record_id) and self.zoho_module != "manual"


class EnrollmentEvent(Base):
    """Append-only audit log of enrollment lifecycle events"""

    __tablename__ = "enrollment_events"

    id = Column(Integer, primary_key=True, index=True)
    enrollment_id = Column(
        String(36), ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type = Column(String(50), nullable=False)
    event_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    enrollment = relationship("Enrollment", back_populates="events")


class AdminUser(Base):
    __tablename__ = "admin_users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), unique=True, index=True, nullable=True)  # auth platform subject
    email = Column(String(255), unique=True, nullable=False)
    role = Column(String(20), default="viewer", nullable=False)  # super_admin, admin, viewer
    invited_at = Column(DateTime, server_default=func.now())
    accepted_at = Column(DateTime, nullable=True)
    # Two-Factor Authentication fields
    mfa_method = Column(String(20), nullable=True)  # totp
    totp_secret = Column(String(100), nullable=True)
    totp_enabled = Column(Boolean, default=False, nullable=False)
    # TOTP time step of the last accepted code; a code is accepted at most once
    totp_last_used_step = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class ProcessedPaymentEvent(Base):
    """Idempotency ledger for payment provider webhooks"""

    __tablename__ = "processed_payment_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=True)
    processed_at = Column(DateTime, server_default=func.now())
