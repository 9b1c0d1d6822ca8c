from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Boolean, Integer, JSON
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import CertificateTemplate
from ..utils.timezone import utcnow


class Certificate(BaseModel):
    __tablename__ = "certificates"

    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    test_id = Column(String, ForeignKey("tests.id"), nullable=False)
    # at most one certificate per attempt
    test_attempt_id = Column(String, ForeignKey("test_attempts.id"), nullable=False, unique=True)

    verification_code = Column(String, unique=True, index=True, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    recipient_name = Column(String, nullable=False)
    test_name = Column(String, nullable=True)
    score = Column(Integer, nullable=False)
    proficiency_level = Column(String, nullable=True)
    template_type = Column(String, default=CertificateTemplate.STANDARD.value, nullable=False)
    qr_code_data = Column(Text, nullable=True)
    certificate_data = Column(JSON, nullable=True)

    issue_date = Column(DateTime, default=utcnow, nullable=False)
    expiry_date = Column(DateTime, nullable=True)
    issued_by = Column(String, nullable=True)

    # False means revoked
    is_valid = Column(Boolean, default=True, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    revoked_reason = Column(String, nullable=True)

    file_path = Column(String, nullable=True)
    download_count = Column(Integer, default=0, nullable=False)
    view_count = Column(Integer, default=0, nullable=False)
    email_sent = Column(Boolean, default=False, nullable=False)
    email_sent_at = Column(DateTime, nullable=True)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="certificates")
    test = relationship("Test")
    test_attempt = relationship("TestAttempt", back_populates="certificate")
    audit_logs = relationship("CertificateAuditLog", back_populates="certificate")


class CertificateAuditLog(BaseModel):
    """Append-only; rows are never updated or deleted."""
    __tablename__ = "certificate_audit_logs"

    certificate_id = Column(String, ForeignKey("certificates.id"), nullable=False, index=True)
    action = Column(String, nullable=False, index=True)
    # None for anonymous public verification
    performed_by = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    details = Column(JSON, nullable=True)

    certificate = relationship("Certificate", back_populates="audit_logs")
