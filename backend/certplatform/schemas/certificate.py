import math
from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional, List, Dict, Any

from ..core.errors import ErrorKind
from ..models.enums import CertificateTemplate, CertificateAction


class OperationResult(BaseModel):
    success: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class CertificateGenerationRequest(BaseModel):
    test_attempt_id: str
    template_type: Optional[CertificateTemplate] = None
    recipient_name: Optional[str] = None
    custom_data: Optional[Dict[str, Any]] = None


class CertificateGenerationResult(OperationResult):
    certificate_id: Optional[str] = None
    verification_code: Optional[str] = None
    file_path: Optional[str] = None


class RegenerateRequest(BaseModel):
    template_type: Optional[CertificateTemplate] = None


class RevokeRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class VerificationRequest(BaseModel):
    verification_code: str = Field(..., min_length=1)


class PublicCertificateView(BaseModel):
    recipient_name: str
    test_name: Optional[str] = None
    issue_date: str
    score: Optional[int] = None
    proficiency_level: Optional[str] = None
    organization_name: str
    test_category: Optional[str] = None
    completion_date: Optional[str] = None


class VerificationResult(BaseModel):
    success: bool
    is_valid: bool
    verification_code: Optional[str] = None
    certificate_data: Optional[PublicCertificateView] = None
    error: Optional[str] = None


class EmailShareRequest(BaseModel):
    email: EmailStr
    message: Optional[str] = None


class CertificateOut(BaseModel):
    id: str
    user_id: str
    test_id: str
    test_attempt_id: str
    verification_code: str
    title: str
    description: Optional[str] = None
    recipient_name: str
    test_name: Optional[str] = None
    score: int
    proficiency_level: Optional[str] = None
    template_type: str
    issue_date: datetime
    expiry_date: Optional[datetime] = None
    is_valid: bool
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[str] = None
    file_path: Optional[str] = None
    download_count: int
    view_count: int
    email_sent: bool
    email_sent_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserCertificateFilter(BaseModel):
    user_id: str
    is_valid: Optional[bool] = None
    test_id: Optional[str] = None
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)


class AuditLogFilter(BaseModel):
    certificate_id: str
    action: Optional[CertificateAction] = None
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)


class AuditLogEntry(BaseModel):
    id: str
    certificate_id: str
    action: str
    performed_by: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ActionCount(BaseModel):
    action: str
    count: int


class Pagination(BaseModel):
    page: int
    limit: int
    total_count: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def from_counts(cls, page: int, limit: int, total_count: int) -> "Pagination":
        total_pages = math.ceil(total_count / limit)
        return cls(
            page=page,
            limit=limit,
            total_count=total_count,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class CertificatePage(BaseModel):
    certificates: List[CertificateOut]
    pagination: Pagination


class AuditLogPage(BaseModel):
    audit_logs: List[AuditLogEntry]
    total_actions: int
    action_breakdown: List[ActionCount]
    pagination: Pagination


class CertificateStatsFilter(BaseModel):
    timeframe_days: int = Field(30, ge=1, le=3650)
    user_id: Optional[str] = None


class TemplateCount(BaseModel):
    template_type: str
    count: int


class TopCertificate(BaseModel):
    id: str
    title: str
    recipient_name: str
    verification_code: str
    download_count: int
    view_count: int

    class Config:
        from_attributes = True


class CertificateStatistics(BaseModel):
    total_certificates: int
    valid_certificates: int
    revoked_certificates: int
    expired_certificates: int
    emailed_certificates: int
    by_template: List[TemplateCount]
    by_action: List[ActionCount]
    recent_activity: List[AuditLogEntry]
    top_downloads: List[TopCertificate]
    top_views: List[TopCertificate]
