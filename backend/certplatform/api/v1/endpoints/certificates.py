import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from ....api import deps
from ....core.database import get_db
from ....core.errors import http_error
from ....models.certificate import Certificate
from ....models.enums import CertificateAction
from ....models.test import TestAttempt
from ....models.user import User
from ....schemas.certificate import (
    AuditLogFilter,
    AuditLogPage,
    CertificateGenerationRequest,
    CertificateGenerationResult,
    CertificateOut,
    CertificatePage,
    CertificateStatistics,
    CertificateStatsFilter,
    EmailShareRequest,
    RegenerateRequest,
    RevokeRequest,
    UserCertificateFilter,
    VerificationRequest,
    VerificationResult,
)
from ....services.certificate_audit_service import CertificateAuditService
from ....services.certificate_service import CertificateService
from ....services.email_service import CertificateEmailData, EmailService
from ....utils.certificates import build_verification_url

logger = logging.getLogger(__name__)

router = APIRouter()


def verify_certificate_code(code: str, request: Request, audit: CertificateAuditService) -> VerificationResult:
    """Shared by the GET (QR code link) and POST verification routes."""
    return audit.verify(code, ip_address=deps.client_ip(request), user_agent=deps.user_agent(request))


def _get_owned_certificate(service: CertificateService, certificate_id: str, current_user: User) -> Certificate:
    certificate = service.get_certificate(certificate_id)
    if not certificate:
        raise HTTPException(status_code=404, detail="Certificate not found")
    deps.ensure_owner_or_admin(certificate.user_id, current_user)
    return certificate


@router.post("/generate", response_model=CertificateGenerationResult, status_code=status.HTTP_201_CREATED)
async def generate_certificate(
    body: CertificateGenerationRequest,
    request: Request,
    current_user: User = Depends(deps.get_current_user),
    db: Session = Depends(get_db),
    service: CertificateService = Depends(deps.get_certificate_service),
):
    attempt = db.query(TestAttempt.user_id).filter(TestAttempt.id == body.test_attempt_id).first()
    if attempt is not None:
        deps.ensure_owner_or_admin(attempt.user_id, current_user)

    result = service.generate_certificate(
        body,
        performed_by=current_user.id,
        ip_address=deps.client_ip(request),
        user_agent=deps.user_agent(request),
    )
    if not result.success:
        raise http_error(result.error_kind, result.error)
    return result


@router.post("/verify", response_model=VerificationResult)
async def verify_certificate(
    body: VerificationRequest,
    request: Request,
    audit: CertificateAuditService = Depends(deps.get_audit_service),
):
    return verify_certificate_code(body.verification_code, request, audit)


@router.get("/verify", response_model=VerificationResult)
async def verify_certificate_by_link(
    request: Request,
    code: Optional[str] = None,
    audit: CertificateAuditService = Depends(deps.get_audit_service),
):
    if not code:
        raise HTTPException(status_code=400, detail="Verification code is required")
    return verify_certificate_code(code, request, audit)


@router.get("/analytics", response_model=CertificateStatistics)
async def get_certificate_analytics(
    timeframe: int = Query(30, ge=1, le=3650),
    user_id: Optional[str] = None,
    current_user: User = Depends(deps.get_current_admin),
    audit: CertificateAuditService = Depends(deps.get_audit_service),
):
    return audit.certificate_statistics(CertificateStatsFilter(timeframe_days=timeframe, user_id=user_id))


@router.get("/user/{user_id}", response_model=CertificatePage)
async def get_user_certificates(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    is_valid: Optional[bool] = None,
    test_id: Optional[str] = None,
    current_user: User = Depends(deps.get_current_user),
    service: CertificateService = Depends(deps.get_certificate_service),
):
    deps.ensure_owner_or_admin(user_id, current_user)
    return service.list_user_certificates(
        UserCertificateFilter(user_id=user_id, is_valid=is_valid, test_id=test_id, page=page, limit=limit)
    )


@router.get("/{certificate_id}", response_model=CertificateOut)
async def get_certificate(
    certificate_id: str,
    request: Request,
    current_user: User = Depends(deps.get_current_user),
    service: CertificateService = Depends(deps.get_certificate_service),
    audit: CertificateAuditService = Depends(deps.get_audit_service),
):
    certificate = _get_owned_certificate(service, certificate_id, current_user)

    service.increment_view_count(certificate_id)
    audit.record_access(
        certificate_id,
        CertificateAction.VIEWED,
        performed_by=current_user.id,
        ip_address=deps.client_ip(request),
        user_agent=deps.user_agent(request),
    )
    return certificate


async def _revoke(
    certificate_id: str,
    reason: str,
    request: Request,
    current_user: User,
    service: CertificateService,
):
    _get_owned_certificate(service, certificate_id, current_user)
    result = service.revoke_certificate(
        certificate_id,
        reason,
        performed_by=current_user.id,
        ip_address=deps.client_ip(request),
        user_agent=deps.user_agent(request),
    )
    if not result.success:
        raise http_error(result.error_kind, result.error)
    return {"success": True, "message": "Certificate revoked successfully"}


@router.delete("/{certificate_id}")
async def delete_certificate(
    certificate_id: str,
    request: Request,
    current_user: User = Depends(deps.get_current_user),
    service: CertificateService = Depends(deps.get_certificate_service),
):
    """Certificates are never deleted; the owner's delete revokes instead"""
    return await _revoke(certificate_id, "Deleted by user request", request, current_user, service)


@router.post("/{certificate_id}/revoke")
async def revoke_certificate(
    certificate_id: str,
    body: RevokeRequest,
    request: Request,
    current_user: User = Depends(deps.get_current_admin),
    service: CertificateService = Depends(deps.get_certificate_service),
):
    return await _revoke(certificate_id, body.reason, request, current_user, service)


@router.post("/{certificate_id}/regenerate", response_model=CertificateGenerationResult)
async def regenerate_certificate(
    certificate_id: str,
    request: Request,
    body: RegenerateRequest = RegenerateRequest(),
    current_user: User = Depends(deps.get_current_user),
    service: CertificateService = Depends(deps.get_certificate_service),
):
    _get_owned_certificate(service, certificate_id, current_user)
    result = service.regenerate_certificate(
        certificate_id,
        template_type=body.template_type,
        performed_by=current_user.id,
        ip_address=deps.client_ip(request),
        user_agent=deps.user_agent(request),
    )
    if not result.success:
        raise http_error(result.error_kind, result.error)
    return result


@router.get("/{certificate_id}/download")
async def download_certificate(
    certificate_id: str,
    request: Request,
    current_user: User = Depends(deps.get_current_user),
    service: CertificateService = Depends(deps.get_certificate_service),
    audit: CertificateAuditService = Depends(deps.get_audit_service),
):
    certificate = service.get_certificate(certificate_id)
    if not certificate:
        raise HTTPException(status_code=404, detail="Certificate not found")
    deps.ensure_owner_or_admin(certificate.user_id, current_user)
    if not certificate.is_valid:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="Certificate has been revoked")

    full_path = service.get_file_path(certificate)
    if not full_path:
        raise HTTPException(status_code=404, detail="Certificate file not found")

    audit.record_access(
        certificate_id,
        CertificateAction.DOWNLOADED,
        performed_by=current_user.id,
        ip_address=deps.client_ip(request),
        user_agent=deps.user_agent(request),
    )
    service.increment_download_count(certificate_id)

    return FileResponse(
        full_path,
        media_type="application/pdf",
        filename=service.download_filename(certificate),
        headers={"Cache-Control": "private, no-cache"},
    )


@router.post("/{certificate_id}/email")
async def email_certificate(
    certificate_id: str,
    body: EmailShareRequest,
    request: Request,
    current_user: User = Depends(deps.get_current_user),
    service: CertificateService = Depends(deps.get_certificate_service),
    audit: CertificateAuditService = Depends(deps.get_audit_service),
    email_service: EmailService = Depends(deps.get_email_service),
):
    certificate = service.get_certificate(certificate_id)
    if not certificate:
        raise HTTPException(status_code=404, detail="Certificate not found")
    deps.ensure_owner_or_admin(certificate.user_id, current_user)
    if not certificate.is_valid:
        raise HTTPException(status_code=400, detail="Cannot share revoked certificate")

    base_url = str(request.base_url).rstrip("/")
    sent, error = email_service.send_certificate(CertificateEmailData(
        to=body.email,
        recipient_name=certificate.recipient_name,
        test_name=certificate.test_name or (certificate.test.title if certificate.test else "Assessment"),
        score=certificate.score,
        proficiency_level=certificate.proficiency_level,
        verification_code=certificate.verification_code,
        certificate_url=f"{base_url}/api/v1/certificates/{certificate_id}/download",
        verification_url=build_verification_url(certificate.verification_code),
        message=body.message,
    ))
    if not sent:
        raise HTTPException(status_code=500, detail=error or "Failed to send email")

    service.mark_email_sent(certificate_id)
    audit.record_access(
        certificate_id,
        CertificateAction.EMAILED,
        performed_by=current_user.id,
        ip_address=deps.client_ip(request),
        user_agent=deps.user_agent(request),
        details={"recipient_email": body.email, "custom_message": body.message},
    )
    return {"success": True, "message": "Certificate sent successfully"}


@router.get("/{certificate_id}/audit", response_model=AuditLogPage)
async def get_certificate_audit_log(
    certificate_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    action: Optional[CertificateAction] = None,
    current_user: User = Depends(deps.get_current_user),
    service: CertificateService = Depends(deps.get_certificate_service),
    audit: CertificateAuditService = Depends(deps.get_audit_service),
):
    _get_owned_certificate(service, certificate_id, current_user)
    return audit.list_audit_logs(
        AuditLogFilter(certificate_id=certificate_id, action=action, page=page, limit=limit)
    )
