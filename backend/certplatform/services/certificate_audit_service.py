"""
Public verification of certificates and their append-only audit trail.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..core.config import settings
from ..models.certificate import Certificate, CertificateAuditLog
from ..models.enums import CertificateAction
from ..models.test import Test
from ..schemas.certificate import (
    ActionCount,
    AuditLogEntry,
    AuditLogFilter,
    AuditLogPage,
    CertificateStatistics,
    CertificateStatsFilter,
    Pagination,
    PublicCertificateView,
    TemplateCount,
    TopCertificate,
    VerificationResult,
)
from ..utils.certificates import (
    is_certificate_expired,
    is_valid_verification_code_format,
    normalize_verification_code,
)
from ..utils.timezone import utcnow

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_LIMIT = 50
TOP_CERTIFICATES_LIMIT = 10


class CertificateAuditService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def is_expired(self, certificate: Certificate) -> bool:
        return is_certificate_expired(certificate.expiry_date, self.clock())

    def verify(
        self,
        verification_code: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> VerificationResult:
        """Look a certificate up by its public code.

        Malformed codes are rejected before any lookup. Unknown codes are
        reported as not valid without an audit entry; every lookup that finds
        a certificate leaves exactly one VERIFIED entry, whatever the outcome.
        """
        code = normalize_verification_code(verification_code)
        if not is_valid_verification_code_format(code):
            return VerificationResult(
                success=False, is_valid=False, verification_code=code, error="Invalid verification code format"
            )

        certificate = (
            self.db.query(Certificate)
            .options(joinedload(Certificate.test).joinedload(Test.category))
            .filter(Certificate.verification_code == code)
            .first()
        )
        if not certificate:
            return VerificationResult(
                success=True, is_valid=False, verification_code=code, error="Certificate not found"
            )

        if not certificate.is_valid:
            reason, error = "revoked", "Certificate has been revoked"
        elif self.is_expired(certificate):
            reason, error = "expired", "Certificate has expired"
        else:
            reason, error = "valid", None
        is_valid = reason == "valid"

        self.record_access(
            certificate.id,
            CertificateAction.VERIFIED,
            performed_by=None,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"is_valid": is_valid, "reason": reason},
        )

        return VerificationResult(
            success=True,
            is_valid=is_valid,
            verification_code=code,
            certificate_data=self.public_view(certificate) if is_valid else None,
            error=error,
        )

    def public_view(self, certificate: Certificate) -> PublicCertificateView:
        data = certificate.certificate_data or {}
        category = certificate.test.category if certificate.test else None
        completion_date = data.get("completion_date")
        return PublicCertificateView(
            recipient_name=certificate.recipient_name,
            test_name=certificate.test_name,
            issue_date=certificate.issue_date.strftime("%Y-%m-%d"),
            score=certificate.score,
            proficiency_level=certificate.proficiency_level,
            organization_name=settings.organization_name,
            test_category=data.get("test_category") or (category.name if category else None),
            completion_date=completion_date[:10] if completion_date else None,
        )

    def record_access(
        self,
        certificate_id: str,
        action: CertificateAction,
        performed_by: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Append an audit entry. A failed write is logged and never fails the caller."""
        try:
            self.db.add(CertificateAuditLog(
                certificate_id=certificate_id,
                action=CertificateAction(action).value,
                performed_by=performed_by,
                ip_address=ip_address,
                user_agent=user_agent,
                details=details,
                created_at=self.clock(),
            ))
            self.db.commit()
            return True
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to write {action} audit entry for certificate {certificate_id}: {e}")
            return False

    def list_audit_logs(self, filters: AuditLogFilter) -> AuditLogPage:
        query = self.db.query(CertificateAuditLog).filter(
            CertificateAuditLog.certificate_id == filters.certificate_id
        )
        if filters.action:
            query = query.filter(CertificateAuditLog.action == filters.action.value)

        total_count = query.count()
        logs = (
            query.order_by(CertificateAuditLog.created_at.desc())
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
            .all()
        )
        breakdown = (
            self.db.query(CertificateAuditLog.action, func.count(CertificateAuditLog.id))
            .filter(CertificateAuditLog.certificate_id == filters.certificate_id)
            .group_by(CertificateAuditLog.action)
            .all()
        )

        return AuditLogPage(
            audit_logs=[AuditLogEntry.model_validate(log) for log in logs],
            total_actions=total_count,
            action_breakdown=[ActionCount(action=action, count=count) for action, count in breakdown],
            pagination=Pagination.from_counts(filters.page, filters.limit, total_count),
        )

    def certificate_statistics(self, filters: CertificateStatsFilter) -> CertificateStatistics:
        now = self.clock()
        since = now - timedelta(days=filters.timeframe_days)

        def certificates():
            query = self.db.query(Certificate)
            if filters.user_id:
                query = query.filter(Certificate.user_id == filters.user_id)
            return query

        logs = self.db.query(CertificateAuditLog).filter(CertificateAuditLog.created_at >= since)
        if filters.user_id:
            logs = logs.join(Certificate).filter(Certificate.user_id == filters.user_id)

        by_template = (
            certificates()
            .with_entities(Certificate.template_type, func.count(Certificate.id))
            .group_by(Certificate.template_type)
            .all()
        )
        by_action = (
            logs.with_entities(CertificateAuditLog.action, func.count(CertificateAuditLog.id))
            .group_by(CertificateAuditLog.action)
            .all()
        )
        recent = logs.order_by(CertificateAuditLog.created_at.desc()).limit(RECENT_ACTIVITY_LIMIT).all()

        return CertificateStatistics(
            total_certificates=certificates().count(),
            valid_certificates=certificates().filter(Certificate.is_valid.is_(True)).count(),
            revoked_certificates=certificates().filter(Certificate.is_valid.is_(False)).count(),
            # expired but never revoked
            expired_certificates=certificates()
            .filter(Certificate.is_valid.is_(True), Certificate.expiry_date < now)
            .count(),
            emailed_certificates=certificates().filter(Certificate.email_sent.is_(True)).count(),
            by_template=[TemplateCount(template_type=t, count=c) for t, c in by_template],
            by_action=[ActionCount(action=a, count=c) for a, c in by_action],
            recent_activity=[AuditLogEntry.model_validate(log) for log in recent],
            top_downloads=[
                TopCertificate.model_validate(c)
                for c in certificates().order_by(Certificate.download_count.desc()).limit(TOP_CERTIFICATES_LIMIT)
            ],
            top_views=[
                TopCertificate.model_validate(c)
                for c in certificates().order_by(Certificate.view_count.desc()).limit(TOP_CERTIFICATES_LIMIT)
            ],
        )
