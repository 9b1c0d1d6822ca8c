import logging
import os
import re
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..core.config import settings
from ..core.errors import ErrorKind
from ..models.base import gen_id
from ..models.certificate import Certificate, CertificateAuditLog
from ..models.enums import CertificateAction, CertificateTemplate
from ..models.test import Test, TestAttempt
from ..schemas.certificate import (
    CertificateGenerationRequest,
    CertificateGenerationResult,
    CertificateOut,
    CertificatePage,
    OperationResult,
    Pagination,
    UserCertificateFilter,
)
from ..utils.certificates import (
    build_verification_url,
    calculate_expiry_date,
    calculate_proficiency_level,
    generate_certificate_title,
    generate_verification_code,
    get_certificate_template,
    sanitize_certificate_data,
)
from ..utils.file_paths import (
    ensure_parent_directory,
    get_certificate_relative_path,
    get_full_storage_path,
)
from ..utils.timezone import format_certificate_date, utcnow
from .certificate_renderer import (
    CertificateRenderContext,
    CertificateRenderer,
    CertificateRenderError,
    qr_svg,
)

logger = logging.getLogger(__name__)


def _write_file(full_path: str, content: bytes) -> None:
    ensure_parent_directory(full_path)
    tmp_path = f"{full_path}.tmp"
    with open(tmp_path, "wb") as f:
        f.write(content)
    os.replace(tmp_path, full_path)


def _remove_file(full_path: str) -> None:
    try:
        os.remove(full_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove orphaned certificate file {full_path}: {e}")


class CertificateService:
    """Issues, re-renders and revokes certificates."""

    def __init__(
        self,
        db: Session,
        renderer: Optional[CertificateRenderer] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.renderer = renderer or CertificateRenderer()
        self.clock = clock

    def get_certificate(self, certificate_id: str) -> Optional[Certificate]:
        return (
            self.db.query(Certificate)
            .options(joinedload(Certificate.test).joinedload(Test.category))
            .filter(Certificate.id == certificate_id)
            .first()
        )

    def get_for_attempt(self, test_attempt_id: str) -> Optional[Certificate]:
        return self.db.query(Certificate).filter(Certificate.test_attempt_id == test_attempt_id).first()

    def list_user_certificates(self, filters: UserCertificateFilter) -> CertificatePage:
        query = self.db.query(Certificate).filter(Certificate.user_id == filters.user_id)
        if filters.is_valid is not None:
            query = query.filter(Certificate.is_valid.is_(filters.is_valid))
        if filters.test_id:
            query = query.filter(Certificate.test_id == filters.test_id)

        total_count = query.count()
        certificates = (
            query.order_by(Certificate.created_at.desc())
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
            .all()
        )
        return CertificatePage(
            certificates=[CertificateOut.model_validate(c) for c in certificates],
            pagination=Pagination.from_counts(filters.page, filters.limit, total_count),
        )

    def generate_certificate(
        self,
        request: CertificateGenerationRequest,
        performed_by: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> CertificateGenerationResult:
        """Issue the certificate for a passed, completed attempt.

        Rendering happens before anything is written, and the file is only
        kept if the certificate row and its GENERATED audit entry commit.
        """
        attempt = (
            self.db.query(TestAttempt)
            .options(
                joinedload(TestAttempt.test).joinedload(Test.category),
                joinedload(TestAttempt.user),
            )
            .filter(TestAttempt.id == request.test_attempt_id)
            .first()
        )
        if not attempt:
            return CertificateGenerationResult(
                success=False, error="Test attempt not found", error_kind=ErrorKind.NOT_FOUND
            )
        if attempt.completed_at is None:
            return CertificateGenerationResult(
                success=False, error="Test attempt is not completed", error_kind=ErrorKind.NOT_COMPLETED
            )
        if not attempt.passed:
            return CertificateGenerationResult(
                success=False, error="Test attempt did not pass", error_kind=ErrorKind.NOT_PASSED
            )
        if self.get_for_attempt(attempt.id):
            return CertificateGenerationResult(
                success=False,
                error="Certificate already exists for this test attempt",
                error_kind=ErrorKind.ALREADY_ISSUED,
            )

        now = self.clock()
        test = attempt.test
        category = test.category
        category_type = category.type if category else None

        certificate_id = gen_id()
        verification_code = generate_verification_code()
        verification_url = build_verification_url(verification_code)
        template = get_certificate_template(category_type, request.template_type)
        proficiency_level = calculate_proficiency_level(attempt.score, test.level)
        expiry_date = calculate_expiry_date(category_type, issued_at=now)
        recipient_name = request.recipient_name or attempt.user.name or attempt.user.email
        title = generate_certificate_title(test.title)

        certificate_data = sanitize_certificate_data({
            **(request.custom_data or {}),
            "test_category": category.name if category else None,
            "completion_date": attempt.completed_at.isoformat(),
            "earned_points": attempt.earned_points,
            "total_points": attempt.total_points,
            "verification_url": verification_url,
        })

        context = CertificateRenderContext(
            recipient_name=recipient_name,
            test_name=test.title,
            title=title,
            score=attempt.score,
            proficiency_level=proficiency_level,
            issue_date=format_certificate_date(now),
            expiry_date=format_certificate_date(expiry_date) if expiry_date else None,
            verification_code=verification_code,
            verification_url=verification_url,
            template_type=template.value,
            organization_name=settings.organization_name,
            authority_name=settings.default_authority_name,
        )
        try:
            pdf_bytes = self.renderer.render(context)
        except CertificateRenderError:
            return CertificateGenerationResult(
                success=False, error="Failed to generate PDF certificate", error_kind=ErrorKind.INTERNAL
            )

        relative_path = get_certificate_relative_path(attempt.user_id, certificate_id, issued_on=now)
        full_path = get_full_storage_path(relative_path)

        certificate = Certificate(
            id=certificate_id,
            user_id=attempt.user_id,
            test_id=test.id,
            test_attempt_id=attempt.id,
            verification_code=verification_code,
            title=title,
            description=f"Awarded for passing {test.title} with a score of {attempt.score}%",
            recipient_name=recipient_name,
            test_name=test.title,
            score=attempt.score,
            proficiency_level=proficiency_level,
            template_type=template.value,
            qr_code_data=qr_svg(verification_url),
            certificate_data=certificate_data,
            issue_date=now,
            expiry_date=expiry_date,
            issued_by=settings.default_authority_name,
            file_path=relative_path,
            created_at=now,
            updated_at=now,
        )
        self.db.add(certificate)
        self.db.add(CertificateAuditLog(
            certificate_id=certificate_id,
            action=CertificateAction.GENERATED.value,
            performed_by=performed_by,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"template_type": template.value, "score": attempt.score},
            created_at=now,
        ))

        try:
            self.db.flush()
            _write_file(full_path, pdf_bytes)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            _remove_file(full_path)
            if self.get_for_attempt(attempt.id):
                logger.info(f"Concurrent certificate generation for attempt {attempt.id} lost the race")
                return CertificateGenerationResult(
                    success=False,
                    error="Certificate already exists for this test attempt",
                    error_kind=ErrorKind.ALREADY_ISSUED,
                )
            logger.error(f"Integrity error while issuing certificate for attempt {attempt.id}")
            return CertificateGenerationResult(
                success=False, error="Failed to generate certificate", error_kind=ErrorKind.INTERNAL
            )
        except (SQLAlchemyError, OSError) as e:
            self.db.rollback()
            _remove_file(full_path)
            logger.error(f"Failed to issue certificate for attempt {attempt.id}: {e}")
            return CertificateGenerationResult(
                success=False, error="Failed to generate certificate", error_kind=ErrorKind.INTERNAL
            )

        logger.info(f"Issued certificate {certificate_id} ({verification_code}) for attempt {attempt.id}")
        return CertificateGenerationResult(
            success=True,
            certificate_id=certificate_id,
            verification_code=verification_code,
            file_path=relative_path,
        )

    def regenerate_certificate(
        self,
        certificate_id: str,
        template_type: Optional[CertificateTemplate] = None,
        performed_by: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> CertificateGenerationResult:
        """Re-render the document of a valid certificate; its identity and code stay the same."""
        certificate = self.get_certificate(certificate_id)
        if not certificate:
            return CertificateGenerationResult(
                success=False, error="Certificate not found", error_kind=ErrorKind.NOT_FOUND
            )
        if not certificate.is_valid:
            return CertificateGenerationResult(
                success=False, error="Cannot regenerate revoked certificate", error_kind=ErrorKind.UNAVAILABLE
            )

        now = self.clock()
        template = CertificateTemplate(template_type or certificate.template_type)
        verification_url = build_verification_url(certificate.verification_code)
        context = CertificateRenderContext(
            recipient_name=certificate.recipient_name,
            test_name=certificate.test_name or certificate.test.title,
            title=certificate.title,
            score=certificate.score,
            proficiency_level=certificate.proficiency_level,
            issue_date=format_certificate_date(certificate.issue_date),
            expiry_date=format_certificate_date(certificate.expiry_date) if certificate.expiry_date else None,
            verification_code=certificate.verification_code,
            verification_url=verification_url,
            template_type=template.value,
            organization_name=settings.organization_name,
            authority_name=certificate.issued_by or settings.default_authority_name,
        )
        try:
            pdf_bytes = self.renderer.render(context)
        except CertificateRenderError:
            return CertificateGenerationResult(
                success=False, error="Failed to generate PDF certificate", error_kind=ErrorKind.INTERNAL
            )

        relative_path = certificate.file_path or get_certificate_relative_path(
            certificate.user_id, certificate.id, issued_on=certificate.issue_date
        )
        try:
            _write_file(get_full_storage_path(relative_path), pdf_bytes)
            certificate.template_type = template.value
            certificate.file_path = relative_path
            certificate.updated_at = now
            self.db.add(CertificateAuditLog(
                certificate_id=certificate.id,
                action=CertificateAction.GENERATED.value,
                performed_by=performed_by,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"regenerated": True, "template_type": template.value},
                created_at=now,
            ))
            self.db.commit()
        except (SQLAlchemyError, OSError) as e:
            self.db.rollback()
            logger.error(f"Failed to regenerate certificate {certificate_id}: {e}")
            return CertificateGenerationResult(
                success=False, error="Failed to regenerate certificate", error_kind=ErrorKind.INTERNAL
            )

        logger.info(f"Regenerated certificate {certificate_id} with template {template.value}")
        return CertificateGenerationResult(
            success=True,
            certificate_id=certificate.id,
            verification_code=certificate.verification_code,
            file_path=relative_path,
        )

    def revoke_certificate(
        self,
        certificate_id: str,
        reason: str,
        performed_by: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> OperationResult:
        if not self.db.query(Certificate.id).filter(Certificate.id == certificate_id).first():
            return OperationResult(success=False, error="Certificate not found", error_kind=ErrorKind.NOT_FOUND)

        now = self.clock()
        # only the first revoke flips is_valid
        result = self.db.execute(
            update(Certificate)
            .where(Certificate.id == certificate_id, Certificate.is_valid.is_(True))
            .values(is_valid=False, revoked_at=now, revoked_reason=reason, updated_at=now)
        )
        if result.rowcount != 1:
            self.db.rollback()
            return OperationResult(
                success=False,
                error="Certificate has already been revoked",
                error_kind=ErrorKind.ALREADY_REVOKED,
            )

        self.db.add(CertificateAuditLog(
            certificate_id=certificate_id,
            action=CertificateAction.REVOKED.value,
            performed_by=performed_by,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"reason": reason},
            created_at=now,
        ))
        self.db.commit()
        logger.info(f"Revoked certificate {certificate_id}: {reason}")
        return OperationResult(success=True)

    def increment_view_count(self, certificate_id: str) -> bool:
        return self._bump(certificate_id, view_count=Certificate.view_count + 1)

    def increment_download_count(self, certificate_id: str) -> bool:
        return self._bump(certificate_id, download_count=Certificate.download_count + 1)

    def mark_email_sent(self, certificate_id: str) -> bool:
        return self._bump(certificate_id, email_sent=True, email_sent_at=self.clock())

    def get_file_path(self, certificate: Certificate) -> Optional[str]:
        """Absolute path of the stored document, None if it was never written or is gone."""
        if not certificate.file_path:
            return None
        full_path = get_full_storage_path(certificate.file_path)
        return full_path if os.path.isfile(full_path) else None

    @staticmethod
    def download_filename(certificate: Certificate) -> str:
        def clean(value: str) -> str:
            return re.sub(r"\s+", "_", re.sub(r"[^a-zA-Z0-9\s-]", "", value or "").strip())

        return f"{clean(certificate.title)}_{clean(certificate.recipient_name)}.pdf"

    def _bump(self, certificate_id: str, **values) -> bool:
        result = self.db.execute(
            update(Certificate).where(Certificate.id == certificate_id).values(**values)
        )
        self.db.commit()
        return result.rowcount == 1
