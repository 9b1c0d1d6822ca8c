from celery import current_task
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import settings
from ..core.database import SessionLocal
from ..models.enums import CertificateAction
from ..services.certificate_audit_service import CertificateAuditService
from ..services.certificate_service import CertificateService
from ..services.email_service import CertificateEmailData, EmailService
from ..utils.certificates import build_verification_url

logger = logging.getLogger(__name__)


def deliver_certificate_email(
    db: Session,
    certificate_id: str,
    to: Optional[str] = None,
    message: Optional[str] = None,
    email_service: Optional[EmailService] = None,
) -> dict:
    """Mail a certificate, attaching the PDF when it is on disk.

    Defaults to the certificate owner's address.
    """
    certificates = CertificateService(db)
    certificate = certificates.get_certificate(certificate_id)
    if not certificate:
        return {'sent': False, 'error': "Certificate not found"}
    if not certificate.is_valid:
        return {'sent': False, 'error': "Cannot share revoked certificate"}

    recipient = to or certificate.user.email
    attachment = certificates.get_file_path(certificate)
    sent, error = (email_service or EmailService()).send_certificate(CertificateEmailData(
        to=recipient,
        recipient_name=certificate.recipient_name,
        test_name=certificate.test_name or "Assessment",
        score=certificate.score,
        proficiency_level=certificate.proficiency_level,
        verification_code=certificate.verification_code,
        certificate_url=f"{settings.public_base_url.rstrip('/')}/certificates/{certificate_id}",
        verification_url=build_verification_url(certificate.verification_code),
        message=message,
        attachment_path=attachment,
        attachment_name=certificates.download_filename(certificate) if attachment else None,
    ))
    if not sent:
        return {'sent': False, 'error': error}

    certificates.mark_email_sent(certificate_id)
    CertificateAuditService(db).record_access(
        certificate_id,
        CertificateAction.EMAILED,
        details={"recipient_email": recipient, "custom_message": message, "background": True},
    )
    return {'sent': True, 'error': None}


@celery_app.task(bind=True, name="send_certificate_email")
def send_certificate_email(self, certificate_id: str, to: Optional[str] = None, message: Optional[str] = None):
    """Task to email a certificate outside the request cycle"""
    current_task.update_state(
        state='PROGRESS',
        meta={'current': 0, 'total': 1, 'status': 'Sending certificate...'}
    )

    db = SessionLocal()
    try:
        result = deliver_certificate_email(db, certificate_id, to=to, message=message)
    except Exception as exc:
        logger.error(f"Error sending certificate {certificate_id}: {exc}")
        raise
    finally:
        db.close()

    if not result['sent']:
        logger.warning(f"Certificate {certificate_id} was not emailed: {result['error']}")
    return result
