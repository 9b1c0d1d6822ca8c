import logging
import smtplib
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Tuple

from pydantic import BaseModel

from ..core.config import settings

logger = logging.getLogger(__name__)


class CertificateEmailData(BaseModel):
    to: str
    recipient_name: str
    test_name: str
    score: int
    proficiency_level: Optional[str] = None
    verification_code: str
    certificate_url: str
    verification_url: str
    message: Optional[str] = None
    attachment_path: Optional[str] = None
    attachment_name: Optional[str] = None


class EmailService:
    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: Optional[bool] = None,
        from_email: Optional[str] = None,
    ):
        self.host = host if host is not None else settings.smtp_host
        self.port = port or settings.smtp_port
        self.username = username if username is not None else settings.smtp_username
        self.password = password if password is not None else settings.smtp_password
        self.use_tls = settings.smtp_use_tls if use_tls is None else use_tls
        self.from_email = from_email or settings.smtp_from_email

    @property
    def is_configured(self) -> bool:
        return bool(self.host)

    def build_certificate_message(self, data: CertificateEmailData) -> MIMEMultipart:
        msg = MIMEMultipart()
        msg["Subject"] = f"Your Certificate for {data.test_name}"
        msg["From"] = self.from_email
        msg["To"] = data.to

        lines = [
            f"Dear {data.recipient_name},",
            "",
            f"Congratulations on completing {data.test_name} with a score of {data.score}%.",
        ]
        if data.proficiency_level:
            lines.append(f"Proficiency level: {data.proficiency_level}")
        if data.message:
            lines += ["", data.message]
        lines += [
            "",
            f"Download your certificate: {data.certificate_url}",
            f"Verify it online: {data.verification_url}",
            f"Verification code: {data.verification_code}",
            "",
            settings.organization_name,
        ]
        msg.attach(MIMEText("\n".join(lines), "plain", "utf-8"))

        if data.attachment_path:
            with open(data.attachment_path, "rb") as f:
                part = MIMEApplication(f.read(), _subtype="pdf")
            part.add_header(
                "Content-Disposition", "attachment", filename=data.attachment_name or "certificate.pdf"
            )
            msg.attach(part)
        return msg

    def send_certificate(self, data: CertificateEmailData) -> Tuple[bool, Optional[str]]:
        """Returns (success, error)"""
        if not self.is_configured:
            logger.warning(f"Certificate email to {data.to} skipped: SMTP not configured")
            return False, "SMTP not configured"

        try:
            msg = self.build_certificate_message(data)
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password or "")
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send certificate email to {data.to}: {e}")
            return False, "Failed to send email"

        logger.info(f"Certificate {data.verification_code} emailed to {data.to}")
        return True, None
