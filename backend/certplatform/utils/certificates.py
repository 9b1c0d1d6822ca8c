"""
Rules for deriving certificate fields from a passed attempt.
"""
import base64
import re
import secrets
import time
from datetime import datetime
from typing import Any, Dict, Optional

from ..core.config import settings
from ..models.enums import CertificateTemplate, TestCategoryType
from .timezone import add_months, utcnow

VERIFICATION_CODE_PATTERN = re.compile(r"^CERT-[A-Z0-9]+-[A-Z0-9]+$")

SENSITIVE_KEYS = {"password", "token", "secret"}

# months until expiry, 0 = never expires
EXPIRY_MONTHS_BY_CATEGORY = {
    TestCategoryType.LANGUAGE.value: 24,
    TestCategoryType.TECHNICAL.value: 12,
    TestCategoryType.PROFESSIONAL.value: 36,
    TestCategoryType.ACADEMIC.value: 0,
}
DEFAULT_EXPIRY_MONTHS = 24

TEMPLATE_BY_CATEGORY = {
    TestCategoryType.LANGUAGE.value: CertificateTemplate.LANGUAGE_PROFICIENCY,
    TestCategoryType.ACADEMIC.value: CertificateTemplate.ACADEMIC,
    TestCategoryType.TECHNICAL.value: CertificateTemplate.TECHNICAL,
    TestCategoryType.PROFESSIONAL.value: CertificateTemplate.PROFESSIONAL,
}

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _to_base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_verification_code() -> str:
    """CERT-<ms timestamp, base36>-<80 random bits, base32>"""
    timestamp = _to_base36(int(time.time() * 1000))
    random_part = base64.b32encode(secrets.token_bytes(10)).decode("ascii").rstrip("=")
    return f"CERT-{timestamp}-{random_part}"


def is_valid_verification_code_format(code: str) -> bool:
    return bool(code) and VERIFICATION_CODE_PATTERN.match(code) is not None


def normalize_verification_code(code: str) -> str:
    return (code or "").strip().upper()


def build_verification_url(code: str, base_url: Optional[str] = None) -> str:
    base = (base_url or settings.public_base_url).rstrip("/")
    return f"{base}/verify-certificate?code={code}"


def calculate_proficiency_level(score: int, level: Optional[str] = None) -> str:
    # tests with an explicit band (e.g. CEFR) keep it
    if level:
        return level
    if score >= 90:
        return "Advanced"
    if score >= 75:
        return "Intermediate"
    if score >= 60:
        return "Beginner"
    return "Foundation"


def get_certificate_template(
    category_type: Optional[str],
    custom_template: Optional[CertificateTemplate] = None,
) -> CertificateTemplate:
    if custom_template:
        return CertificateTemplate(custom_template)
    return TEMPLATE_BY_CATEGORY.get(category_type, CertificateTemplate.STANDARD)


def calculate_expiry_date(
    category_type: Optional[str],
    issued_at: Optional[datetime] = None,
    custom_months: Optional[int] = None,
) -> Optional[datetime]:
    months = custom_months if custom_months is not None else EXPIRY_MONTHS_BY_CATEGORY.get(
        category_type, DEFAULT_EXPIRY_MONTHS
    )
    if months == 0:
        return None
    return add_months(issued_at or utcnow(), months)


def is_certificate_expired(expiry_date: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expiry_date is None:
        return False
    return (now or utcnow()) > expiry_date


def generate_certificate_title(test_title: str, passed: bool = True) -> str:
    status = "Certificate of Completion" if passed else "Certificate of Participation"
    return f"{status} - {test_title}"


def sanitize_certificate_data(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {k: v for k, v in (data or {}).items() if k.lower() not in SENSITIVE_KEYS}
