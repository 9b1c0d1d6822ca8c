from .base import BaseModel
from .user import User
from .test import TestCategory, Test, Question, TestAttempt
from .certificate import Certificate, CertificateAuditLog

__all__ = [
    "BaseModel",
    "User",
    "TestCategory",
    "Test",
    "Question",
    "TestAttempt",
    "Certificate",
    "CertificateAuditLog",
]
