from .user import UserBase, UserCreate
from .test import (
    QuestionSnapshot,
    QuestionView,
    TestSession,
    TestSessionView,
    SessionProgress,
    SessionStartResult,
    ScoreResult,
)
from .certificate import (
    OperationResult,
    CertificateGenerationRequest,
    CertificateGenerationResult,
    VerificationResult,
    PublicCertificateView,
    AuditLogFilter,
    CertificateStatsFilter,
)

__all__ = [
    "UserBase",
    "UserCreate",
    "QuestionSnapshot",
    "QuestionView",
    "TestSession",
    "TestSessionView",
    "SessionProgress",
    "SessionStartResult",
    "ScoreResult",
    "OperationResult",
    "CertificateGenerationRequest",
    "CertificateGenerationResult",
    "VerificationResult",
    "PublicCertificateView",
    "AuditLogFilter",
    "CertificateStatsFilter",
]
