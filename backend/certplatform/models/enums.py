import enum


class UserRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class TestCategoryType(str, enum.Enum):
    LANGUAGE = "LANGUAGE"
    ACADEMIC = "ACADEMIC"
    TECHNICAL = "TECHNICAL"
    PROFESSIONAL = "PROFESSIONAL"
    GENERAL = "GENERAL"


class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    TRUE_FALSE = "TRUE_FALSE"
    SHORT_ANSWER = "SHORT_ANSWER"
    ESSAY = "ESSAY"


class SessionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    SUBMITTED = "SUBMITTED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.SUBMITTED, SessionStatus.EXPIRED)


class CertificateTemplate(str, enum.Enum):
    STANDARD = "STANDARD"
    PROFESSIONAL = "PROFESSIONAL"
    ACADEMIC = "ACADEMIC"
    TECHNICAL = "TECHNICAL"
    LANGUAGE_PROFICIENCY = "LANGUAGE_PROFICIENCY"


class CertificateAction(str, enum.Enum):
    GENERATED = "GENERATED"
    VIEWED = "VIEWED"
    DOWNLOADED = "DOWNLOADED"
    EMAILED = "EMAILED"
    VERIFIED = "VERIFIED"
    REVOKED = "REVOKED"
    # only present on historical rows, revocation is terminal
    RESTORED = "RESTORED"
