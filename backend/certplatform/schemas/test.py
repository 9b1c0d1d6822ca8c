from pydantic import BaseModel, Field
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Set, Literal

from ..core.errors import ErrorKind
from ..models.enums import SessionStatus


class QuestionSnapshot(BaseModel):
    """A question as it looked when the session started."""
    id: str
    type: str
    question: str
    options: List[str] = []
    correct_answer: str
    explanation: Optional[str] = None
    points: int = 1
    order: int = 0

    class Config:
        from_attributes = True


class QuestionView(BaseModel):
    """What the test taker may see: no correct answer, no explanation."""
    id: str
    type: str
    question: str
    options: List[str] = []
    points: int = 1
    order: int = 0

    class Config:
        from_attributes = True


class TestSession(BaseModel):
    session_id: str
    attempt_id: str
    user_id: str
    test_id: str
    questions: List[QuestionSnapshot]
    answers: Dict[str, str] = {}
    current_question_index: int = 0
    flagged_questions: Set[int] = set()
    start_time: datetime
    # minutes
    time_limit: int
    passing_score: int
    status: SessionStatus = SessionStatus.ACTIVE

    @property
    def deadline(self) -> datetime:
        return self.start_time + timedelta(minutes=self.time_limit)

    def is_expired(self, now: datetime) -> bool:
        return now - self.start_time >= timedelta(minutes=self.time_limit)


class SessionProgress(BaseModel):
    current_question: int
    total_questions: int
    percentage: int
    answered_questions: int
    remaining_time: int


class TestSessionView(BaseModel):
    session_id: str
    test_id: str
    status: SessionStatus
    start_time: datetime
    time_limit: int
    deadline: datetime
    current_question_index: int
    total_questions: int
    flagged_questions: List[int]
    answers: Dict[str, str]
    questions: List[QuestionView]

    @classmethod
    def from_session(cls, session: TestSession) -> "TestSessionView":
        return cls(
            session_id=session.session_id,
            test_id=session.test_id,
            status=session.status,
            start_time=session.start_time,
            time_limit=session.time_limit,
            deadline=session.deadline,
            current_question_index=session.current_question_index,
            total_questions=len(session.questions),
            flagged_questions=sorted(session.flagged_questions),
            answers=dict(session.answers),
            questions=[QuestionView(**q.model_dump()) for q in session.questions],
        )


class SessionStartResult(BaseModel):
    success: bool
    session_id: Optional[str] = None
    session: Optional[TestSession] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class ScoreResult(BaseModel):
    attempt_id: str
    session_id: str
    # percentage
    score: int
    earned_points: int
    total_points: int
    passed: bool
    correct_answers: int
    total_questions: int
    # minutes
    time_spent: int
    expired: bool = False


class SessionStatistics(BaseModel):
    active_sessions: int
    total_sessions: int
    average_session_time: int


class SessionUpdateRequest(BaseModel):
    question_id: Optional[str] = None
    answer: Optional[str] = None
    action: Optional[Literal["next", "previous", "goto", "flag"]] = None
    question_index: Optional[int] = None


class SubmitRequest(BaseModel):
    force_submit: bool = False


class SessionStateResponse(BaseModel):
    test_session: TestSessionView
    current_question: Optional[QuestionView] = None
    progress: Optional[SessionProgress] = None


class CertificateSummary(BaseModel):
    id: str
    verification_code: str
    file_path: Optional[str] = None


class TestSummary(BaseModel):
    id: str
    title: str
    category: Optional[str] = None
    passing_score: int


class SubmitResponse(BaseModel):
    result: ScoreResult
    expired: bool = False
    message: Optional[str] = None
    certificate: Optional[CertificateSummary] = None
    certificate_warning: Optional[str] = None
    test: Optional[TestSummary] = None
