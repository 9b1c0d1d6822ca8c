from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Boolean, Integer, JSON
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import TestCategoryType, QuestionType, SessionStatus
from ..utils.timezone import utcnow


class TestCategory(BaseModel):
    __tablename__ = "test_categories"

    name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    type = Column(String, default=TestCategoryType.GENERAL.value, nullable=False)

    tests = relationship("Test", back_populates="category")


class Test(BaseModel):
    __tablename__ = "tests"

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category_id = Column(String, ForeignKey("test_categories.id"), nullable=False)
    creator_id = Column(String, ForeignKey("users.id"), nullable=True)
    # minutes
    duration = Column(Integer, nullable=False, default=60)
    passing_score = Column(Integer, nullable=False, default=60)
    # explicit proficiency band such as a CEFR level
    level = Column(String, nullable=True)
    is_published = Column(Boolean, default=False)

    category = relationship("TestCategory", back_populates="tests")
    creator = relationship("User")
    questions = relationship("Question", back_populates="test", order_by="Question.order")

    @property
    def total_questions(self) -> int:
        return len(self.questions)


class Question(BaseModel):
    __tablename__ = "questions"

    test_id = Column(String, ForeignKey("tests.id"), nullable=False, index=True)
    type = Column(String, default=QuestionType.MULTIPLE_CHOICE.value, nullable=False)
    question = Column(Text, nullable=False)
    options = Column(JSON, nullable=True)
    correct_answer = Column(Text, nullable=False)
    explanation = Column(Text, nullable=True)
    points = Column(Integer, default=1, nullable=False)
    order = Column(Integer, default=0, nullable=False)

    test = relationship("Test", back_populates="questions")


class TestAttempt(BaseModel):
    """Durable side of a test-taking session.

    The row is written when the session starts so the session can be resumed,
    and finalized exactly once when it is submitted or expires. `session_id`
    is unique and `completed_at` is only ever set by a conditional update, which
    makes the session -> attempt mapping write-once.
    """
    __tablename__ = "test_attempts"

    session_id = Column(String, unique=True, index=True, nullable=False)
    test_id = Column(String, ForeignKey("tests.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String, default=SessionStatus.ACTIVE.value, nullable=False)

    question_snapshot = Column(JSON, nullable=False, default=list)
    answers = Column(JSON, nullable=False, default=dict)
    current_question_index = Column(Integer, default=0, nullable=False)
    flagged_questions = Column(JSON, nullable=False, default=list)
    time_limit = Column(Integer, nullable=False)

    # percentage 0..100
    score = Column(Integer, default=0, nullable=False)
    earned_points = Column(Integer, default=0, nullable=False)
    total_points = Column(Integer, default=0, nullable=False)
    passed = Column(Boolean, default=False, nullable=False)

    started_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    test = relationship("Test")
    user = relationship("User", back_populates="test_attempts")
    certificate = relationship("Certificate", back_populates="test_attempt", uselist=False)
