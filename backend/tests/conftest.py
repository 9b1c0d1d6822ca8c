"""
Shared fixtures: in-memory sqlite, the in-memory session store, a controllable
clock and a seeded published test.
"""
import os
import tempfile
from datetime import datetime, timedelta

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SESSION_STORE_BACKEND"] = "memory"
os.environ.setdefault("CERTIFICATE_STORAGE_DIR", tempfile.mkdtemp(prefix="certplatform-"))

import pytest
from fastapi.testclient import TestClient

from certplatform.api import deps
from certplatform.core.config import settings
from certplatform.core.database import Base, SessionLocal, engine, get_db
from certplatform.core.security import create_access_token
from certplatform.core.session_store import InMemorySessionStore
from certplatform.main import app
from certplatform.models.enums import QuestionType, TestCategoryType, UserRole
from certplatform.models.test import Question, Test, TestCategory
from certplatform.models.user import User
from certplatform.schemas.certificate import CertificateGenerationRequest
from certplatform.services.certificate_audit_service import CertificateAuditService
from certplatform.services.certificate_service import CertificateService
from certplatform.services.test_session_service import TestSessionService


class FakeClock:
    """Callable clock that only moves when a test moves it."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def storage_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "certificate_storage_dir", str(tmp_path))
    return tmp_path


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 0, 0))


@pytest.fixture
def store():
    return InMemorySessionStore(max_size=100)


@pytest.fixture
def session_service(db_session, store, clock):
    return TestSessionService(db_session, store, clock=clock)


@pytest.fixture
def certificate_service(db_session, clock):
    return CertificateService(db_session, clock=clock)


@pytest.fixture
def audit_service(db_session, clock):
    return CertificateAuditService(db_session, clock=clock)


@pytest.fixture
def client(db_session, store, clock):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_store] = lambda: store
    app.dependency_overrides[deps.get_clock] = lambda: clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def test_user(db_session):
    user = User(name="Alice Example", email="alice@example.com", role=UserRole.USER.value)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def other_user(db_session):
    user = User(name="Bob Example", email="bob@example.com", role=UserRole.USER.value)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def admin_user(db_session):
    user = User(name="Admin", email="admin@example.com", role=UserRole.ADMIN.value)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def bearer(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def auth_headers(test_user):
    return bearer(test_user)


@pytest.fixture
def admin_headers(admin_user):
    return bearer(admin_user)


@pytest.fixture
def language_test(db_session):
    """Published 30 minute language test: three one-point questions, pass mark 60."""
    category = TestCategory(name="English", type=TestCategoryType.LANGUAGE.value)
    db_session.add(category)
    db_session.flush()

    test = Test(
        title="English B2",
        category_id=category.id,
        duration=30,
        passing_score=60,
        is_published=True,
    )
    db_session.add(test)
    db_session.flush()

    for order, (text, options, correct) in enumerate([
        ("2 + 2 = ?", ["3", "4", "5"], "4"),
        ("Opposite of hot?", ["cold", "warm", "dry"], "cold"),
        ("Plural of mouse?", ["mouses", "mice", "meese"], "mice"),
    ]):
        db_session.add(Question(
            test_id=test.id,
            type=QuestionType.MULTIPLE_CHOICE.value,
            question=text,
            options=options,
            correct_answer=correct,
            points=1,
            order=order,
        ))
    db_session.commit()
    db_session.refresh(test)
    return test


CORRECT_ANSWERS = ["4", "cold", "mice"]


def answer_all(service: TestSessionService, session_id: str, answers) -> None:
    session = service.get_current(session_id)
    for question, value in zip(session.questions, answers):
        if value is not None:
            service.answer(session_id, question.id, value)


@pytest.fixture
def passed_attempt(session_service, test_user, language_test):
    """A submitted attempt scoring 100"""
    started = session_service.start(test_user.id, language_test.id)
    answer_all(session_service, started.session_id, CORRECT_ANSWERS)
    return session_service.submit(started.session_id, test_user.id)


@pytest.fixture
def issued_certificate(certificate_service, passed_attempt, test_user):
    result = certificate_service.generate_certificate(
        CertificateGenerationRequest(test_attempt_id=passed_attempt.attempt_id),
        performed_by=test_user.id,
    )
    assert result.success, result.error
    return certificate_service.get_certificate(result.certificate_id)
