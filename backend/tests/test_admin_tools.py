"""
Tests for the admin CLI and the user service behind it.
"""
import pytest

import admin_tools
from certplatform.models.certificate import Certificate
from certplatform.models.enums import UserRole
from certplatform.models.user import User
from certplatform.schemas.user import UserCreate
from certplatform.services.user_service import UserService


def test_create_user_rejects_duplicate_email(db_session):
    service = UserService(db_session)
    service.create_user(UserCreate(email="carol@example.com", name="Carol"))

    with pytest.raises(ValueError, match="Email already registered"):
        service.create_user(UserCreate(email="carol@example.com"))


def test_create_admin_promotes_existing_user(db_session, test_user, capsys):
    assert admin_tools.create_admin_user(test_user.email, "Alice")
    db_session.refresh(test_user)
    assert test_user.role == UserRole.ADMIN.value

    assert not admin_tools.create_admin_user(test_user.email, "Alice")
    assert "already an admin" in capsys.readouterr().out


def test_create_admin_new_user(db_session):
    assert admin_tools.create_admin_user("root@example.com", "Root")
    user = db_session.query(User).filter(User.email == "root@example.com").one()
    assert user.is_admin


def test_seed_creates_startable_test(db_session, session_service, test_user):
    test_id = admin_tools.seed_sample_test(duration=15, passing_score=70)

    result = session_service.start(test_user.id, test_id)
    assert result.success
    assert len(result.session.questions) == len(admin_tools.SAMPLE_QUESTIONS)
    assert result.session.passing_score == 70


def test_revoke_from_cli(db_session, issued_certificate, capsys):
    assert admin_tools.revoke_certificate(issued_certificate.id, "Manual review")
    assert not admin_tools.revoke_certificate(issued_certificate.id, "Manual review")
    assert "already been revoked" in capsys.readouterr().out

    db_session.refresh(issued_certificate)
    assert issued_certificate.revoked_reason == "Manual review"
    assert db_session.query(Certificate).filter(Certificate.is_valid.is_(False)).count() == 1
