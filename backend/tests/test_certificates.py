"""
Tests for issuing, re-rendering and revoking certificates.
"""
import os
from datetime import datetime

from certplatform.core.errors import ErrorKind
from certplatform.models.certificate import Certificate, CertificateAuditLog
from certplatform.models.enums import CertificateAction, CertificateTemplate
from certplatform.schemas.certificate import CertificateGenerationRequest, UserCertificateFilter
from certplatform.services.certificate_renderer import CertificateRenderError
from certplatform.services.certificate_service import CertificateService
from certplatform.utils.certificates import is_valid_verification_code_format

from conftest import answer_all


def _audit_actions(db_session, certificate_id):
    return [
        log.action
        for log in db_session.query(CertificateAuditLog)
        .filter(CertificateAuditLog.certificate_id == certificate_id)
        .order_by(CertificateAuditLog.created_at)
    ]


def _pdf_files(storage_dir):
    return sorted(p for p in storage_dir.rglob("*.pdf"))


class FailingRenderer:
    def render(self, context):
        raise CertificateRenderError("boom")


class TestGenerateCertificate:

    def test_generate_for_passed_attempt(self, certificate_service, passed_attempt, test_user, storage_dir, clock):
        result = certificate_service.generate_certificate(
            CertificateGenerationRequest(test_attempt_id=passed_attempt.attempt_id),
            performed_by=test_user.id,
        )

        assert result.success
        assert is_valid_verification_code_format(result.verification_code)
        assert result.file_path.startswith(f"certificates/{test_user.id}/2026-03-02/")

        certificate = certificate_service.get_certificate(result.certificate_id)
        assert certificate.score == 100
        assert certificate.proficiency_level == "Advanced"
        assert certificate.template_type == CertificateTemplate.LANGUAGE_PROFICIENCY.value
        assert certificate.recipient_name == "Alice Example"
        assert certificate.issue_date == clock()
        assert certificate.expiry_date == datetime(2028, 3, 2, 9, 0, 0)
        assert certificate.is_valid
        assert certificate.qr_code_data.lstrip().startswith("<")
        assert certificate.certificate_data["test_category"] == "English"

        full_path = certificate_service.get_file_path(certificate)
        with open(full_path, "rb") as f:
            assert f.read(4) == b"%PDF"

    def test_generated_audit_entry(self, certificate_service, db_session, issued_certificate, test_user):
        log = db_session.query(CertificateAuditLog).filter(
            CertificateAuditLog.certificate_id == issued_certificate.id
        ).one()
        assert log.action == CertificateAction.GENERATED.value
        assert log.performed_by == test_user.id
        assert log.details["score"] == 100

    def test_second_generate_is_refused(self, certificate_service, db_session, issued_certificate, storage_dir):
        result = certificate_service.generate_certificate(
            CertificateGenerationRequest(test_attempt_id=issued_certificate.test_attempt_id)
        )

        assert not result.success
        assert result.error_kind == ErrorKind.ALREADY_ISSUED
        assert db_session.query(Certificate).count() == 1
        assert _audit_actions(db_session, issued_certificate.id) == [CertificateAction.GENERATED.value]
        assert len(_pdf_files(storage_dir)) == 1

    def test_lost_race_reports_already_issued(
        self, certificate_service, db_session, issued_certificate, storage_dir, monkeypatch
    ):
        real_lookup = certificate_service.get_for_attempt
        calls = []

        def stale_lookup(attempt_id):
            calls.append(attempt_id)
            # the first check runs before the competing insert is visible
            return None if len(calls) == 1 else real_lookup(attempt_id)

        monkeypatch.setattr(certificate_service, "get_for_attempt", stale_lookup)
        result = certificate_service.generate_certificate(
            CertificateGenerationRequest(test_attempt_id=issued_certificate.test_attempt_id)
        )

        assert result.error_kind == ErrorKind.ALREADY_ISSUED
        assert db_session.query(Certificate).count() == 1
        assert len(_pdf_files(storage_dir)) == 1

    def test_not_passed(self, certificate_service, session_service, test_user, language_test):
        session_id = session_service.start(test_user.id, language_test.id).session_id
        answer_all(session_service, session_id, ["4", None, None])
        failed = session_service.submit(session_id, test_user.id)

        result = certificate_service.generate_certificate(
            CertificateGenerationRequest(test_attempt_id=failed.attempt_id)
        )
        assert result.error_kind == ErrorKind.NOT_PASSED
        assert result.error == "Test attempt did not pass"

    def test_not_completed(self, certificate_service, session_service, test_user, language_test):
        started = session_service.start(test_user.id, language_test.id)
        result = certificate_service.generate_certificate(
            CertificateGenerationRequest(test_attempt_id=started.session.attempt_id)
        )
        assert result.error_kind == ErrorKind.NOT_COMPLETED

    def test_unknown_attempt(self, certificate_service, db_session):
        result = certificate_service.generate_certificate(CertificateGenerationRequest(test_attempt_id="nope"))
        assert result.error_kind == ErrorKind.NOT_FOUND

    def test_render_failure_leaves_nothing_behind(self, db_session, passed_attempt, storage_dir, clock):
        service = CertificateService(db_session, renderer=FailingRenderer(), clock=clock)
        result = service.generate_certificate(CertificateGenerationRequest(test_attempt_id=passed_attempt.attempt_id))

        assert result.error == "Failed to generate PDF certificate"
        assert result.error_kind == ErrorKind.INTERNAL
        assert db_session.query(Certificate).count() == 0
        assert db_session.query(CertificateAuditLog).count() == 0
        assert _pdf_files(storage_dir) == []

    def test_custom_data_is_sanitized(self, certificate_service, passed_attempt):
        result = certificate_service.generate_certificate(CertificateGenerationRequest(
            test_attempt_id=passed_attempt.attempt_id,
            custom_data={"cohort": "spring", "password": "hunter2"},
        ))
        data = certificate_service.get_certificate(result.certificate_id).certificate_data
        assert data["cohort"] == "spring"
        assert "password" not in data


class TestRevokeCertificate:

    def test_revoke_once(self, certificate_service, db_session, issued_certificate, admin_user, clock):
        clock.advance(days=3)
        result = certificate_service.revoke_certificate(
            issued_certificate.id, "Fraudulent attempt", performed_by=admin_user.id
        )
        assert result.success

        db_session.refresh(issued_certificate)
        assert not issued_certificate.is_valid
        assert issued_certificate.revoked_reason == "Fraudulent attempt"
        assert issued_certificate.revoked_at == clock()

    def test_second_revoke_fails(self, certificate_service, db_session, issued_certificate):
        certificate_service.revoke_certificate(issued_certificate.id, "first")
        result = certificate_service.revoke_certificate(issued_certificate.id, "second")

        assert result.error_kind == ErrorKind.ALREADY_REVOKED
        assert _audit_actions(db_session, issued_certificate.id).count(CertificateAction.REVOKED.value) == 1
        db_session.refresh(issued_certificate)
        assert issued_certificate.revoked_reason == "first"

    def test_revoke_unknown(self, certificate_service, db_session):
        assert certificate_service.revoke_certificate("nope", "x").error_kind == ErrorKind.NOT_FOUND


class TestRegenerateCertificate:

    def test_regenerate_keeps_identity(self, certificate_service, db_session, issued_certificate, storage_dir):
        code = issued_certificate.verification_code
        result = certificate_service.regenerate_certificate(
            issued_certificate.id, template_type=CertificateTemplate.ACADEMIC
        )

        assert result.success
        assert result.verification_code == code
        assert result.file_path == issued_certificate.file_path
        db_session.refresh(issued_certificate)
        assert issued_certificate.template_type == CertificateTemplate.ACADEMIC.value
        assert len(_pdf_files(storage_dir)) == 1
        assert _audit_actions(db_session, issued_certificate.id) == [CertificateAction.GENERATED.value] * 2

    def test_regenerate_revoked_fails(self, certificate_service, issued_certificate):
        certificate_service.revoke_certificate(issued_certificate.id, "gone")
        result = certificate_service.regenerate_certificate(issued_certificate.id)
        assert result.error == "Cannot regenerate revoked certificate"


class TestCertificateQueries:

    def test_counters(self, certificate_service, db_session, issued_certificate):
        certificate_service.increment_view_count(issued_certificate.id)
        certificate_service.increment_view_count(issued_certificate.id)
        certificate_service.increment_download_count(issued_certificate.id)
        certificate_service.mark_email_sent(issued_certificate.id)

        db_session.refresh(issued_certificate)
        assert issued_certificate.view_count == 2
        assert issued_certificate.download_count == 1
        assert issued_certificate.email_sent

    def test_list_user_certificates(self, certificate_service, issued_certificate, test_user, other_user):
        page = certificate_service.list_user_certificates(UserCertificateFilter(user_id=test_user.id))
        assert [c.id for c in page.certificates] == [issued_certificate.id]
        assert page.pagination.total_count == 1
        assert not page.pagination.has_next

        revoked_only = certificate_service.list_user_certificates(
            UserCertificateFilter(user_id=test_user.id, is_valid=False)
        )
        assert revoked_only.certificates == []
        assert certificate_service.list_user_certificates(
            UserCertificateFilter(user_id=other_user.id)
        ).pagination.total_pages == 0

    def test_download_filename(self, issued_certificate):
        assert CertificateService.download_filename(issued_certificate) == (
            "Certificate_of_Completion_-_English_B2_Alice_Example.pdf"
        )

    def test_file_path_none_when_file_is_gone(self, certificate_service, issued_certificate):
        full_path = certificate_service.get_file_path(issued_certificate)
        assert full_path.endswith(".pdf")

        os.remove(full_path)
        assert certificate_service.get_file_path(issued_certificate) is None
