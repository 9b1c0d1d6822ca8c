import logging
from typing import Callable
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session, joinedload

from ....api import deps
from ....core.database import get_db
from ....core.errors import http_error
from ....models.enums import SessionStatus
from ....models.test import Test
from ....models.user import User
from ....schemas.certificate import CertificateGenerationRequest
from ....schemas.test import (
    CertificateSummary,
    SessionStateResponse,
    SessionStatistics,
    SessionUpdateRequest,
    SubmitRequest,
    SubmitResponse,
    TestSession,
    TestSessionView,
    TestSummary,
)
from ....services.certificate_service import CertificateService
from ....services.test_session_service import TestSessionService

logger = logging.getLogger(__name__)

router = APIRouter()


def _load_session(service: TestSessionService, session_id: str, current_user: User) -> TestSession:
    session = service.get_current(session_id) or service.restore(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Test session not found")
    if session.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="Access denied")
    return session


def _require_valid(service: TestSessionService, session_id: str) -> None:
    if not service.is_valid(session_id):
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="Test session has expired")


def _state(service: TestSessionService, session: TestSession) -> SessionStateResponse:
    return SessionStateResponse(
        test_session=TestSessionView.from_session(session),
        current_question=service.get_current_question(session.session_id),
        progress=service.get_progress(session.session_id),
    )


@router.post("/{test_id}/start", response_model=SessionStateResponse, status_code=status.HTTP_201_CREATED)
async def start_test(
    test_id: str,
    current_user: User = Depends(deps.get_current_user),
    service: TestSessionService = Depends(deps.get_test_session_service),
):
    result = service.start(current_user.id, test_id)
    if not result.success:
        raise http_error(result.error_kind, result.error)
    return _state(service, result.session)


@router.get("/sessions/statistics", response_model=SessionStatistics)
async def get_session_statistics(
    current_user: User = Depends(deps.get_current_admin),
    service: TestSessionService = Depends(deps.get_test_session_service),
):
    return service.session_statistics()


@router.post("/sessions/cleanup")
async def cleanup_sessions(
    current_user: User = Depends(deps.get_current_admin),
    service: TestSessionService = Depends(deps.get_test_session_service),
):
    """Run the expired-session sweep now instead of waiting for the scheduler"""
    return service.cleanup_expired_sessions()


@router.get("/sessions/{session_id}", response_model=SessionStateResponse)
async def get_test_session(
    session_id: str,
    current_user: User = Depends(deps.get_current_user),
    service: TestSessionService = Depends(deps.get_test_session_service),
):
    session = _load_session(service, session_id, current_user)
    _require_valid(service, session_id)
    return _state(service, session)


@router.patch("/sessions/{session_id}", response_model=SessionStateResponse)
async def update_test_session(
    session_id: str,
    update: SessionUpdateRequest,
    current_user: User = Depends(deps.get_current_user),
    service: TestSessionService = Depends(deps.get_test_session_service),
):
    """Record an answer and/or move the cursor"""
    session = _load_session(service, session_id, current_user)
    _require_valid(service, session_id)

    if update.question_id and update.answer is not None:
        if session.status != SessionStatus.ACTIVE:
            raise HTTPException(status_code=409, detail="Test session is paused")
        session = service.answer(session_id, update.question_id, update.answer)
        if session is None:
            raise HTTPException(status_code=400, detail="Question does not belong to this test session")

    if update.action == "next":
        session = service.next_question(session_id)
    elif update.action == "previous":
        session = service.previous_question(session_id)
    elif update.action == "goto":
        if update.question_index is None:
            raise HTTPException(status_code=400, detail="question_index is required for goto")
        session = service.go_to_question(session_id, update.question_index)
        if session is None:
            raise HTTPException(status_code=400, detail="Question index out of range")
    elif update.action == "flag":
        index = update.question_index if update.question_index is not None else session.current_question_index
        session = service.toggle_flag(session_id, index)
        if session is None:
            raise HTTPException(status_code=400, detail="Question index out of range")

    if session is None:
        raise HTTPException(status_code=404, detail="Test session not found")
    return _state(service, session)


@router.post("/sessions/{session_id}/pause")
async def pause_test_session(
    session_id: str,
    current_user: User = Depends(deps.get_current_user),
    service: TestSessionService = Depends(deps.get_test_session_service),
):
    _load_session(service, session_id, current_user)
    _require_valid(service, session_id)

    if not service.pause(session_id):
        raise HTTPException(status_code=404, detail="Test session not found")
    return {"success": True, "message": "Test session paused successfully"}


@router.post("/sessions/{session_id}/resume", response_model=SessionStateResponse)
async def resume_test_session(
    session_id: str,
    current_user: User = Depends(deps.get_current_user),
    service: TestSessionService = Depends(deps.get_test_session_service),
):
    session = service.resume(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Test session not found")
    if session.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="Access denied")
    _require_valid(service, session_id)
    return _state(service, session)


@router.post("/sessions/{session_id}/submit", response_model=SubmitResponse)
async def submit_test_session(
    session_id: str,
    request: Request,
    body: SubmitRequest = SubmitRequest(),
    current_user: User = Depends(deps.get_current_user),
    db: Session = Depends(get_db),
    service: TestSessionService = Depends(deps.get_test_session_service),
    clock: Callable[[], datetime] = Depends(deps.get_clock),
):
    session = _load_session(service, session_id, current_user)

    if not service.is_valid(session_id) and not body.force_submit:
        expired_result = service.auto_submit_expired(session_id, current_user.id)
        if expired_result:
            return SubmitResponse(
                result=expired_result,
                expired=True,
                message="Test was automatically submitted due to time expiration",
            )
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="Test session has expired")

    result = service.submit(session_id, current_user.id)
    if result is None:
        raise HTTPException(status_code=409, detail="Test session has already been submitted")

    test = (
        db.query(Test)
        .options(joinedload(Test.category))
        .filter(Test.id == session.test_id)
        .first()
    )

    certificate = None
    certificate_warning = None
    if result.passed:
        try:
            generated = CertificateService(db, clock=clock).generate_certificate(
                CertificateGenerationRequest(test_attempt_id=result.attempt_id, recipient_name=current_user.name),
                performed_by=current_user.id,
                ip_address=deps.client_ip(request),
                user_agent=deps.user_agent(request),
            )
        except Exception:
            # the test result stands even if issuing fails
            logger.exception(f"Certificate generation crashed for attempt {result.attempt_id}")
            certificate_warning = "Certificate could not be generated"
        else:
            if generated.success:
                certificate = CertificateSummary(
                    id=generated.certificate_id,
                    verification_code=generated.verification_code,
                    file_path=generated.file_path,
                )
            else:
                logger.error(f"Certificate generation failed for attempt {result.attempt_id}: {generated.error}")
                certificate_warning = generated.error

    return SubmitResponse(
        result=result,
        certificate=certificate,
        certificate_warning=certificate_warning,
        test=TestSummary(
            id=test.id,
            title=test.title,
            category=test.category.name if test.category else None,
            passing_score=test.passing_score,
        ) if test else None,
    )
