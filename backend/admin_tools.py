#!/usr/bin/env python3
"""
Admin Tools for the Certificate Testing Platform
Script for administrative tasks
"""

import os
import sys
import argparse
from typing import Optional

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv
dotenv_path = os.path.join(os.path.dirname(__file__), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path)


from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from certplatform.core.database import SessionLocal, create_db_and_tables
from certplatform.core.security import create_access_token
from certplatform.models.certificate import Certificate
from certplatform.models.enums import QuestionType, TestCategoryType, UserRole
from certplatform.models.test import Question, Test, TestAttempt, TestCategory
from certplatform.models.user import User
from certplatform.schemas.user import UserCreate
from certplatform.services.certificate_service import CertificateService
from certplatform.services.user_service import UserService
from certplatform.tasks.maintenance import run_session_sweep
from certplatform.tasks.notifications import deliver_certificate_email, send_certificate_email


SAMPLE_QUESTIONS = [
    ("Choose the correct form: She ___ to work every day.", ["go", "goes", "going", "gone"], "goes"),
    ("Pick the synonym of 'rapid'.", ["slow", "quick", "late", "calm"], "quick"),
    ("Which sentence is correct?", [
        "He don't like tea.",
        "He doesn't like tea.",
        "He not like tea.",
        "He doesn't likes tea.",
    ], "He doesn't like tea."),
    ("The past tense of 'bring' is ___.", ["bringed", "brang", "brought", "brung"], "brought"),
    ("'Could you pass the salt?' is a ___.", ["command", "request", "question about ability", "complaint"], "request"),
]


def get_db() -> Session:
    """Get a database session"""
    return SessionLocal()


def create_admin_user(email: str, name: str) -> bool:
    """Create a user with the admin role, or promote an existing one"""
    db = get_db()
    try:
        user_service = UserService(db)

        user = user_service.get_user_by_email(email)
        if user and user.is_admin:
            print(f"❌ User {email} is already an admin")
            return False

        if user is None:
            user = user_service.create_user(UserCreate(email=email, name=name, role=UserRole.ADMIN.value))
        else:
            user = user_service.set_role(user.id, UserRole.ADMIN)

        print("✅ Admin ready")
        print(f"   Email: {user.email}")
        print(f"   Name: {user.name}")
        print(f"   ID: {user.id}")
        return True

    except (SQLAlchemyError, ValueError) as e:
        print(f"❌ Error creating admin: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def issue_token(email: str) -> Optional[str]:
    """Print a bearer token for a user, for local development without the sign-in service"""
    db = get_db()
    try:
        user = UserService(db).get_user_by_email(email)
        if not user:
            print(f"❌ User {email} not found")
            return None
        token = create_access_token(user.id)
        print(token)
        return token
    finally:
        db.close()


def list_users(show_detailed: bool = False) -> None:
    """Show all users"""
    db = get_db()
    try:
        users = db.query(User).order_by(User.created_at).all()

        if not users:
            print("📋 No users found")
            return

        print(f"📋 Total users: {len(users)}")
        print("=" * 80)

        for user in users:
            status = "👑 Admin" if user.is_admin else "👤 User"
            created = user.created_at.strftime("%d.%m.%Y %H:%M") if user.created_at else "-"

            print(f"ID: {user.id} | {status}")
            print(f"   Name: {user.name or '-'}")
            print(f"   Email: {user.email}")
            print(f"   Created: {created}")

            if show_detailed:
                attempts = db.query(TestAttempt).filter(TestAttempt.user_id == user.id).count()
                passed = db.query(TestAttempt).filter(
                    TestAttempt.user_id == user.id,
                    TestAttempt.passed.is_(True)
                ).count()
                certificates = db.query(Certificate).filter(Certificate.user_id == user.id).count()

                print(f"   Attempts: {attempts} (passed: {passed})")
                print(f"   Certificates: {certificates}")

            print("-" * 80)
    finally:
        db.close()


def seed_sample_test(duration: int, passing_score: int) -> Optional[str]:
    """Create a published sample language test"""
    db = get_db()
    try:
        category = db.query(TestCategory).filter(TestCategory.name == "English").first()
        if category is None:
            category = TestCategory(
                name="English",
                description="General English proficiency",
                type=TestCategoryType.LANGUAGE.value,
            )
            db.add(category)
            db.flush()

        test = Test(
            title="English Proficiency Test",
            description="Grammar and vocabulary check",
            category_id=category.id,
            duration=duration,
            passing_score=passing_score,
            is_published=True,
        )
        db.add(test)
        db.flush()

        for order, (text, options, correct) in enumerate(SAMPLE_QUESTIONS):
            db.add(Question(
                test_id=test.id,
                type=QuestionType.MULTIPLE_CHOICE.value,
                question=text,
                options=options,
                correct_answer=correct,
                points=1,
                order=order,
            ))
        db.commit()

        print("✅ Sample test created")
        print(f"   ID: {test.id}")
        print(f"   Questions: {len(SAMPLE_QUESTIONS)} | Duration: {duration} min | Pass: {passing_score}%")
        return test.id

    except SQLAlchemyError as e:
        print(f"❌ Error seeding sample test: {e}")
        db.rollback()
        return None
    finally:
        db.close()


def revoke_certificate(certificate_id: str, reason: str) -> bool:
    """Revoke a certificate on behalf of the administrators"""
    db = get_db()
    try:
        result = CertificateService(db).revoke_certificate(certificate_id, reason, performed_by="admin-cli")
        if not result.success:
            print(f"❌ {result.error}")
            return False
        print(f"✅ Certificate {certificate_id} revoked: {reason}")
        return True
    finally:
        db.close()


def sweep_sessions() -> None:
    """Auto-submit expired test sessions now"""
    result = run_session_sweep()
    print(f"🧹 Auto-submitted: {result['auto_submitted']} | Evicted: {result['evicted']}")


def email_certificate(certificate_id: str, to: Optional[str], message: Optional[str]) -> bool:
    """Send a certificate by email"""
    db = get_db()
    try:
        result = deliver_certificate_email(db, certificate_id, to=to, message=message)
        if not result['sent']:
            print(f"❌ {result['error']}")
            return False
        print(f"📧 Certificate {certificate_id} sent")
        return True
    finally:
        db.close()


def database_stats() -> None:
    """Show database statistics"""
    db = get_db()
    try:
        users_count = db.query(User).count()
        admins_count = db.query(User).filter(User.role == UserRole.ADMIN.value).count()
        tests_count = db.query(Test).count()
        attempts_count = db.query(TestAttempt).count()
        completed_count = db.query(TestAttempt).filter(TestAttempt.completed_at.isnot(None)).count()
        passed_count = db.query(TestAttempt).filter(TestAttempt.passed.is_(True)).count()
        certificates_count = db.query(Certificate).count()
        revoked_count = db.query(Certificate).filter(Certificate.is_valid.is_(False)).count()

        print("📊 Database statistics")
        print("=" * 50)
        print(f"👥 Users: {users_count} (admins: {admins_count})")
        print(f"📝 Tests: {tests_count}")
        print(f"⏱  Attempts: {attempts_count} (completed: {completed_count}, passed: {passed_count})")
        print(f"🎓 Certificates: {certificates_count} (revoked: {revoked_count})")

        levels = db.query(Certificate.proficiency_level, func.count(Certificate.id)).group_by(
            Certificate.proficiency_level
        ).all()

        if levels:
            print("\n🎯 Certificates by proficiency level:")
            for level, count in sorted(levels, key=lambda row: row[0] or ""):
                print(f"   {level or '-'}: {count}")
    finally:
        db.close()


def main():
    """Entry point"""
    parser = argparse.ArgumentParser(description="Admin Tools for the Certificate Testing Platform")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('init-db', help='Create database tables')

    create_admin_parser = subparsers.add_parser('create-admin', help='Create or promote an administrator')
    create_admin_parser.add_argument('--email', required=True, help='Admin email')
    create_admin_parser.add_argument('--name', required=True, help='Admin full name')

    token_parser = subparsers.add_parser('issue-token', help='Print a bearer token for a user')
    token_parser.add_argument('--email', required=True, help='User email')

    list_users_parser = subparsers.add_parser('list-users', help='Show users')
    list_users_parser.add_argument('--detailed', action='store_true', help='Include attempts and certificates')

    seed_parser = subparsers.add_parser('seed', help='Create a sample published test')
    seed_parser.add_argument('--duration', type=int, default=30, help='Time limit in minutes')
    seed_parser.add_argument('--passing-score', type=int, default=60, help='Passing score percentage')

    revoke_parser = subparsers.add_parser('revoke-certificate', help='Revoke a certificate')
    revoke_parser.add_argument('--certificate-id', required=True, help='Certificate ID')
    revoke_parser.add_argument('--reason', required=True, help='Reason recorded in the audit trail')

    subparsers.add_parser('sweep-sessions', help='Auto-submit expired test sessions')

    email_parser = subparsers.add_parser('email-certificate', help='Email a certificate')
    email_parser.add_argument('--certificate-id', required=True, help='Certificate ID')
    email_parser.add_argument('--to', help='Recipient, defaults to the certificate owner')
    email_parser.add_argument('--message', help='Personal message')
    email_parser.add_argument('--background', action='store_true', help='Queue through celery instead of sending now')

    subparsers.add_parser('stats', help='Show database statistics')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    print("🚀 Certificate Testing Platform - Admin Tools", file=sys.stderr)
    print("=" * 50, file=sys.stderr)

    if args.command == 'init-db':
        create_db_and_tables()
        print("✅ Tables ready")

    elif args.command == 'create-admin':
        create_admin_user(args.email, args.name)

    elif args.command == 'issue-token':
        issue_token(args.email)

    elif args.command == 'list-users':
        list_users(args.detailed)

    elif args.command == 'seed':
        seed_sample_test(args.duration, args.passing_score)

    elif args.command == 'revoke-certificate':
        revoke_certificate(args.certificate_id, args.reason)

    elif args.command == 'sweep-sessions':
        sweep_sessions()

    elif args.command == 'email-certificate':
        if args.background:
            task = send_certificate_email.delay(args.certificate_id, to=args.to, message=args.message)
            print(f"📨 Queued as task {task.id}")
        else:
            email_certificate(args.certificate_id, args.to, args.message)

    elif args.command == 'stats':
        database_stats()


if __name__ == "__main__":
    main()
