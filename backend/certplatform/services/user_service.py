import logging
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional

from ..models.enums import UserRole
from ..models.user import User
from ..schemas.user import UserCreate

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def create_user(self, user_data: UserCreate) -> User:
        db_user = User(
            name=user_data.name,
            email=user_data.email,
            role=UserRole(user_data.role).value,
        )
        self.db.add(db_user)
        try:
            self.db.commit()
            self.db.refresh(db_user)
            return db_user
        except IntegrityError:
            self.db.rollback()
            raise ValueError("Email already registered")

    def set_role(self, user_id: str, role: UserRole) -> Optional[User]:
        """Promote or demote a user (admin tooling only)"""
        user = self.get_user_by_id(user_id)
        if not user:
            return None
        user.role = UserRole(role).value
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"User {user.email} role set to {user.role}")
        return user
