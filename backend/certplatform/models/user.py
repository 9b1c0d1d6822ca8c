from sqlalchemy import Column, String
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import UserRole


class User(BaseModel):
    """
    Identity is owned by the external sign-in service; this table keeps
    the profile and the application role only.
    """
    __tablename__ = "users"

    name = Column(String, nullable=True)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, default=UserRole.USER.value, nullable=False)

    test_attempts = relationship("TestAttempt", back_populates="user")
    certificates = relationship("Certificate", back_populates="user")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value
