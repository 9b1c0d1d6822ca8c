from pydantic import BaseModel, EmailStr
from typing import Optional

from ..models.enums import UserRole


class UserBase(BaseModel):
    name: Optional[str] = None
    email: EmailStr


class UserCreate(UserBase):
    role: UserRole = UserRole.USER
