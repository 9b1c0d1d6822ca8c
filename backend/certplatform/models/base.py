import uuid
from sqlalchemy import Column, String, DateTime

from ..core.database import Base
from ..utils.timezone import utcnow


def gen_id():
    return str(uuid.uuid4())


class BaseModel(Base):
    __abstract__ = True

    id = Column(String, primary_key=True, index=True, default=gen_id)
    created_at = Column(DateTime, default=utcnow)
