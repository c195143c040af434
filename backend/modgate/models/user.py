from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, String, func

from modgate.core.database import Base
from modgate.models.shared import UUIDType, generate_uuid


class UserRole(str, Enum):
    MASTER = "master"
    ADMIN = "admin"
    MANAGER = "manager"


class User(Base):
    __tablename__ = "users"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(String(20), nullable=False, default=UserRole.MANAGER.value)
    account_id = Column(
        UUIDType,
        ForeignKey("accounts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
