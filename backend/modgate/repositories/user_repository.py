from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from modgate.models.user import User


class UserRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, user_id: UUID) -> User | None:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup."""
        return self.db.query(User).filter(func.lower(User.email) == email.lower()).first()
