from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from modgate.core.database import get_db
from modgate.core.result import Err, ErrorKind, Ok, Result
from modgate.repositories.user_repository import UserRepository
from modgate.services.authentication import (
    AuthenticationFailed,
    Authenticator,
    get_authenticator,
)


@dataclass(frozen=True)
class ActingUser:
    user_id: UUID
    role: str
    account_id: UUID | None


def resolve_identity(
    authorization: str | None,
    db: Session,
    authenticator: Authenticator,
) -> Result[ActingUser]:
    """Turn an ``Authorization`` header into the acting user.

    Authentication failures are returned rather than raised so that request
    validation can report them in its own order.
    """
    if not authorization or not authorization.startswith("Bearer "):
        return Err(ErrorKind.UNAUTHENTICATED)

    token = authorization[7:]
    if not token:
        return Err(ErrorKind.UNAUTHENTICATED)

    try:
        identity = authenticator.verify(token)
    except AuthenticationFailed as e:
        return Err(ErrorKind.UNAUTHENTICATED, str(e))

    user = UserRepository(db).get_by_id(identity.user_id)
    if user is None:
        return Err(ErrorKind.USER_NOT_FOUND)

    return Ok(
        ActingUser(
            user_id=UUID(str(user.id)),
            role=str(user.role),
            account_id=UUID(str(user.account_id)) if user.account_id else None,
        )
    )


def get_identity(
    request: Request,
    db: Session = Depends(get_db),
    authenticator: Authenticator = Depends(get_authenticator),
) -> Result[ActingUser]:
    return resolve_identity(request.headers.get("Authorization"), db, authenticator)
