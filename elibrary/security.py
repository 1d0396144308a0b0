from datetime import datetime, timedelta, timezone
from typing import Annotated

import jwt  #type: ignore
from fastapi import Depends #type: ignore
from fastapi.security import OAuth2PasswordBearer #type: ignore
from jwt.exceptions import InvalidTokenError #type: ignore
from passlib.context import CryptContext #type: ignore
from sqlmodel import Session #type: ignore

from elibrary import repositories as repo
from elibrary.config import Settings, get_settings
from elibrary.database import Role, User, get_session
from elibrary.errors import ForbiddenError, UnauthorizedError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)

SessionDep = Annotated[Session, Depends(get_session)]
SettingsDep = Annotated[Settings, Depends(get_settings)]


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password):
    return pwd_context.hash(password)

def create_access_token(user: User, settings: Settings, expires_delta: timedelta | None = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=settings.access_token_expire_days))
    to_encode = {
        "sub": str(user.id),
        "email": user.email,
        "name": user.name,
        "role": user.role.value,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.jwt_key, algorithm=settings.jwt_algorithm)

def decode_access_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(
            token,
            settings.jwt_key,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except InvalidTokenError:
        raise UnauthorizedError()

async def get_current_user(
    token: Annotated[str | None, Depends(oauth2_scheme)],
    session: SessionDep,
    settings: SettingsDep,
) -> User:
    if not token:
        raise UnauthorizedError("Not authenticated")
    payload = decode_access_token(token, settings)
    subject = payload.get("sub")
    if subject is None or not str(subject).isdigit():
        raise UnauthorizedError()
    user = repo.get_user(session, int(subject))
    if user is None:
        raise UnauthorizedError()
    return user

#admin-only routes depend on this instead of get_current_user
async def require_admin(current_user: Annotated[User, Depends(get_current_user)]) -> User:
    if current_user.role != Role.ADMIN:
        raise ForbiddenError("This action requires elevated permissions. Ask an Administrator for help.")
    return current_user

CurrentUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(require_admin)]
