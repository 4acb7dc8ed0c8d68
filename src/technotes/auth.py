from datetime import datetime, timedelta
from typing import Callable, Generator

import bcrypt
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .collation import collation_key
from .config import settings
from .database import SessionLocal
from .models.user import User

security = HTTPBearer()


def get_db() -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# bcrypt only uses the first 72 bytes of a password
BCRYPT_MAX_PASSWORD_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode()[:BCRYPT_MAX_PASSWORD_BYTES]


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(_password_bytes(password), salt).decode()


def verify_password(plain_password: str, stored_hash) -> bool:
    # stored_hash may be bytes or str depending on DB driver; normalize to bytes
    if isinstance(stored_hash, str):
        stored_hash = stored_hash.encode("utf-8")
    try:
        return bcrypt.checkpw(_password_bytes(plain_password), stored_hash)
    except ValueError:
        return False


def _create_token(user: User, expires: timedelta, token_type: str) -> str:
    payload = {"sub": user.username, "exp": datetime.utcnow() + expires, "type": token_type}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user: User) -> str:
    return _create_token(user, timedelta(minutes=settings.access_token_expire_minutes), "access")


def create_refresh_token(user: User) -> str:
    return _create_token(user, timedelta(minutes=settings.refresh_token_expire_minutes), "refresh")


def decode_token(token: str, token_type: str) -> str:
    """Return the username carried by a valid token of the expected type."""
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )
    username: str | None = payload.get("sub")
    if username is None or payload.get("type") != token_type:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )
    return username


def find_active_user(db: Session, username: str) -> User:
    user = db.query(User).filter(User.username_key == collation_key(username)).first()
    if user is None or not user.active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    username = decode_token(credentials.credentials, "access")
    return find_active_user(db, username)


def require_roles(*roles: str) -> Callable[..., User]:
    """Build a dependency that admits only users holding one of ``roles``."""

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if not set(current_user.roles or []) & set(roles):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return current_user

    return dependency
