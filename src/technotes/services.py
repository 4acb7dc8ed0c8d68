"""Service layer for the user lifecycle and user-owned notes."""

import logging
from typing import Dict, List, NoReturn, Optional, Sequence

from fastapi import HTTPException
from prometheus_client import Counter
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .auth import hash_password
from .collation import collation_key
from .config import settings
from .database import SessionLocal
from .errors import ConflictError, InvalidInputError, NotFoundError
from .models.note import Note
from .models.user import User


logger = logging.getLogger(__name__)

# Prometheus counters for key service events
USER_CREATED_COUNTER = Counter("users_created_total", "Total users created")
USER_UPDATED_COUNTER = Counter("users_updated_total", "Total users updated")
USER_DELETED_COUNTER = Counter("users_deleted_total", "Total users deleted")
NOTE_CREATED_COUNTER = Counter("notes_created_total", "Total notes created")
NOTE_DELETED_COUNTER = Counter("notes_deleted_total", "Total notes deleted")


def _handle_service_error(session: Session, exc: Exception) -> NoReturn:
    """Rollback transaction and raise HTTP exception for service errors."""
    session.rollback()
    if isinstance(exc, HTTPException):
        logger.info("request rejected: %s", exc.detail)
        raise exc
    logger.exception("service layer error", exc_info=exc)
    if isinstance(exc, SQLAlchemyError):
        raise HTTPException(status_code=500, detail="Database error") from exc
    raise InvalidInputError("Invalid data received") from exc


def _commit(session: Session, message: str) -> None:
    """Commit pending writes, reporting a rejected write as invalid input."""
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning("store rejected write: %s", exc.__class__.__name__)
        raise InvalidInputError(message) from exc


def _is_role_list(roles) -> bool:
    return (
        isinstance(roles, (list, tuple))
        and len(roles) > 0
        and all(isinstance(role, str) and role.strip() for role in roles)
    )


def _find_user_by_username(session: Session, username: str) -> Optional[User]:
    """Look up a user under the case-insensitive username collation."""
    return (
        session.query(User)
        .filter(User.username_key == collation_key(username))
        .first()
    )


def _has_assigned_notes(session: Session, user_id: int) -> bool:
    return session.query(Note.id).filter(Note.user_id == user_id).first() is not None


def list_users() -> List[Dict[str, object]]:
    """Return every user without the password hash."""

    session: Session = SessionLocal()
    try:
        rows = (
            session.query(User.id, User.username, User.roles, User.active)
            .order_by(User.id)
            .all()
        )
        if not rows:
            raise NotFoundError("No users found")
        return [dict(row._mapping) for row in rows]
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def create_user(
    username: str, password: str, roles: Optional[Sequence[str]] = None
) -> str:
    """Create a user with a hashed password.

    Parameters
    ----------
    username: str
        Requested username; must not collide case-insensitively with an
        existing one.
    password: str
        Plaintext password, stored only as a bcrypt hash.
    roles: sequence of str, optional
        Role tags. Missing or empty falls back to ``settings.default_roles``.

    Returns
    -------
    str
        Confirmation message naming the created user.
    """
    if not username or not username.strip() or not password:
        raise InvalidInputError("All fields are required")
    if roles and not _is_role_list(roles):
        raise InvalidInputError("Roles must be a list of role names")
    username = username.strip()

    session: Session = SessionLocal()
    try:
        if _find_user_by_username(session, username) is not None:
            raise ConflictError("Duplicate username")

        user = User(
            username=username,
            password_hash=hash_password(password),
            roles=list(roles) if roles else list(settings.default_roles),
        )
        session.add(user)
        _commit(session, "Invalid user data received")
        USER_CREATED_COUNTER.inc()
        logger.info("created user id=%s username=%s", user.id, username)
        return f"New user {username} created"
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def update_user(
    user_id: int,
    username: str,
    roles: Sequence[str],
    active: bool,
    password: Optional[str] = None,
) -> str:
    """Overwrite a user's username, roles and active flag.

    The password hash is replaced only when a new password is supplied.
    """
    if (
        not user_id
        or not username
        or not username.strip()
        or not _is_role_list(roles)
        or not isinstance(active, bool)
    ):
        raise InvalidInputError("All fields except password are required")
    username = username.strip()

    logger.info("update user id=%s", user_id)
    session: Session = SessionLocal()
    try:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        duplicate = _find_user_by_username(session, username)
        # a match on the same record is the user keeping its own name
        if duplicate is not None and duplicate.id != user.id:
            raise ConflictError("Duplicate username")

        user.username = username
        user.roles = list(roles)
        user.active = active
        if password:
            user.password_hash = hash_password(password)

        _commit(session, "Invalid user data received")
        USER_UPDATED_COUNTER.inc()
        logger.info("updated user id=%s username=%s", user_id, username)
        return f"User {username} updated"
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def delete_user(user_id: int) -> str:
    """Delete a user that no note references."""

    if not user_id:
        raise InvalidInputError("User ID required")

    logger.info("delete user id=%s", user_id)
    session: Session = SessionLocal()
    try:
        if _has_assigned_notes(session, user_id):
            raise ConflictError("User has assigned notes")

        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        username = user.username
        session.delete(user)
        _commit(session, "Invalid user data received")
        USER_DELETED_COUNTER.inc()
        logger.info("deleted user id=%s username=%s", user_id, username)
        return f"User {username} deleted"
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def ensure_admin_user() -> bool:
    """Create the configured bootstrap administrator if it is missing.

    Returns ``True`` when a user was created.
    """
    if not settings.admin_username or not settings.admin_password:
        return False

    session: Session = SessionLocal()
    try:
        exists = _find_user_by_username(session, settings.admin_username) is not None
    finally:
        session.close()
    if exists:
        return False

    create_user(settings.admin_username, settings.admin_password, ["Admin"])
    logger.info("bootstrapped admin user %s", settings.admin_username)
    return True


def list_notes() -> List[Dict[str, object]]:
    """Return every note together with the owner's username."""

    session: Session = SessionLocal()
    try:
        rows = (
            session.query(Note, User.username)
            .outerjoin(User, Note.user_id == User.id)
            .order_by(Note.id)
            .all()
        )
        if not rows:
            raise NotFoundError("No notes found")
        return [
            {
                "id": note.id,
                "user_id": note.user_id,
                "username": username,
                "title": note.title,
                "text": note.text,
                "completed": note.completed,
                "created_at": note.created_at,
                "updated_at": note.updated_at,
            }
            for note, username in rows
        ]
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def _find_note_by_title(session: Session, title: str) -> Optional[Note]:
    return (
        session.query(Note)
        .filter(Note.title_key == collation_key(title))
        .first()
    )


def create_note(user_id: int, title: str, text: str) -> str:
    """Create a note owned by ``user_id``."""

    if not user_id or not title or not title.strip() or not text:
        raise InvalidInputError("All fields are required")
    title = title.strip()

    session: Session = SessionLocal()
    try:
        if session.get(User, user_id) is None:
            raise NotFoundError("User not found")
        if _find_note_by_title(session, title) is not None:
            raise ConflictError("Duplicate note title")

        note = Note(user_id=user_id, title=title, text=text)
        session.add(note)
        _commit(session, "Invalid note data received")
        NOTE_CREATED_COUNTER.inc()
        logger.info("created note id=%s user=%s", note.id, user_id)
        return f"New note {title} created"
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def update_note(
    note_id: int, user_id: int, title: str, text: str, completed: bool
) -> str:
    """Overwrite every editable field of a note."""

    if (
        not note_id
        or not user_id
        or not title
        or not title.strip()
        or not text
        or not isinstance(completed, bool)
    ):
        raise InvalidInputError("All fields are required")
    title = title.strip()

    session: Session = SessionLocal()
    try:
        note = session.get(Note, note_id)
        if note is None:
            raise NotFoundError("Note not found")
        if session.get(User, user_id) is None:
            raise NotFoundError("User not found")

        duplicate = _find_note_by_title(session, title)
        if duplicate is not None and duplicate.id != note.id:
            raise ConflictError("Duplicate note title")

        note.user_id = user_id
        note.title = title
        note.text = text
        note.completed = completed
        _commit(session, "Invalid note data received")
        logger.info("updated note id=%s", note_id)
        return f"Note {title} updated"
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()


def delete_note(note_id: int) -> str:
    if not note_id:
        raise InvalidInputError("Note ID required")

    session: Session = SessionLocal()
    try:
        note = session.get(Note, note_id)
        if note is None:
            raise NotFoundError("Note not found")

        title = note.title
        session.delete(note)
        _commit(session, "Invalid note data received")
        NOTE_DELETED_COUNTER.inc()
        logger.info("deleted note id=%s", note_id)
        return f"Note {title} with ID {note_id} deleted"
    except Exception as exc:
        _handle_service_error(session, exc)
    finally:
        session.close()
