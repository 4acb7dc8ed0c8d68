"""FastAPI application exposing user, note and authentication endpoints."""

from datetime import datetime
from typing import List, Optional

import logging
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from prometheus_client import Counter

from pydantic import BaseModel, ConfigDict, Field, StrictBool, conlist, constr

from sqlalchemy.orm import Session

from .auth import (
    create_access_token,
    create_refresh_token,
    decode_token,
    find_active_user,
    get_current_user,
    get_db,
    require_roles,
    verify_password,
)
from .config import settings
from .database import init_db
from .services import (
    list_users,
    create_user,
    update_user,
    delete_user,
    ensure_admin_user,
    list_notes,
    create_note,
    update_note,
    delete_note,
)


logger = logging.getLogger(__name__)

LOGIN_LIMIT_MESSAGE = (
    "Too many login attempts from this IP, please try again later after a 60 seconds pause"
)

# Prometheus counter to track API requests by method, endpoint and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)
LOGIN_THROTTLED_COUNTER = Counter(
    "login_attempts_throttled_total", "Total login attempts rejected by the rate limiter"
)


def login_rate_limit_exceeded(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Reject a throttled login attempt and record it."""
    LOGIN_THROTTLED_COUNTER.inc()
    logger.warning(
        "too many requests: %s\t%s\t%s\t%s",
        exc.detail,
        request.method,
        request.url.path,
        request.headers.get("origin"),
    )
    response = JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": LOGIN_LIMIT_MESSAGE},
    )
    return request.app.state.limiter._inject_headers(
        response, request.state.view_rate_limit
    )


def request_validation_failed(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies as a plain 400."""
    # only field locations; the rejected input may contain a password
    logger.info(
        "invalid payload %s %s: %s",
        request.method,
        request.url.path,
        [error.get("loc") for error in exc.errors()],
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "All fields are required"},
    )


limiter = Limiter(key_func=get_remote_address, headers_enabled=True)
app = FastAPI(title=settings.api_title)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, login_rate_limit_exceeded)
app.add_exception_handler(RequestValidationError, request_validation_failed)
init_db()
ensure_admin_user()

staff_only = require_roles("Admin", "Manager")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log incoming requests and their outcomes while updating metrics."""
    logger.info("request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status=str(response.status_code),
        ).inc()
        logger.info(
            "response %s %s status %s",
            request.method,
            request.url.path,
            response.status_code,
        )
        return response
    except Exception:
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status="500",
        ).inc()
        logger.exception(
            "error handling %s %s", request.method, request.url.path
        )
        raise


Name = constr(strip_whitespace=True, min_length=1)
RoleList = conlist(Name, min_length=1)


class MessageResponse(BaseModel):
    """Confirmation returned by write operations."""

    message: str


class UserResponse(BaseModel):
    """Serialized user; the password hash is never part of it."""

    id: int
    username: str
    roles: List[str]
    active: bool

    model_config = ConfigDict(from_attributes=True)


class UserCreate(BaseModel):
    """Request body for creating a user."""

    username: Name
    password: constr(min_length=1)
    roles: Optional[List[Name]] = Field(None, description="Defaults to the configured roles")


class UserUpdate(BaseModel):
    """Request body for updating a user."""

    id: int
    username: Name
    password: Optional[str] = Field(None, description="Omit to keep the current password")
    roles: RoleList
    active: StrictBool


class UserDelete(BaseModel):
    id: int


class NoteResponse(BaseModel):
    """Serialized note with the owner's username."""

    id: int
    user_id: int
    username: Optional[str]
    title: str
    text: str
    completed: bool
    created_at: datetime
    updated_at: Optional[datetime]


class NoteCreate(BaseModel):
    user: int
    title: Name
    text: constr(min_length=1)


class NoteUpdate(BaseModel):
    id: int
    user: int
    title: Name
    text: constr(min_length=1)
    completed: StrictBool


class NoteDelete(BaseModel):
    id: int


class UserLogin(BaseModel):
    """Request body for user login."""

    username: Name
    password: constr(min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: constr(min_length=1)


class TokenResponse(BaseModel):
    """JWT access and refresh tokens."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/auth/login", response_model=TokenResponse)
@limiter.limit(settings.login_rate_limit)
def login(
    request: Request,
    response: Response,
    credentials: UserLogin,
    db: Session = Depends(get_db),
):
    db_user = find_active_user(db, credentials.username)
    if not verify_password(credentials.password, db_user.password_hash):
        raise HTTPException(status_code=401, detail="Unauthorized")
    logger.info("user %s logged in", db_user.username)
    return TokenResponse(
        access_token=create_access_token(db_user),
        refresh_token=create_refresh_token(db_user),
    )


@app.post("/auth/refresh", response_model=TokenResponse)
def refresh(payload: RefreshRequest, db: Session = Depends(get_db)):
    username = decode_token(payload.refresh_token, "refresh")
    db_user = find_active_user(db, username)
    return TokenResponse(
        access_token=create_access_token(db_user),
        refresh_token=create_refresh_token(db_user),
    )


@app.get("/users", response_model=List[UserResponse], dependencies=[Depends(staff_only)])
def get_all_users():
    """Return all users."""

    return list_users()


@app.post(
    "/users",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(staff_only)],
)
def post_user(payload: UserCreate):
    """Create a new user."""

    return MessageResponse(
        message=create_user(payload.username, payload.password, payload.roles)
    )


@app.patch("/users", response_model=MessageResponse, dependencies=[Depends(staff_only)])
def patch_user(payload: UserUpdate):
    """Update a user's username, roles, active flag and optionally password."""

    return MessageResponse(
        message=update_user(
            payload.id,
            payload.username,
            payload.roles,
            payload.active,
            password=payload.password,
        )
    )


@app.delete("/users", response_model=MessageResponse, dependencies=[Depends(staff_only)])
def remove_user(payload: UserDelete):
    """Delete a user that has no assigned notes."""

    return MessageResponse(message=delete_user(payload.id))


@app.get("/notes", response_model=List[NoteResponse], dependencies=[Depends(get_current_user)])
def get_all_notes():
    return list_notes()


@app.post(
    "/notes",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(get_current_user)],
)
def post_note(payload: NoteCreate):
    return MessageResponse(message=create_note(payload.user, payload.title, payload.text))


@app.patch("/notes", response_model=MessageResponse, dependencies=[Depends(get_current_user)])
def patch_note(payload: NoteUpdate):
    return MessageResponse(
        message=update_note(
            payload.id, payload.user, payload.title, payload.text, payload.completed
        )
    )


@app.delete("/notes", response_model=MessageResponse, dependencies=[Depends(get_current_user)])
def remove_note(payload: NoteDelete):
    return MessageResponse(message=delete_note(payload.id))
