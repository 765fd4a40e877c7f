"""FastAPI application exposing CRUD endpoints for users."""
from __future__ import annotations

import functools
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, TypeVar

import anyio
from fastapi import APIRouter, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from .database import MAX_INTEGER
from .errors import (
    DuplicateEmailError,
    InvalidInputError,
    NotFoundError,
    OrchidError,
    QueryTimeoutError,
)
from .models import User
from .service import DEFAULT_PAGE, DEFAULT_PAGE_SIZE, UserService

logger = logging.getLogger("orchid.api")

PASSWORD_MIN_LENGTH = 6

T = TypeVar("T")


class CreateUserRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=128)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("name must not be empty")
        return stripped


class UpdateUserRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        if not stripped:
            raise ValueError("name must not be empty")
        return stripped


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    created_at: datetime
    updated_at: datetime


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def success_response(
    message: str,
    data: Any = None,
    *,
    status_code: int = status.HTTP_200_OK,
    **extra: Any,
) -> JSONResponse:
    payload: Dict[str, Any] = {"success": True, "message": message}
    if data is not None:
        payload["data"] = data
    payload.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def error_response(status_code: int, message: str, error: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "error": error or message},
    )


def parse_positive_int(raw: Optional[str], default: int) -> int:
    """Return ``raw`` as a positive integer the store can hold, or ``default`` when it is not one."""

    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if 0 < value <= MAX_INTEGER else default


def _describe_validation_error(exc: RequestValidationError) -> tuple[str, str]:
    errors = exc.errors()
    if not errors:
        return "Invalid request body", "request validation failed"
    first = errors[0]
    location = [str(part) for part in first.get("loc", ())]
    if location and location[0] == "path":
        return "Invalid user ID", str(first.get("msg", "invalid path parameter"))
    if first.get("type") == "json_invalid":
        return "Invalid request body", str(first.get("msg", "JSON decode error"))
    field_path = ".".join(location[1:]) if len(location) > 1 else ""
    detail = str(first.get("msg", "invalid value"))
    if field_path:
        detail = f"{field_path}: {detail}"
    return "Invalid request body", detail


async def _run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    return await anyio.to_thread.run_sync(functools.partial(func, *args, **kwargs))


def create_app(
    *,
    service: UserService,
    cors_origins: Iterable[str] = ("*",),
    title: str = "Orchid User Service",
) -> FastAPI:
    app = FastAPI(
        title=title,
        description="CRUD API for user accounts",
        version="1.0.0",
        docs_url="/swagger",
        redoc_url=None,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cors_origins),
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.state.user_service = service

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok", "message": "Server is running"}

    router = APIRouter(prefix="/api/users", tags=["users"])

    @router.get("")
    async def list_users(page: Optional[str] = None, limit: Optional[str] = None) -> JSONResponse:
        page_number = parse_positive_int(page, DEFAULT_PAGE)
        page_size = parse_positive_int(limit, DEFAULT_PAGE_SIZE)
        result = await _run_blocking(service.list_users, page_number, page_size)
        return success_response(
            "Users retrieved successfully",
            [user_to_response(user) for user in result.users],
            total=result.total,
            page=result.page,
            limit=result.limit,
            total_pages=result.total_pages,
        )

    @router.get("/{user_id}")
    async def read_user(user_id: int) -> JSONResponse:
        user = await _run_blocking(service.get_user, user_id)
        return success_response("User retrieved successfully", user_to_response(user))

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_user(payload: CreateUserRequest) -> JSONResponse:
        user = await _run_blocking(service.create_user, payload.name, str(payload.email), payload.password)
        return success_response(
            "User created successfully",
            user_to_response(user),
            status_code=status.HTTP_201_CREATED,
        )

    @router.put("/{user_id}")
    async def update_user(user_id: int, payload: UpdateUserRequest) -> JSONResponse:
        updates = {key: value for key, value in payload.model_dump(exclude_unset=True).items() if value is not None}
        email = updates.get("email")
        user = await _run_blocking(
            service.update_user,
            user_id,
            name=updates.get("name"),
            email=str(email) if email is not None else None,
        )
        return success_response("User updated successfully", user_to_response(user))

    @router.delete("/{user_id}")
    async def delete_user(user_id: int) -> JSONResponse:
        await _run_blocking(service.delete_user, user_id)
        return success_response("User deleted successfully", {"id": user_id})

    app.include_router(router)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        message, detail = _describe_validation_error(exc)
        return error_response(status.HTTP_400_BAD_REQUEST, message, detail)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = str(exc.detail)
        response = error_response(exc.status_code, detail, detail)
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(OrchidError)
    async def handle_service_error(request: Request, exc: OrchidError) -> JSONResponse:
        if isinstance(exc, InvalidInputError):
            return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request body", str(exc))
        if isinstance(exc, NotFoundError):
            return error_response(status.HTTP_404_NOT_FOUND, "User not found", str(exc))
        if isinstance(exc, DuplicateEmailError):
            return error_response(status.HTTP_409_CONFLICT, "Email already exists", str(exc))
        if isinstance(exc, QueryTimeoutError):
            logger.warning("%s %s timed out: %s", request.method, request.url.path, exc)
            return error_response(status.HTTP_504_GATEWAY_TIMEOUT, "Request timed out", "the data store did not respond in time")
        logger.error("%s %s failed", request.method, request.url.path, exc_info=exc)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "internal server error")

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "internal server error")

    return app


__all__ = [
    "CreateUserRequest",
    "UpdateUserRequest",
    "UserResponse",
    "create_app",
    "error_response",
    "parse_positive_int",
    "success_response",
    "user_to_response",
]
