"""Application error raised by handlers and services.

FastAPI's HTTPException handler renders it as ``{"detail": message}``, so
routes and services can raise it from any depth of the call stack.
"""

from typing import Any

from fastapi import HTTPException, status


class AppError(HTTPException):
    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.message = message

    def __repr__(self) -> str:
        return f"AppError(status_code={self.status_code}, message={self.message!r})"


def not_found(what: str) -> AppError:
    return AppError(f"{what} not found", status.HTTP_404_NOT_FOUND)


def forbidden(message: str = "Unauthorized") -> AppError:
    return AppError(message, status.HTTP_403_FORBIDDEN)


def unauthorized(message: str) -> AppError:
    return AppError(message, status.HTTP_401_UNAUTHORIZED)


def error_body(message: str, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"detail": message}
    body.update(extra)
    return body
