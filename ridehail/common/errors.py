# ridehail/common/errors.py
"""
Иерархия ошибок движка поездок.
Каждая ошибка несёт машинный код и HTTP-статус для границы API.
"""

from __future__ import annotations

from typing import Any


class RideError(Exception):
    """Базовая ошибка движка поездок."""

    code: str = "ride_error"
    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Структурированное представление ошибки."""
        return {
            "error_code": self.code,
            "message": self.message,
            "details": self.details or None,
        }


class NotFoundError(RideError):
    """Поездка или водитель не найдены (или недоступны вызывающему)."""

    code = "not_found"
    status_code = 404


class ConflictError(RideError):
    """Нарушение эксклюзивности: активная поездка, повторное назначение, повторная оценка."""

    code = "conflict"
    status_code = 409


class InvalidTransitionError(RideError):
    """Переход статуса отсутствует в таблице переходов."""

    code = "invalid_transition"
    status_code = 400

    def __init__(self, from_status: Any, to_status: Any, message: str | None = None) -> None:
        self.from_status = getattr(from_status, "value", from_status)
        self.to_status = getattr(to_status, "value", to_status)
        super().__init__(
            message or f"Недопустимый переход статуса: {self.from_status} -> {self.to_status}",
            details={"from": self.from_status, "to": self.to_status},
        )


class ValidationError(RideError):
    """Некорректные входные данные (координаты, оценка, тариф)."""

    code = "validation_error"
    status_code = 400


class UnauthorizedError(RideError):
    """Вызывающий не аутентифицирован."""

    code = "unauthorized"
    status_code = 401


class ForbiddenError(RideError):
    """Роль или владение не позволяют выполнить операцию."""

    code = "forbidden"
    status_code = 403
