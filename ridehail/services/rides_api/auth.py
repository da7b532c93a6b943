# ridehail/services/rides_api/auth.py
"""
Определение вызывающего по заголовкам от auth-прокси и проверка роли.
Выпуск токенов и их проверка живут перед сервисом.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Awaitable, Callable, Optional

from fastapi import Depends, Header

from ridehail.common.constants import UserRole
from ridehail.common.errors import ForbiddenError, UnauthorizedError


@dataclass(frozen=True)
class Caller:
    """Аутентифицированный пользователь."""
    user_id: str
    role: UserRole


async def get_caller(
    x_user_id: Annotated[Optional[str], Header(alias="X-User-Id")] = None,
    x_user_role: Annotated[Optional[str], Header(alias="X-User-Role")] = None,
) -> Caller:
    """
    Читает X-User-Id и X-User-Role.

    Raises:
        UnauthorizedError: Заголовков нет или роль неизвестна
    """
    if not x_user_id or not x_user_role:
        raise UnauthorizedError("Требуется аутентификация")
    try:
        role = UserRole(x_user_role.lower())
    except ValueError:
        raise UnauthorizedError("Неизвестная роль пользователя", details={"role": x_user_role}) from None
    return Caller(user_id=x_user_id, role=role)


def require_roles(*roles: UserRole) -> Callable[..., Awaitable[Caller]]:
    """Зависимость FastAPI: пропускает только перечисленные роли."""
    allowed = frozenset(roles)

    async def dependency(caller: Annotated[Caller, Depends(get_caller)]) -> Caller:
        if caller.role not in allowed:
            raise ForbiddenError(
                "Недостаточно прав",
                details={"role": caller.role.value, "allowed": sorted(r.value for r in allowed)},
            )
        return caller

    return dependency
