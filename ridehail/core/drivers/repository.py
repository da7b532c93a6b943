# ridehail/core/drivers/repository.py
"""
Репозиторий водителей в PostgreSQL.
"""

from __future__ import annotations

from typing import Any, Optional

import asyncpg

from ridehail.common.constants import DriverApprovalStatus, TypeMsg
from ridehail.common.logger import log_info
from ridehail.core.drivers.models import DriverAvailability, DriverEarnings, DriverRating
from ridehail.infra.database import DatabaseManager
from ridehail.shared.models.geo import GeoPoint


class DriverRepository:
    """Репозиторий водителей."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    def _executor(self, conn: Optional[asyncpg.Connection]) -> Any:
        return conn if conn is not None else self._db

    async def get_by_user_id(
        self,
        user_id: str,
        conn: Optional[asyncpg.Connection] = None,
        for_update: bool = False,
    ) -> Optional[DriverAvailability]:
        """
        Получает водителя по ID пользователя.

        Args:
            user_id: ID пользователя-водителя
            conn: Соединение транзакции
            for_update: Заблокировать строку до конца транзакции

        Returns:
            Водитель или None
        """
        query = "SELECT * FROM drivers WHERE user_id = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await self._executor(conn).fetchrow(query, user_id)
        return self._row_to_driver(row) if row else None

    async def get_many_by_user_ids(self, user_ids: list[str]) -> dict[str, DriverAvailability]:
        """Водители по списку ID пользователей: {user_id: водитель}."""
        if not user_ids:
            return {}
        rows = await self._db.fetch(
            "SELECT * FROM drivers WHERE user_id = ANY($1::text[])",
            list(user_ids),
        )
        drivers = (self._row_to_driver(row) for row in rows)
        return {driver.user_id: driver for driver in drivers}

    async def set_online(self, user_id: str, is_online: bool) -> Optional[DriverAvailability]:
        """Выставляет флаг is_online."""
        row = await self._db.fetchrow(
            """
            UPDATE drivers
            SET is_online = $2, updated_at = NOW()
            WHERE user_id = $1
            RETURNING *
            """,
            user_id,
            is_online,
        )
        return self._row_to_driver(row) if row else None

    async def update_location(self, user_id: str, point: GeoPoint) -> Optional[DriverAvailability]:
        """Сохраняет последнюю известную позицию водителя."""
        row = await self._db.fetchrow(
            """
            UPDATE drivers
            SET current_longitude = $2, current_latitude = $3, updated_at = NOW()
            WHERE user_id = $1
            RETURNING *
            """,
            user_id,
            point.longitude,
            point.latitude,
        )
        return self._row_to_driver(row) if row else None

    async def credit_earnings(
        self,
        user_id: str,
        amount: float,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[DriverAvailability]:
        """
        Атомарно увеличивает заработок (всего и за месяц).

        Args:
            user_id: ID пользователя-водителя
            amount: Сумма
            conn: Соединение транзакции расчёта

        Returns:
            Обновлённый водитель или None
        """
        row = await self._executor(conn).fetchrow(
            """
            UPDATE drivers
            SET earnings_total = earnings_total + $2,
                earnings_this_month = earnings_this_month + $2,
                updated_at = NOW()
            WHERE user_id = $1
            RETURNING *
            """,
            user_id,
            amount,
        )
        if row:
            await log_info(f"Водителю {user_id} начислено {amount}", type_msg=TypeMsg.DEBUG)
        return self._row_to_driver(row) if row else None

    async def save_rating(
        self,
        user_id: str,
        rating: DriverRating,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[DriverAvailability]:
        """Записывает пересчитанную среднюю оценку."""
        row = await self._executor(conn).fetchrow(
            """
            UPDATE drivers
            SET rating_average = $2, rating_count = $3, updated_at = NOW()
            WHERE user_id = $1
            RETURNING *
            """,
            user_id,
            rating.average,
            rating.count,
        )
        return self._row_to_driver(row) if row else None

    @staticmethod
    def _row_to_driver(row: Any) -> DriverAvailability:
        """Преобразует строку БД в модель водителя."""
        location = None
        if row["current_longitude"] is not None and row["current_latitude"] is not None:
            location = GeoPoint(longitude=row["current_longitude"], latitude=row["current_latitude"])

        return DriverAvailability(
            id=row["id"],
            user_id=row["user_id"],
            approval_status=DriverApprovalStatus(row["approval_status"]),
            is_online=row["is_online"],
            current_location=location,
            earnings=DriverEarnings(total=row["earnings_total"], this_month=row["earnings_this_month"]),
            rating=DriverRating(average=row["rating_average"], count=row["rating_count"]),
        )
