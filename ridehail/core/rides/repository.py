# ridehail/core/rides/repository.py
"""
Репозиторий поездок в PostgreSQL.
Все изменения статуса — условные UPDATE ... RETURNING: строка меняется,
только если предикат всё ещё выполняется, иначе возвращается None.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import asyncpg

from ridehail.common.constants import (
    DRIVER_ACTIVE_STATUSES,
    RIDER_ACTIVE_STATUSES,
    PaymentStatus,
    RideStatus,
    TypeMsg,
    UserRole,
)
from ridehail.common.errors import ConflictError
from ridehail.common.logger import log_info, log_warning
from ridehail.core.rides.models import (
    DistancePair,
    DurationPair,
    MoneyPair,
    Ride,
    RideRating,
)
from ridehail.core.rides.state_machine import Transition
from ridehail.infra.database import DatabaseManager
from ridehail.shared.models.geo import GeoPoint, Location


RIDER_ACTIVE_INDEX = "uq_rides_rider_active"
DRIVER_ACTIVE_INDEX = "uq_rides_driver_active"

_RIDER_ACTIVE = [s.value for s in RIDER_ACTIVE_STATUSES]
_DRIVER_ACTIVE = [s.value for s in DRIVER_ACTIVE_STATUSES]


def _active_ride_conflict(error: asyncpg.UniqueViolationError) -> ConflictError:
    """Переводит нарушение частичного уникального индекса в доменную ошибку."""
    constraint = getattr(error, "constraint_name", None)
    if constraint == DRIVER_ACTIVE_INDEX:
        message = "У водителя уже есть активная поездка"
    elif constraint == RIDER_ACTIVE_INDEX:
        message = "У пассажира уже есть активная поездка"
    else:
        message = "Конфликт уникальности поездки"
    return ConflictError(message, details={"constraint": constraint})


class RideRepository:
    """Репозиторий поездок."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    def _executor(self, conn: Optional[asyncpg.Connection]) -> Any:
        # Внутри транзакции запросы идут через её соединение
        return conn if conn is not None else self._db

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_by_id(self, ride_id: str, conn: Optional[asyncpg.Connection] = None) -> Optional[Ride]:
        """
        Получает поездку по ID.

        Args:
            ride_id: UUID поездки
            conn: Соединение транзакции

        Returns:
            Поездка или None
        """
        row = await self._executor(conn).fetchrow("SELECT * FROM rides WHERE id = $1", ride_id)
        return self._row_to_ride(row) if row else None

    async def get_active_by_rider(self, rider_id: str) -> Optional[Ride]:
        """Активная поездка пассажира (requested, accepted, picked_up, in_transit)."""
        row = await self._db.fetchrow(
            """
            SELECT * FROM rides
            WHERE rider_id = $1 AND status = ANY($2::text[])
            ORDER BY created_at DESC
            LIMIT 1
            """,
            rider_id,
            _RIDER_ACTIVE,
        )
        return self._row_to_ride(row) if row else None

    async def get_active_by_driver(self, driver_id: str) -> Optional[Ride]:
        """Активная поездка водителя (accepted, picked_up, in_transit)."""
        row = await self._db.fetchrow(
            """
            SELECT * FROM rides
            WHERE driver_id = $1 AND status = ANY($2::text[])
            ORDER BY created_at DESC
            LIMIT 1
            """,
            driver_id,
            _DRIVER_ACTIVE,
        )
        return self._row_to_ride(row) if row else None

    async def busy_driver_ids(self, driver_ids: list[str]) -> set[str]:
        """Из переданных водителей возвращает тех, у кого есть активная поездка."""
        if not driver_ids:
            return set()
        rows = await self._db.fetch(
            """
            SELECT DISTINCT driver_id FROM rides
            WHERE driver_id = ANY($1::text[]) AND status = ANY($2::text[])
            """,
            list(driver_ids),
            _DRIVER_ACTIVE,
        )
        return {row["driver_id"] for row in rows}

    async def list_pending(
        self,
        exclude_driver_id: Optional[str],
        limit: int,
        offset: int,
    ) -> tuple[list[Ride], int]:
        """
        Открытые поездки без водителя, новые первыми.

        Args:
            exclude_driver_id: Скрыть поездки, от которых водитель отказался
            limit: Размер страницы
            offset: Смещение

        Returns:
            (поездки, общее количество)
        """
        where = "status = 'requested' AND driver_id IS NULL AND NOT ($1::text = ANY(rejected_drivers))"
        if exclude_driver_id is None:
            where = "status = 'requested' AND driver_id IS NULL AND $1::text IS NULL"

        rows = await self._db.fetch(
            f"SELECT * FROM rides WHERE {where} ORDER BY created_at DESC LIMIT $2 OFFSET $3",
            exclude_driver_id,
            limit,
            offset,
        )
        total = await self._db.fetchval(f"SELECT COUNT(*) FROM rides WHERE {where}", exclude_driver_id)
        return [self._row_to_ride(row) for row in rows], int(total or 0)

    async def history(
        self,
        user_id: str,
        role: UserRole,
        status: Optional[RideStatus],
        limit: int,
        offset: int,
    ) -> tuple[list[Ride], int]:
        """История поездок пассажира или водителя, новые первыми."""
        column = "driver_id" if role == UserRole.DRIVER else "rider_id"
        where = f"{column} = $1 AND ($2::text IS NULL OR status = $2::text)"
        status_value = status.value if status is not None else None

        rows = await self._db.fetch(
            f"SELECT * FROM rides WHERE {where} ORDER BY created_at DESC LIMIT $3 OFFSET $4",
            user_id,
            status_value,
            limit,
            offset,
        )
        total = await self._db.fetchval(f"SELECT COUNT(*) FROM rides WHERE {where}", user_id, status_value)
        return [self._row_to_ride(row) for row in rows], int(total or 0)

    async def count_completed_by_driver(self, driver_id: str) -> int:
        """Количество завершённых поездок водителя."""
        value = await self._db.fetchval(
            "SELECT COUNT(*) FROM rides WHERE driver_id = $1 AND status = 'completed'",
            driver_id,
        )
        return int(value or 0)

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    async def create(self, ride: Ride) -> Ride:
        """
        Сохраняет новую поездку.

        Raises:
            ConflictError: У пассажира или водителя уже есть активная поездка
        """
        try:
            row = await self._db.fetchrow(
                """
                INSERT INTO rides (
                    id, rider_id, driver_id, driver_profile_id,
                    pickup_address, pickup_longitude, pickup_latitude,
                    destination_address, destination_longitude, destination_latitude,
                    status, ride_type, payment_method, payment_status,
                    fare_estimated, distance_estimated, duration_estimated,
                    timeline, rejected_drivers, notes, created_at, updated_at
                )
                VALUES (
                    $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11,
                    $12, $13, $14, $15, $16, $17, $18, $19, $20, $21, $22
                )
                RETURNING *
                """,
                ride.id,
                ride.rider_id,
                ride.driver_id,
                ride.driver_profile_id,
                ride.pickup_location.address,
                ride.pickup_location.point.longitude,
                ride.pickup_location.point.latitude,
                ride.destination.address,
                ride.destination.point.longitude,
                ride.destination.point.latitude,
                ride.status.value,
                ride.ride_type.value,
                ride.payment_method.value,
                ride.payment_status.value,
                ride.fare.estimated,
                ride.distance.estimated,
                ride.duration.estimated,
                {key: value.isoformat() for key, value in ride.timeline.items()},
                list(ride.rejected_drivers),
                ride.notes,
                ride.created_at,
                ride.updated_at,
            )
        except asyncpg.UniqueViolationError as e:
            conflict = _active_ride_conflict(e)
            await log_warning(f"Поездка {ride.id} не создана: {conflict.message}")
            raise conflict from e

        await log_info(f"Поездка {ride.id} создана в статусе {ride.status.value}", type_msg=TypeMsg.DEBUG)
        return self._row_to_ride(row)

    async def try_assign_driver(
        self,
        ride_id: str,
        driver_id: str,
        driver_profile_id: str,
        at: datetime,
    ) -> Optional[Ride]:
        """
        Назначает водителя одним условным UPDATE.
        Срабатывает, только если поездка ещё requested, без водителя
        и водитель не отказывался от неё.

        Returns:
            Обновлённая поездка или None, если предикат не выполнен

        Raises:
            ConflictError: Водитель уже держит другую активную поездку
        """
        try:
            row = await self._db.fetchrow(
                """
                UPDATE rides
                SET driver_id = $2,
                    driver_profile_id = $3,
                    status = 'accepted',
                    -- timeline только вперёд: после release и повторного accept остаётся первая отметка
                    timeline = jsonb_build_object('accepted', $4::timestamptz) || timeline,
                    updated_at = $4
                WHERE id = $1
                  AND status = 'requested'
                  AND driver_id IS NULL
                  AND NOT ($2 = ANY(rejected_drivers))
                RETURNING *
                """,
                ride_id,
                driver_id,
                driver_profile_id,
                at,
            )
        except asyncpg.UniqueViolationError as e:
            raise _active_ride_conflict(e) from e

        return self._row_to_ride(row) if row else None

    async def apply_transition(
        self,
        ride_id: str,
        transition: Transition,
        *,
        cancellation_reason: Optional[str] = None,
        rejected_driver_id: Optional[str] = None,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[Ride]:
        """
        Записывает переход, если статус и водитель не изменились с момента проверки.
        Отметка timeline добавляется, только если её ещё нет.
        Возврат в requested (только принудительный) снимает назначение водителя.

        Args:
            ride_id: UUID поездки
            transition: Проверенный переход
            cancellation_reason: Причина отмены
            rejected_driver_id: Водитель, добавляемый в rejected_drivers
            conn: Соединение транзакции

        Returns:
            Обновлённая поездка или None
        """
        cancelled_by = transition.cancelled_by.value if transition.cancelled_by else None
        row = await self._executor(conn).fetchrow(
            """
            UPDATE rides
            SET status = $3,
                driver_id = CASE WHEN $3 = 'requested' THEN NULL ELSE driver_id END,
                driver_profile_id = CASE WHEN $3 = 'requested' THEN NULL ELSE driver_profile_id END,
                timeline = jsonb_build_object($4::text, $5::timestamptz) || timeline,
                cancelled_by = COALESCE($6, cancelled_by),
                cancellation_reason = COALESCE($7, cancellation_reason),
                rejected_drivers = CASE
                    WHEN $8::text IS NULL OR $8::text = ANY(rejected_drivers) THEN rejected_drivers
                    ELSE array_append(rejected_drivers, $8::text)
                END,
                updated_at = $5
            WHERE id = $1 AND status = $2
              AND driver_id IS NOT DISTINCT FROM $9::text
            RETURNING *
            """,
            ride_id,
            transition.from_status.value,
            transition.to_status.value,
            transition.milestone,
            transition.at,
            cancelled_by,
            cancellation_reason,
            rejected_driver_id,
            transition.driver_id,
        )
        return self._row_to_ride(row) if row else None

    async def add_rejected_driver(self, ride_id: str, driver_id: str) -> Optional[Ride]:
        """
        Добавляет водителя в rejected_drivers открытой поездки.

        Returns:
            Обновлённая поездка или None (поездка уже не открыта или водитель уже в списке)
        """
        row = await self._db.fetchrow(
            """
            UPDATE rides
            SET rejected_drivers = array_append(rejected_drivers, $2),
                updated_at = NOW()
            WHERE id = $1
              AND status = 'requested'
              AND driver_id IS NULL
              AND NOT ($2 = ANY(rejected_drivers))
            RETURNING *
            """,
            ride_id,
            driver_id,
        )
        return self._row_to_ride(row) if row else None

    async def release_driver(self, ride_id: str, driver_id: str) -> Optional[Ride]:
        """
        Снимает назначение с accepted-поездки и возвращает её в requested.
        Водитель попадает в rejected_drivers. Timeline не откатывается.
        """
        row = await self._db.fetchrow(
            """
            UPDATE rides
            SET driver_id = NULL,
                driver_profile_id = NULL,
                status = 'requested',
                rejected_drivers = CASE
                    WHEN $2 = ANY(rejected_drivers) THEN rejected_drivers
                    ELSE array_append(rejected_drivers, $2)
                END,
                updated_at = NOW()
            WHERE id = $1 AND status = 'accepted' AND driver_id = $2
            RETURNING *
            """,
            ride_id,
            driver_id,
        )
        return self._row_to_ride(row) if row else None

    async def complete(
        self,
        ride_id: str,
        transition: Transition,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[Ride]:
        """
        Переводит поездку в completed и фиксирует фактические значения,
        равные оценочным. Срабатывает один раз: completed терминальный.
        Водитель должен совпадать с проверенным в переходе.
        """
        row = await self._executor(conn).fetchrow(
            """
            UPDATE rides
            SET status = 'completed',
                timeline = jsonb_build_object('completed', $3::timestamptz) || timeline,
                fare_actual = fare_estimated,
                distance_actual = distance_estimated,
                duration_actual = duration_estimated,
                payment_status = $4,
                updated_at = $3
            WHERE id = $1 AND status = $2
              AND driver_id IS NOT DISTINCT FROM $5::text
            RETURNING *
            """,
            ride_id,
            transition.from_status.value,
            transition.at,
            PaymentStatus.COMPLETED.value,
            transition.driver_id,
        )
        return self._row_to_ride(row) if row else None

    async def set_driver_rating(
        self,
        ride_id: str,
        rider_id: str,
        rating: int,
        feedback: Optional[str],
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[Ride]:
        """
        Записывает оценку водителя, пока оба слота оценок пусты.

        Returns:
            Обновлённая поездка или None, если оценка уже выставлена
        """
        row = await self._executor(conn).fetchrow(
            """
            UPDATE rides
            SET driver_rating = $3,
                feedback = COALESCE($4, feedback),
                updated_at = NOW()
            WHERE id = $1
              AND rider_id = $2
              AND status = 'completed'
              AND driver_rating IS NULL
              AND rider_rating IS NULL
            RETURNING *
            """,
            ride_id,
            rider_id,
            rating,
            feedback,
        )
        return self._row_to_ride(row) if row else None

    # =========================================================================
    # МАППИНГ
    # =========================================================================

    @staticmethod
    def _row_to_ride(row: Any) -> Ride:
        """Преобразует строку БД в модель Ride."""
        cancelled_by = row["cancelled_by"]
        return Ride(
            id=row["id"],
            rider_id=row["rider_id"],
            driver_id=row["driver_id"],
            driver_profile_id=row["driver_profile_id"],
            pickup_location=Location(
                address=row["pickup_address"],
                point=GeoPoint(longitude=row["pickup_longitude"], latitude=row["pickup_latitude"]),
            ),
            destination=Location(
                address=row["destination_address"],
                point=GeoPoint(longitude=row["destination_longitude"], latitude=row["destination_latitude"]),
            ),
            status=RideStatus(row["status"]),
            ride_type=row["ride_type"],
            payment_method=row["payment_method"],
            payment_status=row["payment_status"],
            fare=MoneyPair(estimated=row["fare_estimated"], actual=row["fare_actual"]),
            distance=DistancePair(estimated=row["distance_estimated"], actual=row["distance_actual"]),
            duration=DurationPair(estimated=row["duration_estimated"], actual=row["duration_actual"]),
            timeline=dict(row["timeline"] or {}),
            rejected_drivers=list(row["rejected_drivers"] or []),
            rating=RideRating(rider_rating=row["rider_rating"], driver_rating=row["driver_rating"]),
            feedback=row["feedback"],
            notes=row["notes"],
            cancellation_reason=row["cancellation_reason"],
            cancelled_by=UserRole(cancelled_by) if cancelled_by else None,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
