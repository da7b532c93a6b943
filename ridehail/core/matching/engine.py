# ridehail/core/matching/engine.py
"""
Подбор водителей и гонкобезопасное назначение.
Назначение — один условный UPDATE; после неудачи поездка перечитывается
только для того, чтобы объяснить причину отказа.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from redis.exceptions import RedisError

from ridehail.common.constants import RideStatus, TypeMsg
from ridehail.common.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
)
from ridehail.common.logger import log_error, log_info, log_warning
from ridehail.core.drivers.models import DriverAvailability, DriverSummary
from ridehail.core.drivers.repository import DriverRepository
from ridehail.core.geo.index import GeoIndex
from ridehail.core.rides.models import Ride, utcnow
from ridehail.core.rides.repository import RideRepository
from ridehail.shared.models.geo import GeoPoint


@dataclass(frozen=True)
class MatchCandidate:
    """Кандидат для автоподбора."""
    driver: DriverAvailability
    distance_km: float


class MatchingEngine:
    """
    Движок подбора.

    Реализует:
    - Поиск одобренных водителей на линии в радиусе
    - Принятие поездки водителем (условное обновление)
    - Отказ водителя и освобождение назначения
    """

    def __init__(
        self,
        rides: RideRepository,
        drivers: DriverRepository,
        geo_index: GeoIndex,
        default_radius_km: Optional[float] = None,
        max_candidates: Optional[int] = None,
    ) -> None:
        """
        Args:
            rides: Репозиторий поездок
            drivers: Репозиторий водителей
            geo_index: Geo-индекс позиций
            default_radius_km: Радиус поиска по умолчанию (из конфига если None)
            max_candidates: Сколько ближайших водителей запрашивать у индекса
        """
        if default_radius_km is None or max_candidates is None:
            from ridehail.config import settings

            default_radius_km = default_radius_km or settings.matching.DEFAULT_SEARCH_RADIUS_KM
            max_candidates = max_candidates or settings.matching.MAX_NEARBY_DRIVERS

        self._rides = rides
        self._drivers = drivers
        self._geo = geo_index
        self._radius_km = default_radius_km
        self._max_candidates = max_candidates

    # =========================================================================
    # ПОИСК
    # =========================================================================

    async def find_nearby_drivers(
        self,
        point: GeoPoint,
        radius_km: Optional[float] = None,
    ) -> list[DriverSummary]:
        """
        Одобренные водители на линии в радиусе, ближайшие первыми.
        Записи индекса, расходящиеся с БД, пропускаются.

        Args:
            point: Центр поиска
            radius_km: Радиус в км (по умолчанию из конфига)

        Returns:
            Список водителей по возрастанию расстояния
        """
        candidates = await self._available_near(point, radius_km or self._radius_km)
        return [
            DriverSummary(
                driver_id=c.driver.id,
                user_id=c.driver.user_id,
                distance_km=c.distance_km,
                location=c.driver.current_location,
                rating=c.driver.rating,
            )
            for c in candidates
        ]

    async def find_auto_match_candidates(self, pickup: GeoPoint) -> list[MatchCandidate]:
        """
        Подбираемые водители для автоназначения: одобрены, на линии,
        без активной поездки. Недоступность geo-индекса не мешает
        создать поездку, она просто останется открытой.
        """
        try:
            candidates = await self._available_near(pickup, self._radius_km)
        except RedisError as e:
            await log_error(f"Geo-индекс недоступен, автоподбор пропущен: {e}")
            return []

        if not candidates:
            return []

        busy = await self._rides.busy_driver_ids([c.driver.user_id for c in candidates])
        return [c for c in candidates if c.driver.user_id not in busy]

    async def _available_near(self, point: GeoPoint, radius_km: float) -> list[MatchCandidate]:
        hits = await self._geo.nearest(point, radius_km, count=self._max_candidates)
        if not hits:
            return []

        drivers = await self._drivers.get_many_by_user_ids([hit.user_id for hit in hits])
        result = []
        for hit in hits:
            driver = drivers.get(hit.user_id)
            if driver is None or not driver.is_available:
                continue
            result.append(MatchCandidate(driver=driver, distance_km=hit.distance_km))
        return result

    # =========================================================================
    # ПРИНЯТИЕ
    # =========================================================================

    async def require_approved_driver(self, driver_id: str) -> DriverAvailability:
        """
        Профиль водителя должен существовать и быть одобрен.
        Проверяется перед принятием и отказом.

        Raises:
            ForbiddenError: Профиля нет или он не одобрен
        """
        driver = await self._drivers.get_by_user_id(driver_id)
        if driver is None or not driver.is_approved:
            raise ForbiddenError("Принимать и отклонять поездки может только одобренный водитель")
        return driver

    async def ensure_driver_free(self, driver_id: str) -> None:
        """
        Raises:
            ConflictError: У водителя уже есть активная поездка
        """
        active = await self._rides.get_active_by_driver(driver_id)
        if active is not None:
            raise ConflictError(
                "У вас уже есть активная поездка",
                details={"active_ride_id": active.id},
            )

    async def accept_ride(
        self,
        driver_id: str,
        ride_id: str,
        now: Optional[datetime] = None,
    ) -> Ride:
        """
        Водитель принимает открытую поездку.

        Args:
            driver_id: ID пользователя-водителя
            ride_id: UUID поездки
            now: Время отметки accepted

        Returns:
            Поездка в статусе accepted

        Raises:
            ForbiddenError: Водитель не одобрен
            ConflictError: Активная поездка у водителя, поездка занята, водитель отказывался
            NotFoundError: Поездки нет
            InvalidTransitionError: Поездка уже не в requested
        """
        driver = await self.require_approved_driver(driver_id)
        await self.ensure_driver_free(driver_id)

        ride = await self._rides.try_assign_driver(ride_id, driver_id, driver.id, now or utcnow())
        if ride is None:
            raise await self._explain_failed_accept(driver_id, ride_id)

        await log_info(f"Поездка {ride_id} принята водителем {driver_id}", type_msg=TypeMsg.INFO)
        return ride

    async def _explain_failed_accept(self, driver_id: str, ride_id: str) -> Exception:
        current = await self._rides.get_by_id(ride_id)
        if current is None:
            error: Exception = NotFoundError("Поездка не найдена")
        elif current.has_rejected(driver_id):
            error = ConflictError("Вы уже отказались от этой поездки")
        elif current.driver_id is not None and current.driver_id != driver_id:
            error = ConflictError("Поездка уже принята другим водителем")
        else:
            error = InvalidTransitionError(
                current.status,
                RideStatus.ACCEPTED,
                f"Поездку в статусе {current.status.value} нельзя принять",
            )

        await log_warning(f"Водитель {driver_id} не смог принять поездку {ride_id}: {error}")
        return error

    # =========================================================================
    # ОТКАЗ
    # =========================================================================

    async def reject_ride(self, driver_id: str, ride_id: str) -> Ride:
        """
        Отказ водителя от поездки.

        Открытая поездка: водитель попадает в rejected_drivers, статус не меняется.
        Своя accepted-поездка: назначение снимается, поездка снова requested.

        Raises:
            ForbiddenError: Водитель не одобрен или поездка принята другим водителем
            NotFoundError: Поездки нет
            ConflictError: Повторный отказ
            InvalidTransitionError: Поездка уже дальше accepted
        """
        await self.require_approved_driver(driver_id)

        ride = await self._rides.get_by_id(ride_id)
        if ride is None:
            raise NotFoundError("Поездка не найдена")

        if ride.status == RideStatus.REQUESTED:
            updated = await self._rides.add_rejected_driver(ride_id, driver_id)
        elif ride.status == RideStatus.ACCEPTED:
            if ride.driver_id != driver_id:
                raise ForbiddenError("Поездка назначена другому водителю")
            updated = await self._rides.release_driver(ride_id, driver_id)
        else:
            raise InvalidTransitionError(
                ride.status,
                RideStatus.REJECTED,
                f"Отказаться от поездки в статусе {ride.status.value} нельзя",
            )

        if updated is None:
            raise await self._explain_failed_reject(driver_id, ride_id)

        await log_info(f"Водитель {driver_id} отказался от поездки {ride_id}", type_msg=TypeMsg.INFO)
        return updated

    async def _explain_failed_reject(self, driver_id: str, ride_id: str) -> Exception:
        current = await self._rides.get_by_id(ride_id)
        if current is None:
            error: Exception = NotFoundError("Поездка не найдена")
        elif current.has_rejected(driver_id) and current.driver_id is None:
            error = ConflictError("Вы уже отказались от этой поездки")
        elif current.driver_id is not None and current.driver_id != driver_id:
            error = ForbiddenError("Поездка назначена другому водителю")
        else:
            error = InvalidTransitionError(current.status, RideStatus.REJECTED)

        await log_warning(f"Отказ водителя {driver_id} от поездки {ride_id} отклонён: {error}")
        return error
