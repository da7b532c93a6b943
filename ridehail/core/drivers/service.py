# ridehail/core/drivers/service.py
"""
Сервис доступности водителя.
Держит geo-индекс в согласии с флагом is_online и последней позицией.
"""

from __future__ import annotations

from ridehail.common.constants import TypeMsg
from ridehail.common.errors import ForbiddenError, NotFoundError
from ridehail.common.logger import log_error, log_info
from ridehail.core.drivers.models import DriverAvailability, EarningsSummary
from ridehail.core.drivers.repository import DriverRepository
from ridehail.core.geo.index import GeoIndex
from ridehail.core.rides.repository import RideRepository
from ridehail.infra.event_bus import DomainEvent, EventBus, EventTypes
from ridehail.shared.models.geo import GeoPoint


class DriverService:
    """Операции водителя вне жизненного цикла поездки."""

    def __init__(
        self,
        drivers: DriverRepository,
        rides: RideRepository,
        geo_index: GeoIndex,
        event_bus: EventBus,
    ) -> None:
        self._drivers = drivers
        self._rides = rides
        self._geo = geo_index
        self._event_bus = event_bus

    async def _require_driver(self, user_id: str) -> DriverAvailability:
        driver = await self._drivers.get_by_user_id(user_id)
        if driver is None:
            raise NotFoundError("Профиль водителя не найден")
        return driver

    async def set_availability(self, user_id: str, is_online: bool) -> DriverAvailability:
        """
        Выход на линию или уход с неё.

        Args:
            user_id: ID пользователя-водителя
            is_online: Новый флаг

        Returns:
            Обновлённый водитель

        Raises:
            NotFoundError: Нет профиля водителя
            ForbiddenError: Неодобренный водитель пытается выйти на линию
        """
        driver = await self._require_driver(user_id)
        if is_online and not driver.is_approved:
            raise ForbiddenError(
                "Выйти на линию может только одобренный водитель",
                details={"approval_status": driver.approval_status.value},
            )

        updated = await self._drivers.set_online(user_id, is_online)
        if updated is None:
            raise NotFoundError("Профиль водителя не найден")

        if is_online and updated.current_location is not None:
            await self._geo.upsert(user_id, updated.current_location)
        elif not is_online:
            await self._geo.remove(user_id)

        await log_info(
            f"Водитель {user_id} {'на линии' if is_online else 'ушёл с линии'}",
            type_msg=TypeMsg.INFO,
        )
        await self._publish(
            EventTypes.DRIVER_ONLINE if is_online else EventTypes.DRIVER_OFFLINE,
            {"driver_id": user_id},
        )
        return updated

    async def update_location(self, user_id: str, point: GeoPoint) -> DriverAvailability:
        """
        Сохраняет позицию водителя; на линии она попадает и в geo-индекс.

        Raises:
            NotFoundError: Нет профиля водителя
        """
        updated = await self._drivers.update_location(user_id, point)
        if updated is None:
            raise NotFoundError("Профиль водителя не найден")

        if updated.is_available:
            await self._geo.upsert(user_id, point)
        return updated

    async def earnings_summary(self, user_id: str) -> EarningsSummary:
        """Заработок, число завершённых поездок и рейтинг."""
        driver = await self._require_driver(user_id)
        completed = await self._rides.count_completed_by_driver(user_id)
        return EarningsSummary(
            earnings=driver.earnings,
            completed_rides=completed,
            rating=driver.rating,
        )

    async def _publish(self, event_type: str, payload: dict) -> None:
        try:
            await self._event_bus.publish(DomainEvent(event_type=event_type, payload=payload))
        except Exception as e:
            await log_error(f"Не удалось опубликовать {event_type}: {e}")
