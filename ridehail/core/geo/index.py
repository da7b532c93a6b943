# ridehail/core/geo/index.py
"""
Geo-индекс водителей на базе Redis GEO.
Отвечает на запрос «ближайшие N водителей в радиусе R».
"""

from __future__ import annotations

from dataclasses import dataclass

from ridehail.common.constants import TypeMsg
from ridehail.common.logger import log_info
from ridehail.infra.redis_client import RedisClient
from ridehail.shared.models.geo import GeoPoint


DRIVERS_GEO_KEY = "drivers:locations"


@dataclass(frozen=True)
class GeoHit:
    """Водитель из geo-индекса и расстояние до точки запроса."""
    user_id: str
    distance_km: float


class GeoIndex:
    """
    Индекс позиций водителей.
    Участник индекса — user_id водителя.
    """

    def __init__(self, redis: RedisClient, key: str = DRIVERS_GEO_KEY) -> None:
        """
        Args:
            redis: Клиент Redis
            key: Ключ geo-множества (без namespace)
        """
        self._redis = redis
        self._key = key

    async def upsert(self, user_id: str, point: GeoPoint) -> None:
        """Добавляет или перемещает водителя в индексе."""
        await self._redis.geoadd(self._key, point.longitude, point.latitude, str(user_id))

    async def remove(self, user_id: str) -> None:
        """Убирает водителя из индекса."""
        await self._redis.georem(self._key, str(user_id))

    async def nearest(
        self,
        center: GeoPoint,
        radius_km: float,
        count: int | None = None,
    ) -> list[GeoHit]:
        """
        Ищет водителей в радиусе от точки.

        Args:
            center: Центр поиска
            radius_km: Радиус поиска в км
            count: Максимальное количество результатов

        Returns:
            Попадания, отсортированные по возрастанию расстояния
        """
        results = await self._redis.georadius(
            self._key,
            center.longitude,
            center.latitude,
            radius_km,
            unit="km",
            count=count,
            sort="ASC",
        )
        hits = [GeoHit(user_id=member, distance_km=round(distance, 2)) for member, distance in results]

        await log_info(
            f"Geo-индекс: {len(hits)} водителей в радиусе {radius_km} км",
            type_msg=TypeMsg.DEBUG,
        )
        return hits
