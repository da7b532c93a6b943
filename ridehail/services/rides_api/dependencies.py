# ridehail/services/rides_api/dependencies.py
"""
Зависимости для Rides API.
Собирает движок поездок из инфраструктурных клиентов.
"""

from __future__ import annotations

from typing import Optional

from ridehail.common.constants import TypeMsg
from ridehail.common.logger import log_info
from ridehail.core.drivers.repository import DriverRepository
from ridehail.core.drivers.service import DriverService
from ridehail.core.estimation.engine import EstimationEngine
from ridehail.core.geo.index import GeoIndex
from ridehail.core.matching.engine import MatchingEngine
from ridehail.core.ratings.aggregator import RatingAggregator
from ridehail.core.rides.repository import RideRepository
from ridehail.core.rides.service import RideService
from ridehail.core.settlement.engine import SettlementEngine
from ridehail.infra.database import DatabaseManager, apply_migrations
from ridehail.infra.event_bus import EventBus
from ridehail.infra.redis_client import RedisClient


_db: Optional[DatabaseManager] = None
_redis: Optional[RedisClient] = None
_event_bus: Optional[EventBus] = None
_ride_service: Optional[RideService] = None
_driver_service: Optional[DriverService] = None


def build_services(
    db: DatabaseManager,
    redis: RedisClient,
    event_bus: EventBus,
) -> tuple[RideService, DriverService]:
    """
    Собирает сервисы с явной передачей зависимостей.

    Returns:
        (RideService, DriverService)
    """
    rides = RideRepository(db)
    drivers = DriverRepository(db)
    geo_index = GeoIndex(redis)

    matching = MatchingEngine(rides, drivers, geo_index)
    ride_service = RideService(
        rides=rides,
        estimation=EstimationEngine(),
        matching=matching,
        settlement=SettlementEngine(db, rides, drivers),
        ratings=RatingAggregator(db, rides, drivers),
        event_bus=event_bus,
    )
    driver_service = DriverService(drivers, rides, geo_index, event_bus)
    return ride_service, driver_service


async def init_dependencies() -> None:
    """Инициализация всех зависимостей сервиса."""
    global _db, _redis, _event_bus, _ride_service, _driver_service

    _db = DatabaseManager()
    await _db.connect()
    await apply_migrations(_db)
    await log_info("PostgreSQL подключён", type_msg=TypeMsg.DEBUG)

    _redis = RedisClient()
    await _redis.connect()
    await log_info("Redis подключён", type_msg=TypeMsg.DEBUG)

    _event_bus = EventBus()
    await _event_bus.connect()
    await log_info("RabbitMQ подключён", type_msg=TypeMsg.DEBUG)

    _ride_service, _driver_service = build_services(_db, _redis, _event_bus)

    await log_info("Rides API инициализирован", type_msg=TypeMsg.INFO)


async def close_dependencies() -> None:
    """Закрытие всех ресурсов."""
    global _db, _redis, _event_bus, _ride_service, _driver_service

    if _event_bus:
        await _event_bus.disconnect()
    if _redis:
        await _redis.disconnect()
    if _db:
        await _db.disconnect()

    _db = _redis = _event_bus = None
    _ride_service = _driver_service = None


async def get_db() -> DatabaseManager:
    if _db is None:
        raise RuntimeError("DatabaseManager не инициализирован")
    return _db


async def get_redis() -> RedisClient:
    if _redis is None:
        raise RuntimeError("RedisClient не инициализирован")
    return _redis


async def get_event_bus() -> EventBus:
    if _event_bus is None:
        raise RuntimeError("EventBus не инициализирован")
    return _event_bus


async def get_ride_service() -> RideService:
    if _ride_service is None:
        raise RuntimeError("RideService не инициализирован")
    return _ride_service


async def get_driver_service() -> DriverService:
    if _driver_service is None:
        raise RuntimeError("DriverService не инициализирован")
    return _driver_service
