# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")

from ridehail.common.constants import DriverApprovalStatus, PaymentMethod, RideType
from ridehail.config.loader import FareRate
from ridehail.core.drivers.models import DriverAvailability, DriverRating
from ridehail.core.drivers.service import DriverService
from ridehail.core.estimation.engine import EstimationEngine
from ridehail.core.matching.engine import MatchingEngine
from ridehail.core.ratings.aggregator import RatingAggregator
from ridehail.core.rides.models import RideRequestDTO
from ridehail.core.rides.service import RideService
from ridehail.core.settlement.engine import SettlementEngine
from ridehail.shared.models.geo import GeoPoint, Location
from tests.fakes import (
    FakeDatabase,
    FakeDriverRepository,
    FakeEventBus,
    FakeGeoIndex,
    FakeRideRepository,
)


PICKUP = GeoPoint(longitude=90.41, latitude=23.81)
DESTINATION = GeoPoint(longitude=90.40, latitude=23.75)


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Системные настройки",
        "PROJECT_NAME": "ridehail_test",
        "VERSION": "1.0.0-test",
        "DEBUG": False,
        "ENVIRONMENT": "test",
        "LOG_LEVEL": "INFO",
        "LOG_FORMAT": "json",
        "DB_HOST": "db.local",
        "DB_PORT": 5433,
        "DB_NAME": "ridehail_test",
        "DB_USER": "tester",
        "REDIS_HOST": "cache.local",
        "REDIS_NAMESPACE": "rh_test",
        "FARE_RATES": {
            "economy": {"base": 10, "per_km": 2, "minimum_fare": 15},
        },
        "AVERAGE_SPEED_KMH": 40,
        "CURRENCY": "EUR",
        "DEFAULT_SEARCH_RADIUS_KM": 5,
        "AUTO_MATCH_ON_REQUEST": False,
        "API_PORT": 9000,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2), encoding="utf-8")
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

class _TransactionContext:
    """Асинхронный контекст, отдающий мок соединения."""

    def __init__(self, conn: AsyncMock) -> None:
        self.conn = conn

    async def __aenter__(self) -> AsyncMock:
        return self.conn

    async def __aexit__(self, *exc: Any) -> bool:
        return False


@pytest.fixture
def mock_conn() -> AsyncMock:
    """Мок соединения транзакции."""
    conn = AsyncMock()
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.execute = AsyncMock(return_value="UPDATE 1")
    return conn


@pytest.fixture
def mock_db(mock_conn: AsyncMock) -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    db.transaction = MagicMock(return_value=_TransactionContext(mock_conn))
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.geoadd = AsyncMock(return_value=1)
    redis.georadius = AsyncMock(return_value=[])
    redis.georem = AsyncMock(return_value=1)
    redis.health_check = AsyncMock(return_value=True)
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=None)
    event_bus.is_connected = True
    return event_bus


# =============================================================================
# ФИКСТУРЫ СТРОК БД
# =============================================================================

@pytest.fixture
def sample_ride_row() -> dict[str, Any]:
    """Строка таблицы rides."""
    now = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
    return {
        "id": "ride-1",
        "rider_id": "rider-1",
        "driver_id": None,
        "driver_profile_id": None,
        "pickup_address": "Gulshan 1",
        "pickup_longitude": 90.41,
        "pickup_latitude": 23.81,
        "destination_address": "Dhanmondi 27",
        "destination_longitude": 90.40,
        "destination_latitude": 23.75,
        "status": "requested",
        "ride_type": "economy",
        "payment_method": "cash",
        "payment_status": "pending",
        "fare_estimated": 185.0,
        "fare_actual": None,
        "distance_estimated": 6.75,
        "distance_actual": None,
        "duration_estimated": 14,
        "duration_actual": None,
        "timeline": {"requested": now.isoformat()},
        "rejected_drivers": [],
        "rider_rating": None,
        "driver_rating": None,
        "feedback": None,
        "notes": None,
        "cancellation_reason": None,
        "cancelled_by": None,
        "created_at": now,
        "updated_at": now,
    }


@pytest.fixture
def sample_driver_row() -> dict[str, Any]:
    """Строка таблицы drivers."""
    now = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
    return {
        "id": "profile-1",
        "user_id": "driver-1",
        "approval_status": "approved",
        "is_online": True,
        "current_longitude": 90.41,
        "current_latitude": 23.80,
        "earnings_total": 1000.0,
        "earnings_this_month": 250.0,
        "rating_average": 4.5,
        "rating_count": 2,
        "created_at": now,
        "updated_at": now,
    }


# =============================================================================
# ДВИЖОК НА IN-MEMORY ХРАНИЛИЩАХ
# =============================================================================

def make_driver(
    user_id: str,
    point: Optional[GeoPoint] = None,
    *,
    approved: bool = True,
    online: bool = True,
    rating: Optional[DriverRating] = None,
) -> DriverAvailability:
    """Водитель с профилем profile-<user_id>."""
    return DriverAvailability(
        id=f"profile-{user_id}",
        user_id=user_id,
        approval_status=DriverApprovalStatus.APPROVED if approved else DriverApprovalStatus.PENDING,
        is_online=online,
        current_location=point,
        rating=rating or DriverRating(),
    )


def make_request(ride_type: RideType = RideType.ECONOMY) -> RideRequestDTO:
    """Запрос поездки из Gulshan в Dhanmondi."""
    return RideRequestDTO(
        pickup_location=Location(address="Gulshan 1", point=PICKUP),
        destination=Location(address="Dhanmondi 27", point=DESTINATION),
        ride_type=ride_type,
        payment_method=PaymentMethod.CASH,
    )


@pytest.fixture
def fare_rates() -> dict[str, FareRate]:
    return {
        "economy": FareRate(base=50, per_km=20, minimum_fare=100),
        "premium": FareRate(base=80, per_km=30, minimum_fare=150),
        "luxury": FareRate(base=120, per_km=40, minimum_fare=200),
    }


@pytest.fixture
def estimation(fare_rates: dict[str, FareRate]) -> EstimationEngine:
    return EstimationEngine(rates=fare_rates, average_speed_kmh=30, currency="BDT")


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def ride_repo() -> FakeRideRepository:
    return FakeRideRepository()


@pytest.fixture
def driver_repo() -> FakeDriverRepository:
    return FakeDriverRepository()


@pytest.fixture
def geo_index() -> FakeGeoIndex:
    return FakeGeoIndex()


@pytest.fixture
def event_bus() -> FakeEventBus:
    return FakeEventBus()


@pytest.fixture
def matching(
    ride_repo: FakeRideRepository,
    driver_repo: FakeDriverRepository,
    geo_index: FakeGeoIndex,
) -> MatchingEngine:
    return MatchingEngine(ride_repo, driver_repo, geo_index, default_radius_km=10, max_candidates=10)


@pytest.fixture
def settlement(
    fake_db: FakeDatabase,
    ride_repo: FakeRideRepository,
    driver_repo: FakeDriverRepository,
) -> SettlementEngine:
    return SettlementEngine(fake_db, ride_repo, driver_repo)


@pytest.fixture
def ratings(
    fake_db: FakeDatabase,
    ride_repo: FakeRideRepository,
    driver_repo: FakeDriverRepository,
) -> RatingAggregator:
    return RatingAggregator(fake_db, ride_repo, driver_repo)


@pytest.fixture
def ride_service_factory(
    ride_repo: FakeRideRepository,
    estimation: EstimationEngine,
    matching: MatchingEngine,
    settlement: SettlementEngine,
    ratings: RatingAggregator,
    event_bus: FakeEventBus,
):
    """Сервис поездок с выбором автоподбора."""
    def factory(auto_match: bool = False) -> RideService:
        return RideService(
            rides=ride_repo,
            estimation=estimation,
            matching=matching,
            settlement=settlement,
            ratings=ratings,
            event_bus=event_bus,
            auto_match=auto_match,
        )
    return factory


@pytest.fixture
def ride_service(ride_service_factory) -> RideService:
    """Сервис поездок без автоподбора."""
    return ride_service_factory(auto_match=False)


@pytest.fixture
def driver_service(
    driver_repo: FakeDriverRepository,
    ride_repo: FakeRideRepository,
    geo_index: FakeGeoIndex,
    event_bus: FakeEventBus,
) -> DriverService:
    return DriverService(driver_repo, ride_repo, geo_index, event_bus)


async def complete_ride(
    service: RideService,
    driver_repo: FakeDriverRepository,
    rider_id: str = "rider-1",
    driver_id: str = "driver-1",
):
    """Проводит поездку от запроса до completed."""
    from ridehail.common.constants import RideStatus, UserRole

    if driver_id not in driver_repo.drivers:
        driver_repo.add(make_driver(driver_id))
    ride = await service.request_ride(rider_id, make_request())
    await service.accept_ride(driver_id, ride.id)
    for status in (RideStatus.PICKED_UP, RideStatus.IN_TRANSIT, RideStatus.COMPLETED):
        ride = await service.update_status(driver_id, UserRole.DRIVER, ride.id, status)
    return ride
