# ridehail/core/rides/models.py
"""
Модели данных поездок и DTO операций.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from ridehail.common.constants import (
    CANCELLABLE_STATUSES,
    DRIVER_ACTIVE_STATUSES,
    RIDER_ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    PaymentMethod,
    PaymentStatus,
    RideStatus,
    RideType,
    UserRole,
)
from ridehail.shared.models.geo import GeoPoint, Location


def utcnow() -> datetime:
    """Текущее время в UTC."""
    return datetime.now(timezone.utc)


class MoneyPair(BaseModel):
    """Оценка и факт стоимости."""
    estimated: float = Field(..., ge=0.0)
    actual: Optional[float] = Field(None, ge=0.0)


class DistancePair(BaseModel):
    """Оценка и факт расстояния (км)."""
    estimated: float = Field(..., ge=0.0)
    actual: Optional[float] = Field(None, ge=0.0)


class DurationPair(BaseModel):
    """Оценка и факт длительности (мин)."""
    estimated: int = Field(..., ge=0)
    actual: Optional[int] = Field(None, ge=0)


class RideRating(BaseModel):
    """Оценки по поездке: каждая выставляется не более одного раза."""
    rider_rating: Optional[int] = Field(None, ge=1, le=5, description="Оценка пассажира водителем")
    driver_rating: Optional[int] = Field(None, ge=1, le=5, description="Оценка водителя пассажиром")

    @property
    def is_rated(self) -> bool:
        return self.rider_rating is not None or self.driver_rating is not None


class Ride(BaseModel):
    """Модель поездки."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()), description="UUID поездки")
    rider_id: str = Field(..., description="ID пассажира")
    driver_id: Optional[str] = Field(None, description="ID пользователя-водителя")
    driver_profile_id: Optional[str] = Field(None, description="ID профиля водителя")

    pickup_location: Location
    destination: Location

    status: RideStatus = RideStatus.REQUESTED
    ride_type: RideType = RideType.ECONOMY
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_status: PaymentStatus = PaymentStatus.PENDING

    fare: MoneyPair
    distance: DistancePair
    duration: DurationPair

    # milestone -> время; заполняется только вперёд
    timeline: dict[str, datetime] = Field(default_factory=dict)
    rejected_drivers: list[str] = Field(default_factory=list)

    rating: RideRating = Field(default_factory=RideRating)
    feedback: Optional[str] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[UserRole] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        """Активна ли поездка для пассажира."""
        return self.status in RIDER_ACTIVE_STATUSES

    @property
    def holds_driver(self) -> bool:
        """Занимает ли поездка водителя."""
        return self.status in DRIVER_ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def can_be_cancelled(self) -> bool:
        """Отмена возможна только до посадки."""
        return self.status in CANCELLABLE_STATUSES

    def has_rejected(self, driver_id: str) -> bool:
        return driver_id in self.rejected_drivers


class RideDraft(BaseModel):
    """Поля новой поездки до записи в хранилище."""

    rider_id: str
    pickup_location: Location
    destination: Location
    ride_type: RideType
    payment_method: PaymentMethod
    fare: float
    distance_km: float
    duration_min: int
    notes: Optional[str] = None

    def to_ride(
        self,
        *,
        driver_id: Optional[str] = None,
        driver_profile_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Ride:
        """
        Собирает поездку. С водителем поездка сразу создаётся в accepted,
        и timeline получает обе отметки одним временем.
        """
        now = now or utcnow()
        timeline = {RideStatus.REQUESTED.value: now}
        status = RideStatus.REQUESTED
        if driver_id is not None:
            status = RideStatus.ACCEPTED
            timeline[RideStatus.ACCEPTED.value] = now

        return Ride(
            rider_id=self.rider_id,
            driver_id=driver_id,
            driver_profile_id=driver_profile_id,
            pickup_location=self.pickup_location,
            destination=self.destination,
            status=status,
            ride_type=self.ride_type,
            payment_method=self.payment_method,
            fare=MoneyPair(estimated=self.fare),
            distance=DistancePair(estimated=self.distance_km),
            duration=DurationPair(estimated=self.duration_min),
            timeline=timeline,
            notes=self.notes,
            created_at=now,
            updated_at=now,
        )


# =============================================================================
# DTO ОПЕРАЦИЙ
# =============================================================================

class FareEstimateRequest(BaseModel):
    """Запрос предварительной оценки стоимости."""
    pickup: GeoPoint
    destination: GeoPoint
    ride_type: RideType = RideType.ECONOMY


class RideRequestDTO(BaseModel):
    """Запрос поездки пассажиром."""
    pickup_location: Location
    destination: Location
    ride_type: RideType = RideType.ECONOMY
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = Field(None, max_length=500)


class StatusUpdateDTO(BaseModel):
    """Смена статуса поездки."""
    status: RideStatus


class CancelRideDTO(BaseModel):
    """Отмена поездки пассажиром."""
    reason: Optional[str] = Field(None, max_length=500)


class RateRideDTO(BaseModel):
    """Оценка водителя после поездки."""
    # Диапазон 1..5 проверяет RatingAggregator
    rating: int
    feedback: Optional[str] = Field(None, max_length=1000)


class NearbyDriversQuery(BaseModel):
    """Поиск водителей рядом с точкой."""
    longitude: float = Field(..., ge=-180.0, le=180.0)
    latitude: float = Field(..., ge=-90.0, le=90.0)
    radius_km: Optional[float] = Field(None, gt=0.0, le=100.0)

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(longitude=self.longitude, latitude=self.latitude)
