# ridehail/core/estimation/engine.py
"""
Оценка поездки по прямой: расстояние (haversine), время и стоимость.
Чистые функции без ввода-вывода.
"""

from __future__ import annotations

import math
from typing import Optional

from pydantic import BaseModel, Field

from ridehail.common.constants import RideType
from ridehail.common.errors import ValidationError
from ridehail.config.loader import FareRate
from ridehail.shared.models.geo import GeoPoint


EARTH_RADIUS_KM = 6371.0


class FareEstimate(BaseModel):
    """Результат оценки поездки."""

    ride_type: str
    distance_km: float = Field(..., ge=0.0)
    duration_min: int = Field(..., ge=0)
    fare: float = Field(..., ge=0.0)
    currency: str


def round_half_up(value: float, ndigits: int = 0) -> float:
    """
    Округление с половиной вверх (0.5 -> 1), в отличие от банковского round().

    Args:
        value: Число
        ndigits: Количество знаков после запятой

    Returns:
        Округлённое значение
    """
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def haversine_km(origin: GeoPoint, target: GeoPoint) -> float:
    """Расстояние по дуге большого круга в километрах, без округления."""
    lat1 = math.radians(origin.latitude)
    lat2 = math.radians(target.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(target.longitude - origin.longitude)

    a = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


class EstimationEngine:
    """
    Калькулятор оценки поездки.
    Тарифы берутся из конфигурации, если не переданы явно.
    """

    def __init__(
        self,
        rates: Optional[dict[str, FareRate]] = None,
        average_speed_kmh: Optional[float] = None,
        currency: Optional[str] = None,
    ) -> None:
        if rates is None or average_speed_kmh is None or currency is None:
            from ridehail.config import settings

            rates = rates if rates is not None else settings.fares.FARE_RATES
            average_speed_kmh = average_speed_kmh or settings.fares.AVERAGE_SPEED_KMH
            currency = currency or settings.fares.CURRENCY

        self._rates = rates
        self._speed = average_speed_kmh
        self._currency = currency

    def distance_km(self, pickup: GeoPoint, destination: GeoPoint) -> float:
        """Расстояние, округлённое до 2 знаков."""
        return round_half_up(haversine_km(pickup, destination), 2)

    def duration_min(self, distance_km: float) -> int:
        """Время в минутах при средней городской скорости."""
        return int(round_half_up(distance_km / self._speed * 60))

    def fare(self, distance_km: float, ride_type: RideType | str) -> float:
        """
        Стоимость по тарифу класса поездки, не ниже минимальной.

        Raises:
            ValidationError: Неизвестный класс поездки
        """
        key = getattr(ride_type, "value", ride_type)
        rate = self._rates.get(key)
        if rate is None:
            raise ValidationError(f"Неизвестный класс поездки: {key}", details={"ride_type": key})

        return max(round_half_up(rate.base + distance_km * rate.per_km), rate.minimum_fare)

    def estimate(
        self,
        pickup: GeoPoint,
        destination: GeoPoint,
        ride_type: RideType | str,
    ) -> FareEstimate:
        """
        Оценивает поездку между двумя точками.

        Args:
            pickup: Точка посадки
            destination: Точка назначения
            ride_type: Класс поездки

        Returns:
            Расстояние, время и стоимость
        """
        for point in (pickup, destination):
            if not (math.isfinite(point.longitude) and math.isfinite(point.latitude)):
                raise ValidationError("Некорректные координаты")

        distance = self.distance_km(pickup, destination)
        fare = self.fare(distance, ride_type)
        return FareEstimate(
            ride_type=getattr(ride_type, "value", ride_type),
            distance_km=distance,
            duration_min=self.duration_min(distance),
            fare=fare,
            currency=self._currency,
        )
