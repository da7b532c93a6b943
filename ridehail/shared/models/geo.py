# ridehail/shared/models/geo.py
"""
Географические значения: точка и адресная локация.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GeoPoint(BaseModel):
    """Точка на сфере. Порядок координат как в GeoJSON: долгота, широта."""

    longitude: float = Field(..., ge=-180.0, le=180.0, description="Долгота")
    latitude: float = Field(..., ge=-90.0, le=90.0, description="Широта")

    @classmethod
    def from_coordinates(cls, coordinates: list[float] | tuple[float, float]) -> "GeoPoint":
        """Создаёт точку из пары [lon, lat]."""
        lon, lat = coordinates
        return cls(longitude=lon, latitude=lat)

    @property
    def coordinates(self) -> tuple[float, float]:
        """Пара (lon, lat)."""
        return (self.longitude, self.latitude)


class Location(BaseModel):
    """Адрес в свободной форме и его координаты."""

    address: str = Field(..., min_length=1, max_length=500, description="Адрес")
    point: GeoPoint = Field(..., description="Координаты")
