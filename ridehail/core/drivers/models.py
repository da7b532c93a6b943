# ridehail/core/drivers/models.py
"""
Модели водителя, используемые движком поездок.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ridehail.common.constants import DriverApprovalStatus
from ridehail.shared.models.geo import GeoPoint


class DriverEarnings(BaseModel):
    """Заработок водителя (пополняется только при завершении поездки)."""
    total: float = Field(0.0, ge=0.0)
    this_month: float = Field(0.0, ge=0.0)


class DriverRating(BaseModel):
    """Средняя оценка водителя."""
    average: float = Field(0.0, ge=0.0, le=5.0)
    count: int = Field(0, ge=0)


class DriverAvailability(BaseModel):
    """Состояние водителя, которое нужно подбору и расчётам."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="ID профиля водителя")
    user_id: str = Field(..., description="ID пользователя")
    approval_status: DriverApprovalStatus = DriverApprovalStatus.PENDING
    is_online: bool = False
    current_location: Optional[GeoPoint] = None
    earnings: DriverEarnings = Field(default_factory=DriverEarnings)
    rating: DriverRating = Field(default_factory=DriverRating)

    @property
    def is_approved(self) -> bool:
        return self.approval_status == DriverApprovalStatus.APPROVED

    @property
    def is_available(self) -> bool:
        """Одобрен и на линии. Наличие активной поездки проверяется отдельно."""
        return self.is_approved and self.is_online


class DriverSummary(BaseModel):
    """Водитель в результатах поиска рядом с точкой."""
    driver_id: str
    user_id: str
    distance_km: float
    location: Optional[GeoPoint] = None
    rating: DriverRating


class EarningsSummary(BaseModel):
    """Сводка заработка водителя."""
    earnings: DriverEarnings
    completed_rides: int
    rating: DriverRating


class AvailabilityDTO(BaseModel):
    """Выход на линию / уход с линии."""
    is_online: bool


class LocationUpdateDTO(BaseModel):
    """Текущая позиция водителя."""
    longitude: float = Field(..., ge=-180.0, le=180.0)
    latitude: float = Field(..., ge=-90.0, le=90.0)

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(longitude=self.longitude, latitude=self.latitude)
