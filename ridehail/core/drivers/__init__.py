# ridehail/core/drivers/__init__.py
"""
Домен водителей: доступность, позиция, заработок и рейтинг.
"""

from ridehail.core.drivers.models import (
    AvailabilityDTO,
    DriverAvailability,
    DriverEarnings,
    DriverRating,
    DriverSummary,
    EarningsSummary,
    LocationUpdateDTO,
)
from ridehail.core.drivers.repository import DriverRepository
from ridehail.core.drivers.service import DriverService

__all__ = [
    "AvailabilityDTO",
    "DriverAvailability",
    "DriverEarnings",
    "DriverRating",
    "DriverSummary",
    "EarningsSummary",
    "LocationUpdateDTO",
    "DriverRepository",
    "DriverService",
]
