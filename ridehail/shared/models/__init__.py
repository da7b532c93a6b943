# ridehail/shared/models/__init__.py
"""
Общие DTO и Pydantic-модели.
"""

from ridehail.shared.models.common import (
    ErrorResponse,
    HealthStatus,
    PaginatedResponse,
    PaginationParams,
)
from ridehail.shared.models.geo import GeoPoint, Location

__all__ = [
    "ErrorResponse",
    "HealthStatus",
    "PaginatedResponse",
    "PaginationParams",
    "GeoPoint",
    "Location",
]
