# ridehail/core/rides/__init__.py
"""
Домен поездок.
Модели, машина состояний и репозиторий.
"""

from ridehail.core.rides.models import (
    CancelRideDTO,
    FareEstimateRequest,
    NearbyDriversQuery,
    RateRideDTO,
    Ride,
    RideRequestDTO,
    StatusUpdateDTO,
)
from ridehail.core.rides.repository import RideRepository
from ridehail.core.rides.state_machine import RideStateMachine, Transition

__all__ = [
    "CancelRideDTO",
    "FareEstimateRequest",
    "NearbyDriversQuery",
    "RateRideDTO",
    "Ride",
    "RideRequestDTO",
    "StatusUpdateDTO",
    "RideRepository",
    "RideStateMachine",
    "Transition",
]
