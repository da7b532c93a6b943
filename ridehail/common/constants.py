# ridehail/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли пользователей."""
    RIDER = "rider"
    DRIVER = "driver"
    ADMIN = "admin"


class RideStatus(str, Enum):
    """Статусы поездки."""
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    # Зарезервирован под будущую обработку переполнения, переходов в него нет
    WAITLIST = "waitlist"


class RideType(str, Enum):
    """Классы поездки."""
    ECONOMY = "economy"
    PREMIUM = "premium"
    LUXURY = "luxury"


class PaymentMethod(str, Enum):
    """Способы оплаты."""
    CASH = "cash"
    CARD = "card"
    WALLET = "wallet"


class PaymentStatus(str, Enum):
    """Статусы оплаты."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class DriverApprovalStatus(str, Enum):
    """Статусы проверки водителя."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


# Активные поездки пассажира
RIDER_ACTIVE_STATUSES: frozenset[RideStatus] = frozenset({
    RideStatus.REQUESTED,
    RideStatus.ACCEPTED,
    RideStatus.PICKED_UP,
    RideStatus.IN_TRANSIT,
})

# Активные поездки водителя (requested ещё не занимает водителя)
DRIVER_ACTIVE_STATUSES: frozenset[RideStatus] = frozenset({
    RideStatus.ACCEPTED,
    RideStatus.PICKED_UP,
    RideStatus.IN_TRANSIT,
})

TERMINAL_STATUSES: frozenset[RideStatus] = frozenset({
    RideStatus.COMPLETED,
    RideStatus.CANCELLED,
    RideStatus.REJECTED,
    RideStatus.WAITLIST,
})

CANCELLABLE_STATUSES: frozenset[RideStatus] = frozenset({
    RideStatus.REQUESTED,
    RideStatus.ACCEPTED,
})
