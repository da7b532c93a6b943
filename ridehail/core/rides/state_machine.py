# ridehail/core/rides/state_machine.py
"""
Машина состояний поездки.
Таблица допустимых переходов с ролями и имена отметок timeline.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ridehail.common.constants import (
    CANCELLABLE_STATUSES,
    DRIVER_ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    RideStatus,
    UserRole,
)
from ridehail.common.errors import ForbiddenError, InvalidTransitionError
from ridehail.core.rides.models import Ride, utcnow


@dataclass(frozen=True)
class TransitionRule:
    """Правило перехода: кто может его выполнить."""
    roles: frozenset[UserRole]
    # Водитель должен быть назначен на поездку
    assigned_driver_only: bool = False


@dataclass(frozen=True)
class Transition:
    """Проверенный переход, готовый к записи условным обновлением."""
    from_status: RideStatus
    to_status: RideStatus
    milestone: str
    at: datetime
    actor_role: UserRole
    cancelled_by: Optional[UserRole] = None
    forced: bool = False
    # Водитель на момент проверки; запись применяется, только пока он тот же
    driver_id: Optional[str] = None


_DRIVER = frozenset({UserRole.DRIVER})
_RIDER = frozenset({UserRole.RIDER})


class RideStateMachine:
    """Правила жизненного цикла поездки."""

    TRANSITIONS: dict[tuple[RideStatus, RideStatus], TransitionRule] = {
        (RideStatus.REQUESTED, RideStatus.ACCEPTED): TransitionRule(_DRIVER),
        (RideStatus.REQUESTED, RideStatus.REJECTED): TransitionRule(frozenset({UserRole.DRIVER, UserRole.RIDER})),
        (RideStatus.REQUESTED, RideStatus.CANCELLED): TransitionRule(_RIDER),
        (RideStatus.ACCEPTED, RideStatus.PICKED_UP): TransitionRule(_DRIVER, assigned_driver_only=True),
        (RideStatus.ACCEPTED, RideStatus.CANCELLED): TransitionRule(_RIDER),
        (RideStatus.ACCEPTED, RideStatus.REJECTED): TransitionRule(_DRIVER, assigned_driver_only=True),
        (RideStatus.PICKED_UP, RideStatus.IN_TRANSIT): TransitionRule(_DRIVER, assigned_driver_only=True),
        (RideStatus.IN_TRANSIT, RideStatus.COMPLETED): TransitionRule(_DRIVER, assigned_driver_only=True),
    }

    @staticmethod
    def milestone_name(status: RideStatus) -> str:
        """Ключ timeline для статуса: in_transit пишется как inTransit."""
        if status == RideStatus.IN_TRANSIT:
            return "inTransit"
        return status.value

    @staticmethod
    def can_be_cancelled(status: RideStatus) -> bool:
        return status in CANCELLABLE_STATUSES

    @classmethod
    def can_transition(cls, from_status: RideStatus, to_status: RideStatus) -> bool:
        """Есть ли переход в таблице (без учёта ролей)."""
        return (from_status, to_status) in cls.TRANSITIONS

    @classmethod
    def plan(
        cls,
        ride: Ride,
        to_status: RideStatus,
        role: UserRole,
        actor_id: str,
        now: Optional[datetime] = None,
    ) -> Transition:
        """
        Проверяет переход и возвращает его описание.

        Args:
            ride: Текущее состояние поездки
            to_status: Целевой статус
            role: Роль вызывающего
            actor_id: ID вызывающего
            now: Время отметки

        Returns:
            Проверенный переход

        Raises:
            InvalidTransitionError: Перехода нет в таблице
            ForbiddenError: Переход есть, но роль или владение не подходят
        """
        from_status = ride.status
        at = now or utcnow()
        cancelled_by = role if to_status == RideStatus.CANCELLED else None

        if role == UserRole.ADMIN:
            cls._ensure_admin_override(ride, to_status)
            return Transition(
                from_status=from_status,
                to_status=to_status,
                milestone=cls.milestone_name(to_status),
                at=at,
                actor_role=role,
                cancelled_by=cancelled_by,
                forced=not cls.can_transition(from_status, to_status),
                driver_id=ride.driver_id,
            )

        rule = cls.TRANSITIONS.get((from_status, to_status))
        if rule is None:
            raise InvalidTransitionError(from_status, to_status)

        if role not in rule.roles:
            raise ForbiddenError(
                f"Роль {role.value} не может перевести поездку в {to_status.value}",
                details={"from": from_status.value, "to": to_status.value, "role": role.value},
            )

        if role == UserRole.RIDER and ride.rider_id != actor_id:
            raise ForbiddenError("Поездка принадлежит другому пассажиру")

        if rule.assigned_driver_only and ride.driver_id != actor_id:
            raise ForbiddenError("Поездка назначена другому водителю")

        return Transition(
            from_status=from_status,
            to_status=to_status,
            milestone=cls.milestone_name(to_status),
            at=at,
            actor_role=role,
            cancelled_by=cancelled_by,
            driver_id=ride.driver_id,
        )

    @staticmethod
    def _ensure_admin_override(ride: Ride, to_status: RideStatus) -> None:
        from_status = ride.status
        # Администратор обходит таблицу, но не выводит поездку из терминального статуса
        if from_status in TERMINAL_STATUSES:
            raise InvalidTransitionError(from_status, to_status)
        if to_status == from_status or to_status == RideStatus.WAITLIST:
            raise InvalidTransitionError(from_status, to_status)
        if to_status in DRIVER_ACTIVE_STATUSES and ride.driver_id is None:
            raise InvalidTransitionError(
                from_status, to_status, "Нельзя перевести поездку без водителя в статус с водителем"
            )
