# ridehail/core/rides/service.py
"""
Сервис поездок.
Единая точка входа для операций над поездкой: связывает оценку,
машину состояний, подбор, расчёт и оценки.
"""

from __future__ import annotations

from typing import Any, Optional

from ridehail.common.constants import RideStatus, RideType, TypeMsg, UserRole
from ridehail.common.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
)
from ridehail.common.logger import log_error, log_info, log_warning
from ridehail.core.drivers.models import DriverSummary
from ridehail.core.estimation.engine import EstimationEngine, FareEstimate
from ridehail.core.matching.engine import MatchingEngine
from ridehail.core.ratings.aggregator import RatingAggregator
from ridehail.core.rides.models import Ride, RideDraft, RideRequestDTO, utcnow
from ridehail.core.rides.repository import DRIVER_ACTIVE_INDEX, RideRepository
from ridehail.core.rides.state_machine import RideStateMachine, Transition
from ridehail.core.settlement.engine import SettlementEngine
from ridehail.infra.event_bus import DomainEvent, EventBus, EventTypes
from ridehail.shared.models.common import PaginatedResponse, PaginationParams
from ridehail.shared.models.geo import GeoPoint


DEFAULT_CANCELLATION_REASON = "Отменена пассажиром"


class RideService:
    """
    Сервис поездок.
    Управляет жизненным циклом поездки.
    """

    def __init__(
        self,
        rides: RideRepository,
        estimation: EstimationEngine,
        matching: MatchingEngine,
        settlement: SettlementEngine,
        ratings: RatingAggregator,
        event_bus: EventBus,
        auto_match: Optional[bool] = None,
    ) -> None:
        """
        Args:
            rides: Репозиторий поездок
            estimation: Оценка стоимости
            matching: Подбор водителей
            settlement: Расчёт при завершении
            ratings: Приём оценок
            event_bus: Шина событий
            auto_match: Автоподбор при создании (из конфига если None)
        """
        if auto_match is None:
            from ridehail.config import settings
            auto_match = settings.matching.AUTO_MATCH_ON_REQUEST

        self._rides = rides
        self._estimation = estimation
        self._matching = matching
        self._settlement = settlement
        self._ratings = ratings
        self._event_bus = event_bus
        self._auto_match = auto_match

    # =========================================================================
    # ОЦЕНКА И ПОИСК
    # =========================================================================

    def estimate_fare(
        self,
        pickup: GeoPoint,
        destination: GeoPoint,
        ride_type: RideType,
    ) -> FareEstimate:
        """Предварительная оценка поездки без создания."""
        return self._estimation.estimate(pickup, destination, ride_type)

    async def find_nearby_drivers(
        self,
        point: GeoPoint,
        radius_km: Optional[float] = None,
    ) -> list[DriverSummary]:
        """Одобренные водители на линии рядом с точкой."""
        return await self._matching.find_nearby_drivers(point, radius_km)

    # =========================================================================
    # СОЗДАНИЕ
    # =========================================================================

    async def request_ride(self, rider_id: str, dto: RideRequestDTO) -> Ride:
        """
        Пассажир запрашивает поездку.
        При включённом автоподборе поездка сразу создаётся в accepted
        с ближайшим свободным водителем.

        Args:
            rider_id: ID пассажира
            dto: Параметры поездки

        Returns:
            Созданная поездка

        Raises:
            ConflictError: У пассажира уже есть активная поездка
        """
        active = await self._rides.get_active_by_rider(rider_id)
        if active is not None:
            await log_warning(f"Пассажир {rider_id} уже имеет активную поездку {active.id}")
            raise ConflictError(
                "У вас уже есть активная поездка",
                details={"active_ride_id": active.id},
            )

        estimate = self._estimation.estimate(
            dto.pickup_location.point,
            dto.destination.point,
            dto.ride_type,
        )
        draft = RideDraft(
            rider_id=rider_id,
            pickup_location=dto.pickup_location,
            destination=dto.destination,
            ride_type=dto.ride_type,
            payment_method=dto.payment_method,
            fare=estimate.fare,
            distance_km=estimate.distance_km,
            duration_min=estimate.duration_min,
            notes=dto.notes,
        )

        ride = None
        if self._auto_match:
            ride = await self._create_auto_matched(draft)
        if ride is None:
            ride = await self._rides.create(draft.to_ride())

        await log_info(
            f"Поездка {ride.id} создана пассажиром {rider_id}: {ride.status.value}, "
            f"{ride.distance.estimated} км, {ride.fare.estimated}",
            type_msg=TypeMsg.INFO,
        )
        await self._publish(EventTypes.RIDE_REQUESTED, ride)
        if ride.status == RideStatus.ACCEPTED:
            await self._publish(EventTypes.RIDE_ACCEPTED, ride)
        return ride

    async def _create_auto_matched(self, draft: RideDraft) -> Optional[Ride]:
        candidates = await self._matching.find_auto_match_candidates(draft.pickup_location.point)
        for candidate in candidates:
            try:
                return await self._rides.create(
                    draft.to_ride(
                        driver_id=candidate.driver.user_id,
                        driver_profile_id=candidate.driver.id,
                    )
                )
            except ConflictError as e:
                # Кандидата заняли параллельно, пробуем следующего
                if e.details.get("constraint") != DRIVER_ACTIVE_INDEX:
                    raise
                await log_info(
                    f"Кандидат {candidate.driver.user_id} занят, берём следующего",
                    type_msg=TypeMsg.DEBUG,
                )
        return None

    # =========================================================================
    # ПОДБОР
    # =========================================================================

    async def accept_ride(self, driver_id: str, ride_id: str) -> Ride:
        """Водитель принимает открытую поездку."""
        ride = await self._matching.accept_ride(driver_id, ride_id)
        await self._publish(EventTypes.RIDE_ACCEPTED, ride)
        return ride

    async def reject_ride(self, driver_id: str, ride_id: str) -> Ride:
        """Водитель отказывается от поездки или освобождает принятую."""
        ride = await self._matching.reject_ride(driver_id, ride_id)
        await self._publish(EventTypes.RIDE_REJECTED, ride, extra={"rejected_by": driver_id})
        return ride

    # =========================================================================
    # СТАТУСЫ
    # =========================================================================

    async def update_status(
        self,
        actor_id: str,
        role: UserRole,
        ride_id: str,
        new_status: RideStatus,
    ) -> Ride:
        """
        Смена статуса по таблице переходов; администратор её обходит.

        Args:
            actor_id: ID вызывающего
            role: Роль вызывающего
            ride_id: UUID поездки
            new_status: Целевой статус

        Returns:
            Обновлённая поездка

        Raises:
            NotFoundError: Поездки нет
            InvalidTransitionError: Перехода нет в таблице или статус изменился
            ForbiddenError: Роль или владение не подходят (в том числе после переназначения)
            ConflictError: Водитель сменился до записи перехода администратора
        """
        ride = await self._rides.get_by_id(ride_id)
        if ride is None:
            raise NotFoundError("Поездка не найдена")

        if role == UserRole.DRIVER and new_status == RideStatus.ACCEPTED:
            return await self.accept_ride(actor_id, ride_id)

        # Отказ от открытой поездки не закрывает её: водитель только выбывает из кандидатов
        if role == UserRole.DRIVER and new_status == RideStatus.REJECTED and ride.status == RideStatus.REQUESTED:
            return await self.reject_ride(actor_id, ride_id)

        transition = RideStateMachine.plan(ride, new_status, role, actor_id)
        if transition.forced:
            await log_warning(
                f"Администратор {actor_id} принудительно переводит поездку {ride_id}: "
                f"{ride.status.value} -> {new_status.value}"
            )

        if new_status == RideStatus.COMPLETED:
            updated = await self._settlement.settle(ride_id, transition)
            await self._publish(EventTypes.RIDE_COMPLETED, updated)
            return updated

        rejected_driver_id = actor_id if role == UserRole.DRIVER and new_status == RideStatus.REJECTED else None
        updated = await self._rides.apply_transition(
            ride_id,
            transition,
            rejected_driver_id=rejected_driver_id,
        )
        if updated is None:
            raise await self._stale_transition(ride_id, transition)

        await log_info(
            f"Поездка {ride_id}: {transition.from_status.value} -> {new_status.value} ({role.value} {actor_id})",
            type_msg=TypeMsg.INFO,
        )
        event_type = EventTypes.RIDE_CANCELLED if new_status == RideStatus.CANCELLED else EventTypes.RIDE_STATUS_CHANGED
        await self._publish(event_type, updated, extra={"previous_status": transition.from_status.value})
        return updated

    async def cancel_ride(self, rider_id: str, ride_id: str, reason: Optional[str] = None) -> Ride:
        """
        Пассажир отменяет свою поездку до посадки.

        Raises:
            NotFoundError: Поездки этого пассажира нет
            InvalidTransitionError: Поездку уже нельзя отменить
        """
        ride = await self._rides.get_by_id(ride_id)
        if ride is None or ride.rider_id != rider_id:
            raise NotFoundError("Поездка не найдена")

        if not ride.can_be_cancelled:
            raise InvalidTransitionError(
                ride.status,
                RideStatus.CANCELLED,
                f"Поездку в статусе {ride.status.value} нельзя отменить",
            )

        transition = RideStateMachine.plan(ride, RideStatus.CANCELLED, UserRole.RIDER, rider_id)
        updated = await self._rides.apply_transition(
            ride_id,
            transition,
            cancellation_reason=reason or DEFAULT_CANCELLATION_REASON,
        )
        if updated is None:
            raise await self._stale_transition(ride_id, transition)

        await log_info(f"Поездка {ride_id} отменена пассажиром {rider_id}", type_msg=TypeMsg.INFO)
        await self._publish(EventTypes.RIDE_CANCELLED, updated, extra={"reason": updated.cancellation_reason})
        return updated

    async def _stale_transition(self, ride_id: str, transition: Transition) -> Exception:
        # Условное обновление не сработало: статус или водитель успели измениться
        current = await self._rides.get_by_id(ride_id)
        if current is None:
            return NotFoundError("Поездка не найдена")
        if current.status == transition.from_status and current.driver_id != transition.driver_id:
            await log_warning(f"Поездка {ride_id} переназначена параллельно: {current.driver_id}")
            if transition.actor_role == UserRole.DRIVER:
                return ForbiddenError("Поездка назначена другому водителю")
            return ConflictError("Водитель поездки сменился, повторите запрос")
        await log_warning(f"Поездка {ride_id} изменилась параллельно: {current.status.value}")
        return InvalidTransitionError(current.status, transition.to_status)

    # =========================================================================
    # ОЦЕНКИ
    # =========================================================================

    async def rate_ride(
        self,
        rider_id: str,
        ride_id: str,
        rating: Any,
        feedback: Optional[str] = None,
    ) -> Ride:
        """Пассажир оценивает водителя по завершённой поездке."""
        ride = await self._ratings.rate(rider_id, ride_id, rating, feedback)
        await self._publish(EventTypes.RIDE_RATED, ride, extra={"rating": ride.rating.driver_rating})
        return ride

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_ride(self, actor_id: str, role: UserRole, ride_id: str) -> Ride:
        """
        Поездка в пределах видимости вызывающего.
        Пассажир видит свои, водитель назначенные ему и открытые, администратор все.

        Raises:
            NotFoundError: Поездки нет или она вне видимости
        """
        ride = await self._rides.get_by_id(ride_id)
        if ride is None or not self._is_visible(ride, actor_id, role):
            raise NotFoundError("Поездка не найдена")
        return ride

    @staticmethod
    def _is_visible(ride: Ride, actor_id: str, role: UserRole) -> bool:
        if role == UserRole.ADMIN:
            return True
        if role == UserRole.RIDER:
            return ride.rider_id == actor_id
        if ride.driver_id == actor_id:
            return True
        return ride.status == RideStatus.REQUESTED and ride.driver_id is None

    async def list_pending_rides(
        self,
        driver_id: str,
        pagination: PaginationParams,
    ) -> PaginatedResponse[Ride]:
        """Открытые поездки, от которых водитель не отказывался."""
        rides, total = await self._rides.list_pending(driver_id, pagination.limit, pagination.offset)
        return PaginatedResponse[Ride].create(rides, total, pagination)

    async def get_active_ride_for_rider(self, rider_id: str) -> Optional[Ride]:
        return await self._rides.get_active_by_rider(rider_id)

    async def get_active_ride_for_driver(self, driver_id: str) -> Optional[Ride]:
        return await self._rides.get_active_by_driver(driver_id)

    async def ride_history(
        self,
        actor_id: str,
        role: UserRole,
        pagination: PaginationParams,
        status: Optional[RideStatus] = None,
    ) -> PaginatedResponse[Ride]:
        """
        История поездок пассажира или водителя.

        Raises:
            ForbiddenError: Роль без собственной истории
        """
        if role not in (UserRole.RIDER, UserRole.DRIVER):
            raise ForbiddenError("История доступна только пассажиру или водителю")
        rides, total = await self._rides.history(actor_id, role, status, pagination.limit, pagination.offset)
        return PaginatedResponse[Ride].create(rides, total, pagination)

    # =========================================================================
    # СОБЫТИЯ
    # =========================================================================

    async def _publish(self, event_type: str, ride: Ride, extra: Optional[dict[str, Any]] = None) -> None:
        payload = {
            "ride_id": ride.id,
            "rider_id": ride.rider_id,
            "driver_id": ride.driver_id,
            "status": ride.status.value,
            "occurred_at": utcnow().isoformat(),
            **(extra or {}),
        }
        try:
            await self._event_bus.publish(DomainEvent(event_type=event_type, payload=payload))
        except Exception as e:
            await log_error(f"Не удалось опубликовать {event_type} для поездки {ride.id}: {e}")
