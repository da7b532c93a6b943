# ridehail/core/settlement/engine.py
"""
Завершение поездки и начисление заработка водителю одной транзакцией.
"""

from __future__ import annotations

from ridehail.common.constants import RideStatus, TypeMsg, UserRole
from ridehail.common.errors import ConflictError, ForbiddenError, InvalidTransitionError, NotFoundError
from ridehail.common.logger import log_info, log_warning
from ridehail.core.drivers.repository import DriverRepository
from ridehail.core.rides.models import Ride
from ridehail.core.rides.repository import RideRepository
from ridehail.core.rides.state_machine import Transition
from ridehail.infra.database import DatabaseManager


class SettlementEngine:
    """
    Расчёт при переходе в completed.

    Фактические стоимость, расстояние и время равны оценочным.
    Водителю начисляется оценочная стоимость (earnings.total и this_month).
    Повторное завершение невозможно: completed терминальный.
    """

    def __init__(
        self,
        db: DatabaseManager,
        rides: RideRepository,
        drivers: DriverRepository,
    ) -> None:
        self._db = db
        self._rides = rides
        self._drivers = drivers

    async def settle(self, ride_id: str, transition: Transition) -> Ride:
        """
        Завершает поездку и начисляет заработок.

        Args:
            ride_id: UUID поездки
            transition: Проверенный переход в completed

        Returns:
            Завершённая поездка

        Raises:
            InvalidTransitionError: Статус изменился после проверки (например, уже completed)
            ForbiddenError: Поездку успели переназначить другому водителю
            ConflictError: То же для принудительного завершения администратором
            NotFoundError: Поездка исчезла
        """
        async with self._db.transaction() as conn:
            ride = await self._rides.complete(ride_id, transition, conn=conn)
            if ride is None:
                current = await self._rides.get_by_id(ride_id, conn=conn)
                if current is None:
                    raise NotFoundError("Поездка не найдена")
                if current.status == transition.from_status and current.driver_id != transition.driver_id:
                    if transition.actor_role == UserRole.DRIVER:
                        raise ForbiddenError("Поездка назначена другому водителю")
                    raise ConflictError("Водитель поездки сменился, повторите запрос")
                raise InvalidTransitionError(current.status, RideStatus.COMPLETED)

            amount = ride.fare.estimated
            if ride.driver_id is None:
                await log_warning(f"Поездка {ride_id} завершена без водителя, заработок не начислен")
            else:
                credited = await self._drivers.credit_earnings(ride.driver_id, amount, conn=conn)
                if credited is None:
                    await log_warning(
                        f"Профиль водителя {ride.driver_id} не найден, заработок по поездке {ride_id} не начислен"
                    )

        await log_info(
            f"Поездка {ride_id} завершена, начислено {amount} водителю {ride.driver_id}",
            type_msg=TypeMsg.INFO,
        )
        return ride
