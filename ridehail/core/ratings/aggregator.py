# ridehail/core/ratings/aggregator.py
"""
Одна оценка на завершённую поездку и пересчёт средней оценки водителя.
"""

from __future__ import annotations

import math
from typing import Any, Optional

from ridehail.common.constants import RideStatus, TypeMsg
from ridehail.common.errors import ConflictError, NotFoundError, ValidationError
from ridehail.common.logger import log_info, log_warning
from ridehail.core.drivers.models import DriverRating
from ridehail.core.drivers.repository import DriverRepository
from ridehail.core.estimation.engine import round_half_up
from ridehail.core.rides.models import Ride
from ridehail.core.rides.repository import RideRepository
from ridehail.infra.database import DatabaseManager


MIN_RATING = 1
MAX_RATING = 5


def fold_rating(current: DriverRating, rating: int) -> DriverRating:
    """
    Инкрементальное среднее: (avg * count + rating) / (count + 1), 1 знак.
    Нечисловой результат (битые avg/count) превращается в 0.
    """
    count = current.count + 1
    average = (current.average * current.count + rating) / count
    if not math.isfinite(average):
        average = 0.0
    return DriverRating(average=round_half_up(average, 1), count=count)


def validate_rating(rating: Any) -> int:
    """
    Raises:
        ValidationError: Оценка не целое число 1..5
    """
    if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(
            f"Оценка должна быть целым числом от {MIN_RATING} до {MAX_RATING}",
            details={"rating": rating},
        )
    return rating


class RatingAggregator:
    """Приём оценки водителя пассажиром."""

    def __init__(
        self,
        db: DatabaseManager,
        rides: RideRepository,
        drivers: DriverRepository,
    ) -> None:
        self._db = db
        self._rides = rides
        self._drivers = drivers

    async def rate(
        self,
        rider_id: str,
        ride_id: str,
        rating: Any,
        feedback: Optional[str] = None,
    ) -> Ride:
        """
        Оценивает водителя по завершённой поездке.

        Args:
            rider_id: ID пассажира
            ride_id: UUID поездки
            rating: Оценка 1..5
            feedback: Отзыв, на среднюю оценку не влияет

        Returns:
            Поездка с оценкой

        Raises:
            ValidationError: Оценка вне диапазона
            NotFoundError: Нет завершённой поездки этого пассажира
            ConflictError: Поездка уже оценена
        """
        rating = validate_rating(rating)

        ride = await self._rides.get_by_id(ride_id)
        if ride is None or ride.rider_id != rider_id or ride.status != RideStatus.COMPLETED:
            raise NotFoundError("Завершённая поездка не найдена")
        if ride.rating.is_rated:
            raise ConflictError("Поездка уже оценена")

        async with self._db.transaction() as conn:
            rated = await self._rides.set_driver_rating(ride_id, rider_id, rating, feedback, conn=conn)
            if rated is None:
                raise ConflictError("Поездка уже оценена")

            if rated.driver_id is None:
                await log_warning(f"Поездка {ride_id} без водителя, средняя оценка не пересчитана")
                return rated

            driver = await self._drivers.get_by_user_id(rated.driver_id, conn=conn, for_update=True)
            if driver is None:
                await log_warning(f"Профиль водителя {rated.driver_id} не найден, средняя оценка не пересчитана")
                return rated

            folded = fold_rating(driver.rating, rating)
            await self._drivers.save_rating(rated.driver_id, folded, conn=conn)

        await log_info(
            f"Водитель {rated.driver_id} оценён на {rating} по поездке {ride_id}: "
            f"средняя {folded.average} ({folded.count})",
            type_msg=TypeMsg.INFO,
        )
        return rated
