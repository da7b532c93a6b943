# tests/core/test_ride_service.py
"""
Тесты сервиса поездок: создание, автоподбор, статусы, отмена, чтение.
"""

from __future__ import annotations

import pytest

from ridehail.common.constants import RideStatus, RideType, UserRole
from ridehail.common.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
)
from ridehail.core.rides.service import DEFAULT_CANCELLATION_REASON, RideService
from ridehail.infra.event_bus import EventTypes
from ridehail.shared.models.common import PaginationParams
from ridehail.shared.models.geo import GeoPoint
from tests.conftest import DESTINATION, PICKUP, complete_ride, make_driver, make_request
from tests.fakes import FakeDriverRepository, FakeEventBus, FakeGeoIndex, FakeRideRepository


NEAR = GeoPoint(longitude=90.411, latitude=23.809)
FARTHER = GeoPoint(longitude=90.42, latitude=23.82)


async def _online(driver_repo: FakeDriverRepository, geo_index: FakeGeoIndex, user_id: str, point: GeoPoint) -> None:
    driver_repo.add(make_driver(user_id, point))
    await geo_index.upsert(user_id, point)


class TestEstimateAndSearch:
    """Оценка и поиск без создания поездки."""

    def test_estimate_fare(self, ride_service: RideService) -> None:
        estimate = ride_service.estimate_fare(PICKUP, DESTINATION, RideType.ECONOMY)
        assert (estimate.distance_km, estimate.duration_min, estimate.fare) == (6.75, 14, 185)

    @pytest.mark.asyncio
    async def test_find_nearby_drivers(
        self,
        ride_service: RideService,
        driver_repo: FakeDriverRepository,
        geo_index: FakeGeoIndex,
    ) -> None:
        await _online(driver_repo, geo_index, "driver-1", NEAR)

        drivers = await ride_service.find_nearby_drivers(PICKUP, 5)

        assert [d.user_id for d in drivers] == ["driver-1"]


class TestRequestRide:
    """Тесты создания поездки."""

    @pytest.mark.asyncio
    async def test_creates_requested_ride(self, ride_service: RideService, event_bus: FakeEventBus) -> None:
        ride = await ride_service.request_ride("rider-1", make_request())

        assert ride.status == RideStatus.REQUESTED
        assert ride.driver_id is None
        assert ride.fare.estimated == 185
        assert ride.distance.estimated == 6.75
        assert ride.duration.estimated == 14
        assert list(ride.timeline) == ["requested"]
        assert event_bus.types() == [EventTypes.RIDE_REQUESTED]

    @pytest.mark.asyncio
    async def test_one_active_ride_per_rider(self, ride_service: RideService, ride_repo: FakeRideRepository) -> None:
        first = await ride_service.request_ride("rider-1", make_request())

        with pytest.raises(ConflictError) as exc:
            await ride_service.request_ride("rider-1", make_request())

        assert exc.value.details["active_ride_id"] == first.id
        assert len(ride_repo.rides) == 1

    @pytest.mark.asyncio
    async def test_new_ride_after_cancel(self, ride_service: RideService) -> None:
        first = await ride_service.request_ride("rider-1", make_request())
        await ride_service.cancel_ride("rider-1", first.id)

        second = await ride_service.request_ride("rider-1", make_request())

        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_event_bus_failure_does_not_break_request(
        self,
        ride_service_factory,
        event_bus: FakeEventBus,
    ) -> None:
        event_bus.fail = True
        service: RideService = ride_service_factory()

        ride = await service.request_ride("rider-1", make_request())

        assert ride.status == RideStatus.REQUESTED


class TestAutoMatch:
    """Тесты автоподбора при создании."""

    @pytest.mark.asyncio
    async def test_nearest_driver_assigned(
        self,
        ride_service_factory,
        driver_repo: FakeDriverRepository,
        geo_index: FakeGeoIndex,
        event_bus: FakeEventBus,
    ) -> None:
        await _online(driver_repo, geo_index, "far", FARTHER)
        await _online(driver_repo, geo_index, "near", NEAR)
        service: RideService = ride_service_factory(auto_match=True)

        ride = await service.request_ride("rider-1", make_request())

        assert ride.status == RideStatus.ACCEPTED
        assert ride.driver_id == "near"
        assert ride.driver_profile_id == "profile-near"
        assert ride.timeline["requested"] == ride.timeline["accepted"]
        assert event_bus.types() == [EventTypes.RIDE_REQUESTED, EventTypes.RIDE_ACCEPTED]

    @pytest.mark.asyncio
    async def test_no_drivers_leaves_ride_open(self, ride_service_factory) -> None:
        service: RideService = ride_service_factory(auto_match=True)

        ride = await service.request_ride("rider-1", make_request())

        assert ride.status == RideStatus.REQUESTED

    @pytest.mark.asyncio
    async def test_busy_driver_skipped(
        self,
        ride_service_factory,
        driver_repo: FakeDriverRepository,
        geo_index: FakeGeoIndex,
    ) -> None:
        await _online(driver_repo, geo_index, "near", NEAR)
        await _online(driver_repo, geo_index, "far", FARTHER)
        service: RideService = ride_service_factory(auto_match=True)
        first = await service.request_ride("rider-1", make_request())

        second = await service.request_ride("rider-2", make_request())

        assert first.driver_id == "near"
        assert second.driver_id == "far"

    @pytest.mark.asyncio
    async def test_falls_back_when_candidate_taken_concurrently(
        self,
        ride_service_factory,
        driver_repo: FakeDriverRepository,
        geo_index: FakeGeoIndex,
        ride_repo: FakeRideRepository,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await _online(driver_repo, geo_index, "near", NEAR)
        await _online(driver_repo, geo_index, "far", FARTHER)
        service: RideService = ride_service_factory(auto_match=True)
        first = await service.request_ride("rider-1", make_request())

        # Проверка занятости не видит назначение, уникальный индекс ловит его
        async def nobody_busy(driver_ids):
            return set()

        monkeypatch.setattr(ride_repo, "busy_driver_ids", nobody_busy)

        second = await service.request_ride("rider-2", make_request())

        assert first.driver_id == "near"
        assert second.driver_id == "far"

    @pytest.mark.asyncio
    async def test_geo_outage_leaves_ride_open(self, ride_service_factory, geo_index: FakeGeoIndex) -> None:
        geo_index.fail = True
        service: RideService = ride_service_factory(auto_match=True)

        ride = await service.request_ride("rider-1", make_request())

        assert ride.status == RideStatus.REQUESTED


class TestUpdateStatus:
    """Тесты смены статуса."""

    @pytest.mark.asyncio
    async def test_full_lifecycle(
        self,
        ride_service: RideService,
        driver_repo: FakeDriverRepository,
        event_bus: FakeEventBus,
    ) -> None:
        ride = await complete_ride(ride_service, driver_repo)

        assert ride.status == RideStatus.COMPLETED
        assert set(ride.timeline) == {"requested", "accepted", "picked_up", "inTransit", "completed"}
        assert ride.timeline["requested"] <= ride.timeline["accepted"] <= ride.timeline["completed"]
        assert event_bus.types() == [
            EventTypes.RIDE_REQUESTED,
            EventTypes.RIDE_ACCEPTED,
            EventTypes.RIDE_STATUS_CHANGED,
            EventTypes.RIDE_STATUS_CHANGED,
            EventTypes.RIDE_COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_driver_accept_through_status(
        self,
        ride_service: RideService,
        driver_repo: FakeDriverRepository,
    ) -> None:
        driver_repo.add(make_driver("driver-1"))
        ride = await ride_service.request_ride("rider-1", make_request())

        accepted = await ride_service.update_status("driver-1", UserRole.DRIVER, ride.id, RideStatus.ACCEPTED)

        assert accepted.driver_id == "driver-1"

    @pytest.mark.asyncio
    async def test_driver_rejects_accepted_ride(
        self,
        ride_service: RideService,
        driver_repo: FakeDriverRepository,
    ) -> None:
        driver_repo.add(make_driver("driver-1"))
        ride = await ride_service.request_ride("rider-1", make_request())
        await ride_service.accept_ride("driver-1", ride.id)

        rejected = await ride_service.update_status("driver-1", UserRole.DRIVER, ride.id, RideStatus.REJECTED)

        assert rejected.status == RideStatus.REJECTED
        assert rejected.rejected_drivers == ["driver-1"]
        assert "rejected" in rejected.timeline

    @pytest.mark.asyncio
    async def test_rider_cannot_pick_up(
        self,
        ride_service: RideService,
        driver_repo: FakeDriverRepository,
    ) -> None:
        driver_repo.add(make_driver("driver-1"))
        ride = await ride_service.request_ride("rider-1", make_request())
        await ride_service.accept_ride("driver-1", ride.id)

        with pytest.raises(ForbiddenError):
            await ride_service.update_status("rider-1", UserRole.RIDER, ride.id, RideStatus.PICKED_UP)

    @pytest.mark.asyncio
    async def test_skipping_states_rejected(
        self,
        ride_service: RideService,
        driver_repo: FakeDriverRepository,
    ) -> None:
        driver_repo.add(make_driver("driver-1"))
        ride = await ride_service.request_ride("rider-1", make_request())
        await ride_service.accept_ride("driver-1", ride.id)

        with pytest.raises(InvalidTransitionError):
            await ride_service.update_status("driver-1", UserRole.DRIVER, ride.id, RideStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_missing_ride(self, ride_service: RideService) -> None:
        with pytest.raises(NotFoundError):
            await ride_service.update_status("driver-1", UserRole.DRIVER, "missing", RideStatus.PICKED_UP)

    @pytest.mark.asyncio
    async def test_admin_forces_cancel_after_pickup(
        self,
        ride_service: RideService,
        driver_repo: FakeDriverRepository,
        event_bus: FakeEventBus,
    ) -> None:
        driver_repo.add(make_driver("driver-1"))
        ride = await ride_service.request_ride("rider-1", make_request())
        await ride_service.accept_ride("driver-1", ride.id)
        await ride_service.update_status("driver-1", UserRole.DRIVER, ride.id, RideStatus.PICKED_UP)

        cancelled = await ride_service.update_status("admin-1", UserRole.ADMIN, ride.id, RideStatus.CANCELLED)

        assert cancelled.status == RideStatus.CANCELLED
        assert cancelled.cancelled_by == UserRole.ADMIN
        assert event_bus.types()[-1] == EventTypes.RIDE_CANCELLED

    @pytest.mark.asyncio
    async def test_admin_forced_completion_settles(
        self,
        ride_service: RideService,
        driver_repo: FakeDriverRepository,
    ) -> None:
        driver_repo.add(make_driver("driver-1"))
        ride = await ride_service.request_ride("rider-1", make_request())
        await ride_service.accept_ride("driver-1", ride.id)

        completed = await ride_service.update_status("admin-1", UserRole.ADMIN, ride.id, RideStatus.COMPLETED)

        assert completed.status == RideStatus.COMPLETED
        assert driver_repo.drivers["driver-1"].earnings.total == 185

    @pytest.mark.asyncio
    async def test_admin_reopen_releases_driver(
        self,
        ride_service: RideService,
        driver_repo: FakeDriverRepository,
    ) -> None:
        driver_repo.add(make_driver("driver-1"))
        driver_repo.add(make_driver("driver-2"))
        ride = await ride_service.request_ride("rider-1", make_request())
        await ride_service.accept_ride("driver-1", ride.id)
        await ride_service.update_status("driver-1", UserRole.DRIVER, ride.id, RideStatus.PICKED_UP)

        reopened = await ride_service.update_status("admin-1", UserRole.ADMIN, ride.id, RideStatus.REQUESTED)

        assert reopened.status == RideStatus.REQUESTED
        assert reopened.driver_id is None
        assert reopened.driver_profile_id is None
        assert await ride_service.get_active_ride_for_driver("driver-1") is None

        page = await ride_service.list_pending_rides("driver-2", PaginationParams())
        assert [r.id for r in page.items] == [ride.id]

        reassigned = await ride_service.accept_ride("driver-2", ride.id)
        assert reassigned.driver_id == "driver-2"


class TestDriverRejection:
    """Отказ водителя через смену статуса."""

    @pytest.mark.asyncio
    async def test_open_ride_stays_open(
        self,
        ride_service: RideService,
        driver_repo: FakeDriverRepository,
        event_bus: FakeEventBus,
    ) -> None:
        driver_repo.add(make_driver("driver-1"))
        ride = await ride_service.request_ride("rider-1", make_request())

        rejected = await ride_service.update_status("driver-1", UserRole.DRIVER, ride.id, RideStatus.REJECTED)

        assert rejected.status == RideStatus.REQUESTED
        assert rejected.rejected_drivers == ["driver-1"]
        assert "rejected" not in rejected.timeline
        assert event_bus.types()[-1] == EventTypes.RIDE_REJECTED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("approved", [False, None])
    async def test_unapproved_driver_cannot_close_ride(
        self,
        ride_service: RideService,
        ride_repo: FakeRideRepository,
        driver_repo: FakeDriverRepository,
        approved: bool | None,
    ) -> None:
        if approved is not None:
            driver_repo.add(make_driver("stranger", approved=approved))
        ride = await ride_service.request_ride("rider-1", make_request())

        with pytest.raises(ForbiddenError):
            await ride_service.update_status("stranger", UserRole.DRIVER, ride.id, RideStatus.REJECTED)

        stored = await ride_repo.get_by_id(ride.id)
        assert stored.status == RideStatus.REQUESTED
        assert stored.rejected_drivers == []


class TestReassignmentRace:
    """Переход, проверенный до переназначения, не применяется к чужой поездке."""

    @staticmethod
    async def _reassigned(
        ride_service: RideService,
        ride_repo: FakeRideRepository,
        driver_repo: FakeDriverRepository,
        monkeypatch: pytest.MonkeyPatch,
    ) -> str:
        driver_repo.add(make_driver("driver-1"))
        driver_repo.add(make_driver("driver-2"))
        ride = await ride_service.request_ride("rider-1", make_request())
        await ride_service.accept_ride("driver-1", ride.id)
        snapshot = await ride_repo.get_by_id(ride.id)

        await ride_service.reject_ride("driver-1", ride.id)
        await ride_service.accept_ride("driver-2", ride.id)

        # Следующее чтение отдаёт снимок, сделанный до переназначения
        fresh_read = ride_repo.get_by_id

        async def stale_read(ride_id: str, conn=None):
            monkeypatch.setattr(ride_repo, "get_by_id", fresh_read)
            return snapshot

        monkeypatch.setattr(ride_repo, "get_by_id", stale_read)
        return ride.id

    @pytest.mark.asyncio
    async def test_stale_driver_cannot_pick_up(
        self,
        ride_service: RideService,
        ride_repo: FakeRideRepository,
        driver_repo: FakeDriverRepository,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        ride_id = await self._reassigned(ride_service, ride_repo, driver_repo, monkeypatch)

        with pytest.raises(ForbiddenError):
            await ride_service.update_status("driver-1", UserRole.DRIVER, ride_id, RideStatus.PICKED_UP)

        current = await ride_repo.get_by_id(ride_id)
        assert current.status == RideStatus.ACCEPTED
        assert current.driver_id == "driver-2"
        assert "picked_up" not in current.timeline

    @pytest.mark.asyncio
    async def test_stale_admin_transition_conflicts(
        self,
        ride_service: RideService,
        ride_repo: FakeRideRepository,
        driver_repo: FakeDriverRepository,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        ride_id = await self._reassigned(ride_service, ride_repo, driver_repo, monkeypatch)

        with pytest.raises(ConflictError):
            await ride_service.update_status("admin-1", UserRole.ADMIN, ride_id, RideStatus.IN_TRANSIT)

        current = await ride_repo.get_by_id(ride_id)
        assert current.status == RideStatus.ACCEPTED
        assert current.driver_id == "driver-2"

    @pytest.mark.asyncio
    async def test_stale_admin_completion_does_not_settle(
        self,
        ride_service: RideService,
        ride_repo: FakeRideRepository,
        driver_repo: FakeDriverRepository,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        ride_id = await self._reassigned(ride_service, ride_repo, driver_repo, monkeypatch)

        with pytest.raises(ConflictError):
            await ride_service.update_status("admin-1", UserRole.ADMIN, ride_id, RideStatus.COMPLETED)

        current = await ride_repo.get_by_id(ride_id)
        assert current.status == RideStatus.ACCEPTED
        assert driver_repo.drivers["driver-1"].earnings.total == 0
        assert driver_repo.drivers["driver-2"].earnings.total == 0


class TestCancelRide:
    """Тесты отмены пассажиром."""

    @pytest.mark.asyncio
    async def test_cancel_requested(self, ride_service: RideService, event_bus: FakeEventBus) -> None:
        ride = await ride_service.request_ride("rider-1", make_request())

        cancelled = await ride_service.cancel_ride("rider-1", ride.id)

        assert cancelled.status == RideStatus.CANCELLED
        assert cancelled.cancelled_by == UserRole.RIDER
        assert cancelled.cancellation_reason == DEFAULT_CANCELLATION_REASON
        assert "cancelled" in cancelled.timeline
        assert event_bus.events[-1].payload["reason"] == DEFAULT_CANCELLATION_REASON

    @pytest.mark.asyncio
    async def test_cancel_accepted_frees_driver(
        self,
        ride_service: RideService,
        driver_repo: FakeDriverRepository,
    ) -> None:
        driver_repo.add(make_driver("driver-1"))
        ride = await ride_service.request_ride("rider-1", make_request())
        await ride_service.accept_ride("driver-1", ride.id)

        cancelled = await ride_service.cancel_ride("rider-1", ride.id, "Передумал")

        assert cancelled.cancellation_reason == "Передумал"
        assert await ride_service.get_active_ride_for_driver("driver-1") is None

    @pytest.mark.asyncio
    async def test_cancel_after_pickup(
        self,
        ride_service: RideService,
        driver_repo: FakeDriverRepository,
    ) -> None:
        driver_repo.add(make_driver("driver-1"))
        ride = await ride_service.request_ride("rider-1", make_request())
        await ride_service.accept_ride("driver-1", ride.id)
        await ride_service.update_status("driver-1", UserRole.DRIVER, ride.id, RideStatus.PICKED_UP)

        with pytest.raises(InvalidTransitionError):
            await ride_service.cancel_ride("rider-1", ride.id)

    @pytest.mark.asyncio
    async def test_cancel_someone_elses_ride(self, ride_service: RideService) -> None:
        ride = await ride_service.request_ride("rider-1", make_request())

        with pytest.raises(NotFoundError):
            await ride_service.cancel_ride("rider-2", ride.id)


class TestRateRide:
    """Оценка через сервис."""

    @pytest.mark.asyncio
    async def test_publishes_rated_event(
        self,
        ride_service: RideService,
        driver_repo: FakeDriverRepository,
        event_bus: FakeEventBus,
    ) -> None:
        ride = await complete_ride(ride_service, driver_repo)

        rated = await ride_service.rate_ride("rider-1", ride.id, 5)

        assert rated.rating.driver_rating == 5
        assert event_bus.events[-1].event_type == EventTypes.RIDE_RATED
        assert event_bus.events[-1].payload["rating"] == 5


class TestReadRides:
    """Тесты чтения поездок."""

    @pytest.mark.asyncio
    async def test_visibility(self, ride_service: RideService, driver_repo: FakeDriverRepository) -> None:
        driver_repo.add(make_driver("driver-1"))
        ride = await ride_service.request_ride("rider-1", make_request())

        assert (await ride_service.get_ride("rider-1", UserRole.RIDER, ride.id)).id == ride.id
        assert (await ride_service.get_ride("admin-1", UserRole.ADMIN, ride.id)).id == ride.id
        # Открытую поездку видит любой водитель
        assert (await ride_service.get_ride("driver-2", UserRole.DRIVER, ride.id)).id == ride.id

        with pytest.raises(NotFoundError):
            await ride_service.get_ride("rider-2", UserRole.RIDER, ride.id)

        await ride_service.accept_ride("driver-1", ride.id)
        with pytest.raises(NotFoundError):
            await ride_service.get_ride("driver-2", UserRole.DRIVER, ride.id)

    @pytest.mark.asyncio
    async def test_pending_hides_rejected(self, ride_service: RideService, driver_repo: FakeDriverRepository) -> None:
        driver_repo.add(make_driver("driver-1"))
        first = await ride_service.request_ride("rider-1", make_request())
        second = await ride_service.request_ride("rider-2", make_request())
        await ride_service.reject_ride("driver-1", first.id)

        page = await ride_service.list_pending_rides("driver-1", PaginationParams())

        assert [r.id for r in page.items] == [second.id]
        assert page.total == 1

        other = await ride_service.list_pending_rides("driver-2", PaginationParams(page=1, page_size=1))
        assert other.total == 2
        assert other.total_pages == 2
        assert len(other.items) == 1

    @pytest.mark.asyncio
    async def test_history(self, ride_service: RideService, driver_repo: FakeDriverRepository) -> None:
        completed = await complete_ride(ride_service, driver_repo)
        cancelled = await ride_service.request_ride("rider-1", make_request())
        await ride_service.cancel_ride("rider-1", cancelled.id)

        rider_history = await ride_service.ride_history("rider-1", UserRole.RIDER, PaginationParams())
        driver_history = await ride_service.ride_history("driver-1", UserRole.DRIVER, PaginationParams())
        only_completed = await ride_service.ride_history(
            "rider-1", UserRole.RIDER, PaginationParams(), RideStatus.COMPLETED
        )

        assert rider_history.total == 2
        assert [r.id for r in driver_history.items] == [completed.id]
        assert [r.id for r in only_completed.items] == [completed.id]

    @pytest.mark.asyncio
    async def test_history_not_for_admin(self, ride_service: RideService) -> None:
        with pytest.raises(ForbiddenError):
            await ride_service.ride_history("admin-1", UserRole.ADMIN, PaginationParams())

    @pytest.mark.asyncio
    async def test_active_rides(self, ride_service: RideService, driver_repo: FakeDriverRepository) -> None:
        driver_repo.add(make_driver("driver-1"))
        ride = await ride_service.request_ride("rider-1", make_request())

        assert (await ride_service.get_active_ride_for_rider("rider-1")).id == ride.id
        assert await ride_service.get_active_ride_for_driver("driver-1") is None

        await ride_service.accept_ride("driver-1", ride.id)
        assert (await ride_service.get_active_ride_for_driver("driver-1")).id == ride.id
