# ridehail/services/rides_api/app.py
"""
FastAPI приложение Rides API.

Endpoints:
- POST  /api/v1/rides/estimate - оценка стоимости
- POST  /api/v1/rides - запрос поездки (rider)
- GET   /api/v1/rides/pending - открытые поездки (driver)
- GET   /api/v1/rides/me - история поездок (rider, driver)
- GET   /api/v1/rides/me/active - активная поездка пассажира (rider)
- GET   /api/v1/rides/{id} - поездка
- POST  /api/v1/rides/{id}/accept - принять (driver)
- POST  /api/v1/rides/{id}/reject - отказаться (driver)
- PATCH /api/v1/rides/{id}/status - сменить статус
- POST  /api/v1/rides/{id}/cancel - отменить (rider)
- POST  /api/v1/rides/{id}/rate - оценить водителя (rider)
- POST  /api/v1/drivers/nearby - водители рядом
- PATCH /api/v1/drivers/me/availability - выход на линию (driver)
- PATCH /api/v1/drivers/me/location - позиция (driver)
- GET   /api/v1/drivers/me/earnings - заработок (driver)
- GET   /api/v1/drivers/me/active-ride - активная поездка водителя (driver)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ridehail.common.constants import RideStatus, TypeMsg, UserRole
from ridehail.common.errors import RideError
from ridehail.common.logger import log_error, log_info, log_warning, setup_logging
from ridehail.config import settings
from ridehail.core.drivers.models import (
    AvailabilityDTO,
    DriverAvailability,
    DriverSummary,
    EarningsSummary,
    LocationUpdateDTO,
)
from ridehail.core.drivers.service import DriverService
from ridehail.core.estimation.engine import FareEstimate
from ridehail.core.rides.models import (
    CancelRideDTO,
    FareEstimateRequest,
    NearbyDriversQuery,
    RateRideDTO,
    Ride,
    RideRequestDTO,
    StatusUpdateDTO,
)
from ridehail.core.rides.service import RideService
from ridehail.services.rides_api.auth import Caller, get_caller, require_roles
from ridehail.services.rides_api.dependencies import get_driver_service, get_ride_service
from ridehail.shared.models.common import (
    ErrorResponse,
    HealthStatus,
    PaginatedResponse,
    PaginationParams,
)


# =============================================================================
# LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Жизненный цикл приложения."""
    setup_logging()
    await log_info("Rides API запускается...", type_msg=TypeMsg.INFO)

    from ridehail.services.rides_api.dependencies import close_dependencies, init_dependencies
    await init_dependencies()

    yield

    await close_dependencies()
    await log_info("Rides API остановлен", type_msg=TypeMsg.INFO)


# =============================================================================
# ПРИЛОЖЕНИЕ
# =============================================================================

app = FastAPI(
    title="Rides API",
    description="Жизненный цикл поездки и подбор водителей",
    version=settings.system.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}

RideServiceDep = Annotated[RideService, Depends(get_ride_service)]
DriverServiceDep = Annotated[DriverService, Depends(get_driver_service)]
AnyCaller = Annotated[Caller, Depends(get_caller)]
RiderCaller = Annotated[Caller, Depends(require_roles(UserRole.RIDER))]
DriverCaller = Annotated[Caller, Depends(require_roles(UserRole.DRIVER))]
RiderOrDriver = Annotated[Caller, Depends(require_roles(UserRole.RIDER, UserRole.DRIVER))]


# =============================================================================
# ОБРАБОТКА ОШИБОК
# =============================================================================

@app.exception_handler(RideError)
async def ride_error_handler(request: Request, exc: RideError) -> JSONResponse:
    """Доменная ошибка -> ErrorResponse с её HTTP-статусом."""
    if exc.status_code >= 500:
        await log_error(f"{request.method} {request.url.path}: {exc.message}")
    else:
        await log_warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(**exc.to_dict()).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Невалидное тело или параметры запроса -> 400 validation_error."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(
            error_code="validation_error",
            message="Некорректные данные запроса",
            details={"errors": jsonable_encoder(exc.errors())},
        ).model_dump(),
    )


# =============================================================================
# HEALTH CHECK
# =============================================================================

@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса."""
    from ridehail.services.rides_api.dependencies import get_db, get_event_bus, get_redis

    deps = {}

    try:
        db = await get_db()
        deps["postgres"] = "healthy" if await db.health_check() else "unhealthy"
    except RuntimeError:
        deps["postgres"] = "unhealthy"

    try:
        redis = await get_redis()
        deps["redis"] = "healthy" if await redis.health_check() else "unhealthy"
    except RuntimeError:
        deps["redis"] = "unhealthy"

    try:
        event_bus = await get_event_bus()
        deps["rabbitmq"] = "healthy" if await event_bus.health_check() else "unhealthy"
    except RuntimeError:
        deps["rabbitmq"] = "unhealthy"

    overall = "healthy" if all(v == "healthy" for v in deps.values()) else "degraded"

    return HealthStatus(
        service="rides_api",
        status=overall,
        version=settings.system.VERSION,
        dependencies=deps,
    )


# =============================================================================
# RIDES API
# =============================================================================

@app.post("/api/v1/rides/estimate", response_model=FareEstimate, responses=ERROR_RESPONSES, tags=["Rides"])
async def estimate_fare(
    request: FareEstimateRequest,
    caller: AnyCaller,
    service: RideServiceDep,
) -> FareEstimate:
    """Предварительная оценка расстояния, времени и стоимости."""
    return service.estimate_fare(request.pickup, request.destination, request.ride_type)


@app.post(
    "/api/v1/rides",
    response_model=Ride,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    tags=["Rides"],
)
async def request_ride(
    request: RideRequestDTO,
    caller: RiderCaller,
    service: RideServiceDep,
) -> Ride:
    """Запрос поездки пассажиром."""
    return await service.request_ride(caller.user_id, request)


@app.get("/api/v1/rides/pending", response_model=PaginatedResponse[Ride], tags=["Rides"])
async def list_pending_rides(
    caller: DriverCaller,
    service: RideServiceDep,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> PaginatedResponse[Ride]:
    """Открытые поездки для водителя."""
    pagination = PaginationParams(page=page, page_size=page_size)
    return await service.list_pending_rides(caller.user_id, pagination)


@app.get("/api/v1/rides/me", response_model=PaginatedResponse[Ride], tags=["Rides"])
async def ride_history(
    caller: RiderOrDriver,
    service: RideServiceDep,
    ride_status: Optional[RideStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> PaginatedResponse[Ride]:
    """История поездок вызывающего."""
    pagination = PaginationParams(page=page, page_size=page_size)
    return await service.ride_history(caller.user_id, caller.role, pagination, ride_status)


@app.get("/api/v1/rides/me/active", response_model=Optional[Ride], tags=["Rides"])
async def get_active_ride_for_rider(caller: RiderCaller, service: RideServiceDep) -> Optional[Ride]:
    """Активная поездка пассажира."""
    return await service.get_active_ride_for_rider(caller.user_id)


@app.get("/api/v1/rides/{ride_id}", response_model=Ride, responses=ERROR_RESPONSES, tags=["Rides"])
async def get_ride(ride_id: str, caller: AnyCaller, service: RideServiceDep) -> Ride:
    """Поездка в пределах видимости вызывающего."""
    return await service.get_ride(caller.user_id, caller.role, ride_id)


@app.post("/api/v1/rides/{ride_id}/accept", response_model=Ride, responses=ERROR_RESPONSES, tags=["Rides"])
async def accept_ride(ride_id: str, caller: DriverCaller, service: RideServiceDep) -> Ride:
    """Водитель принимает поездку."""
    return await service.accept_ride(caller.user_id, ride_id)


@app.post("/api/v1/rides/{ride_id}/reject", response_model=Ride, responses=ERROR_RESPONSES, tags=["Rides"])
async def reject_ride(ride_id: str, caller: DriverCaller, service: RideServiceDep) -> Ride:
    """Водитель отказывается от поездки."""
    return await service.reject_ride(caller.user_id, ride_id)


@app.patch("/api/v1/rides/{ride_id}/status", response_model=Ride, responses=ERROR_RESPONSES, tags=["Rides"])
async def update_ride_status(
    ride_id: str,
    request: StatusUpdateDTO,
    caller: AnyCaller,
    service: RideServiceDep,
) -> Ride:
    """Смена статуса по таблице переходов."""
    return await service.update_status(caller.user_id, caller.role, ride_id, request.status)


@app.post("/api/v1/rides/{ride_id}/cancel", response_model=Ride, responses=ERROR_RESPONSES, tags=["Rides"])
async def cancel_ride(
    ride_id: str,
    caller: RiderCaller,
    service: RideServiceDep,
    request: Optional[CancelRideDTO] = None,
) -> Ride:
    """Отмена поездки пассажиром."""
    reason = request.reason if request else None
    return await service.cancel_ride(caller.user_id, ride_id, reason)


@app.post("/api/v1/rides/{ride_id}/rate", response_model=Ride, responses=ERROR_RESPONSES, tags=["Rides"])
async def rate_ride(
    ride_id: str,
    request: RateRideDTO,
    caller: RiderCaller,
    service: RideServiceDep,
) -> Ride:
    """Оценка водителя по завершённой поездке."""
    return await service.rate_ride(caller.user_id, ride_id, request.rating, request.feedback)


# =============================================================================
# DRIVERS API
# =============================================================================

@app.post("/api/v1/drivers/nearby", response_model=list[DriverSummary], tags=["Drivers"])
async def find_nearby_drivers(
    request: NearbyDriversQuery,
    caller: AnyCaller,
    service: RideServiceDep,
) -> list[DriverSummary]:
    """Одобренные водители на линии рядом с точкой."""
    return await service.find_nearby_drivers(request.point, request.radius_km)


@app.patch(
    "/api/v1/drivers/me/availability",
    response_model=DriverAvailability,
    responses=ERROR_RESPONSES,
    tags=["Drivers"],
)
async def set_availability(
    request: AvailabilityDTO,
    caller: DriverCaller,
    service: DriverServiceDep,
) -> DriverAvailability:
    """Выход на линию или уход с неё."""
    return await service.set_availability(caller.user_id, request.is_online)


@app.patch(
    "/api/v1/drivers/me/location",
    response_model=DriverAvailability,
    responses=ERROR_RESPONSES,
    tags=["Drivers"],
)
async def update_location(
    request: LocationUpdateDTO,
    caller: DriverCaller,
    service: DriverServiceDep,
) -> DriverAvailability:
    """Последняя позиция водителя."""
    return await service.update_location(caller.user_id, request.point)


@app.get("/api/v1/drivers/me/earnings", response_model=EarningsSummary, responses=ERROR_RESPONSES, tags=["Drivers"])
async def get_earnings(caller: DriverCaller, service: DriverServiceDep) -> EarningsSummary:
    """Заработок и рейтинг водителя."""
    return await service.earnings_summary(caller.user_id)


@app.get("/api/v1/drivers/me/active-ride", response_model=Optional[Ride], tags=["Drivers"])
async def get_active_ride_for_driver(caller: DriverCaller, service: RideServiceDep) -> Optional[Ride]:
    """Активная поездка водителя."""
    return await service.get_active_ride_for_driver(caller.user_id)
