"""
User cancellation / suspension endpoints
========================================

GET /api/v1/users/{user_id}/cancellations          -- count in the trailing window + warning
GET /api/v1/users/{user_id}/cancellations/history  -- latest cancellation events
GET /api/v1/users/{user_id}/suspension             -- suspension flag
"""

from fastapi import APIRouter, Depends, Query, Request

from tripbook.api.dependencies import get_booking_service
from tripbook.api.middleware import DEFAULT_LIMIT, limiter
from tripbook.api.schemas import (
    CancellationCountResponse,
    CancellationEventResponse,
    SuspensionResponse,
)
from tripbook.domain.enums import UserRole
from tripbook.services.booking_lifecycle import BookingService

router = APIRouter(prefix="/users", tags=["users"])


@router.get(
    "/{user_id}/cancellations",
    response_model=CancellationCountResponse,
    summary="Cancellations in the trailing window",
)
@limiter.limit(DEFAULT_LIMIT)
async def get_cancellation_count(
    request: Request,
    user_id: int,
    role: UserRole = Query(UserRole.PASSENGER),
    service: BookingService = Depends(get_booking_service),
):
    count = await service.get_cancellation_count(user_id, role)
    warning = await service.get_cancellation_warning(user_id, role)
    return CancellationCountResponse(
        user_id=user_id,
        role=role,
        count=count,
        window_days=service.policy.window_days,
        warning=warning,
    )


@router.get(
    "/{user_id}/cancellations/history",
    response_model=list[CancellationEventResponse],
    summary="Latest cancellation events for a user",
)
@limiter.limit(DEFAULT_LIMIT)
async def get_cancellation_history(
    request: Request,
    user_id: int,
    limit: int = Query(50, ge=1, le=200),
    service: BookingService = Depends(get_booking_service),
):
    return await service.get_cancellation_history(user_id, limit)


@router.get(
    "/{user_id}/suspension",
    response_model=SuspensionResponse,
    summary="Is the user suspended",
)
@limiter.limit(DEFAULT_LIMIT)
async def get_suspension(
    request: Request,
    user_id: int,
    service: BookingService = Depends(get_booking_service),
):
    return await service.get_suspension(user_id)
