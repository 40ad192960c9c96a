"""FastAPI dependency injection helpers."""

from __future__ import annotations

from datetime import timedelta
from typing import Callable

from fastapi import Depends, Request

from tripbook.config import settings
from tripbook.domain.ports import EventPublisher, UnitOfWork
from tripbook.domain.suspension import SuspensionPolicy
from tripbook.infrastructure.events import LoggingEventPublisher
from tripbook.infrastructure.repositories import SqlAlchemyUnitOfWork
from tripbook.services.booking_lifecycle import BookingService
from tripbook.services.expiration import ExpirationSweeper


def suspension_policy() -> SuspensionPolicy:
    return SuspensionPolicy(
        window_days=settings.cancellation_window_days,
        threshold=settings.suspension_threshold,
        count_system_expired=settings.count_system_expired_cancellations,
    )


def build_booking_service(
    uow_factory: Callable[[], UnitOfWork], publisher: EventPublisher
) -> BookingService:
    return BookingService(
        uow_factory,
        publisher,
        suspension_policy(),
        max_attempts=settings.ledger_max_attempts,
    )


def build_sweeper(
    service: BookingService, uow_factory: Callable[[], UnitOfWork]
) -> ExpirationSweeper:
    return ExpirationSweeper(
        service,
        uow_factory,
        retention=timedelta(days=settings.cancellation_retention_days),
    )


def get_uow_factory() -> Callable[[], UnitOfWork]:
    """Each call of the returned factory opens a fresh transaction."""
    return SqlAlchemyUnitOfWork


def get_event_publisher(request: Request) -> EventPublisher:
    publisher = getattr(request.app.state, "publisher", None)
    return publisher or LoggingEventPublisher()


def get_booking_service(
    uow_factory: Callable[[], UnitOfWork] = Depends(get_uow_factory),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> BookingService:
    return build_booking_service(uow_factory, publisher)


def get_sweeper(
    service: BookingService = Depends(get_booking_service),
    uow_factory: Callable[[], UnitOfWork] = Depends(get_uow_factory),
) -> ExpirationSweeper:
    return build_sweeper(service, uow_factory)
