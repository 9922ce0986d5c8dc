"""
Booking lifecycle shared by orders and open-market service requests.

    pending -> accepted -> in_progress -> completed

Any non-terminal booking can also be cancelled by an admin. Every transition
locks the booking row and checks the actor and current status before writing.
Completion records the provider earning in the same transaction.
Notifications go out only after commit.
"""

from typing import Optional, Union

from sqlalchemy.orm import Session

from marketplace.domain.actor import Actor
from marketplace.domain.exceptions import InvalidState, NotFound, PermissionDenied, ValidationError
from marketplace.domain.models import Order, ServiceRequest, utcnow
from marketplace.domain.pricing import parse_positive_money, parse_timestamp
from marketplace.domain.status import (
    BookingKind, BookingStatus, ProviderStatus, can_transition, normalize_status,
)
from marketplace.infrastructure.notifications import NotificationDispatcher
from marketplace.infrastructure.repositories import DirectoryRepository
from .base import BaseService
from .earnings import EarningsService
from .schemas import BookingUpdate

Booking = Union[Order, ServiceRequest]

_MODELS = {
    BookingKind.ORDER: Order,
    BookingKind.SERVICE_REQUEST: ServiceRequest,
}

_LABELS = {
    BookingKind.ORDER: "Order",
    BookingKind.SERVICE_REQUEST: "Service request",
}

_TEXT_FIELDS = ("address", "cep", "city", "state", "notes")
_MONEY_FIELDS = ("estimated_price", "final_price", "total_amount")


class BookingLifecycleService(BaseService):
    def __init__(
        self,
        db: Session,
        directory: Optional[DirectoryRepository] = None,
        earnings: Optional[EarningsService] = None,
        notifier: Optional[NotificationDispatcher] = None,
    ):
        super().__init__(db)
        self.directory = directory or DirectoryRepository(db)
        self.earnings = earnings or EarningsService(db)
        self.notifier = notifier or NotificationDispatcher()

    # --- loading and permissions ---

    def _load(self, kind: BookingKind, booking_id: int, lock: bool = True) -> Booking:
        kind = BookingKind(kind)
        booking = self.db.get(_MODELS[kind], booking_id, with_for_update=lock or None)
        if not booking:
            raise NotFound(f"{_LABELS[kind]} {booking_id} not found")
        if booking.status == BookingStatus.CART.value:
            raise InvalidState(f"{_LABELS[kind]} {booking_id} is still a cart; check it out first")
        return booking

    def get(self, kind: BookingKind, booking_id: int) -> Booking:
        return self._load(kind, booking_id, lock=False)

    def _provider_user_id(self, booking: Booking) -> Optional[int]:
        if booking.provider_id is None:
            return None
        provider = self.directory.get_provider(booking.provider_id)
        return provider.user_id if provider else None

    def can_update(self, booking: Booking, actor: Actor) -> bool:
        """Owning client, admin and the assigned provider may update a booking."""
        if actor.is_admin or booking.client_id == actor.user_id:
            return True
        return actor.is_provider and self._provider_user_id(booking) == actor.user_id

    def _require_owner(self, booking: Booking, actor: Actor, action: str) -> None:
        if booking.client_id != actor.user_id:
            raise PermissionDenied(f"Only the client who booked the service can {action} it")

    @staticmethod
    def _require_status(booking: Booking, expected: BookingStatus, action: str) -> None:
        if booking.status != expected.value:
            raise InvalidState(
                f"Cannot {action} booking {booking.id}: status is '{booking.status}', expected '{expected.value}'"
            )

    # --- transitions ---

    def transition(self, kind: BookingKind, booking_id: int, actor: Actor, status, provider_id: Optional[int] = None) -> Booking:
        """Route a requested status (legacy names included) to its transition."""
        target = normalize_status(status)
        if target == BookingStatus.ACCEPTED:
            return self.accept(kind, booking_id, actor, provider_id)
        if target == BookingStatus.IN_PROGRESS:
            return self.start(kind, booking_id, actor)
        if target == BookingStatus.COMPLETED:
            return self.complete(kind, booking_id, actor)
        if target == BookingStatus.CANCELLED:
            return self.cancel(kind, booking_id, actor)
        raise InvalidState(f"Bookings cannot be moved back to '{target.value}'")

    def accept(self, kind: BookingKind, booking_id: int, actor: Actor, provider_id: Optional[int] = None) -> Booking:
        with self.unit_of_work():
            booking = self._load(kind, booking_id)
            if actor.is_provider and booking.client_id != actor.user_id:
                self._provider_accept(booking, actor)
            elif actor.is_admin or booking.client_id == actor.user_id:
                self._require_status(booking, BookingStatus.PENDING, "accept")
                if provider_id is not None and provider_id != booking.provider_id:
                    if booking.provider_id is not None:
                        raise InvalidState(f"Booking {booking.id} is already assigned to provider {booking.provider_id}")
                    if not self.directory.get_provider(provider_id):
                        raise NotFound(f"Provider {provider_id} not found")
                    booking.provider_id = provider_id
                if booking.provider_id is None:
                    raise InvalidState("A provider must be assigned before the booking can be accepted")
            else:
                raise PermissionDenied("Access denied")
            booking.status = BookingStatus.ACCEPTED.value
            booking.accepted_at = utcnow()
            self.db.flush()
        self._log_transition(kind, booking, actor, BookingStatus.ACCEPTED)
        self._notify_client(booking, "Booking accepted", f"A provider accepted your booking #{booking.id}.")
        return booking

    def _provider_accept(self, booking: Booking, actor: Actor) -> None:
        provider = self.directory.get_provider_by_user_id(actor.user_id)
        if not provider:
            raise NotFound(f"No provider profile for user {actor.user_id}")
        if booking.provider_id is None:
            # Claiming an unassigned request from the open market
            if provider.status != ProviderStatus.APPROVED.value:
                raise PermissionDenied(
                    f"Provider approval status is '{provider.status}'; "
                    f"only approved providers can accept requests"
                )
            self._require_status(booking, BookingStatus.PENDING, "accept")
            booking.provider_id = provider.id
        elif booking.provider_id == provider.id:
            self._require_status(booking, BookingStatus.PENDING, "accept")
        else:
            raise PermissionDenied("This booking is assigned to another provider")

    def start(self, kind: BookingKind, booking_id: int, actor: Actor) -> Booking:
        with self.unit_of_work():
            booking = self._load(kind, booking_id)
            self._require_owner(booking, actor, "start")
            self._require_status(booking, BookingStatus.ACCEPTED, "start")
            booking.status = BookingStatus.IN_PROGRESS.value
            self.db.flush()
        self._log_transition(kind, booking, actor, BookingStatus.IN_PROGRESS)
        self._notify_provider(booking, "Service started", f"Booking #{booking.id} is now in progress.")
        return booking

    def complete(self, kind: BookingKind, booking_id: int, actor: Actor) -> Booking:
        """Mark the service done and book the provider's earning with it."""
        with self.unit_of_work():
            booking = self._load(kind, booking_id)
            self._require_owner(booking, actor, "complete")
            if booking.status == BookingStatus.COMPLETED.value:
                raise InvalidState(f"Booking {booking.id} is already completed")
            self._require_status(booking, BookingStatus.IN_PROGRESS, "complete")
            booking.status = BookingStatus.COMPLETED.value
            booking.completed_at = utcnow()
            self.db.flush()
            earning = self.earnings.record_earning(booking)
        self._log_transition(kind, booking, actor, BookingStatus.COMPLETED)
        self._notify_provider(
            booking,
            "Service completed",
            f"Booking #{booking.id} was completed. {earning.provider_amount} was added to your balance.",
        )
        return booking

    def cancel(self, kind: BookingKind, booking_id: int, actor: Actor) -> Booking:
        with self.unit_of_work():
            booking = self._load(kind, booking_id)
            if not actor.is_admin:
                raise PermissionDenied("Only admins can cancel bookings")
            current = BookingStatus(booking.status)
            if current == BookingStatus.CANCELLED:
                raise InvalidState(f"Booking {booking.id} is already cancelled")
            if not can_transition(current, BookingStatus.CANCELLED):
                raise InvalidState(f"Cannot cancel booking {booking.id}: status is '{booking.status}'")
            booking.status = BookingStatus.CANCELLED.value
            self.db.flush()
        self._log_transition(kind, booking, actor, BookingStatus.CANCELLED)
        self._notify_client(booking, "Booking cancelled", f"Booking #{booking.id} was cancelled.")
        self._notify_provider(booking, "Booking cancelled", f"Booking #{booking.id} was cancelled.")
        return booking

    # --- general edit ---

    def _parse_changes(self, kind: BookingKind, changes: BookingUpdate) -> dict:
        data = changes.model_dump(exclude_unset=True)
        parsed = {}
        for field in _TEXT_FIELDS:
            if field in data:
                parsed[field] = data[field]
        if data.get("scheduled_at") is not None:
            parsed["scheduled_at"] = parse_timestamp(data["scheduled_at"], "scheduled_at")
        money = {f: data[f] for f in _MONEY_FIELDS if data.get(f) is not None}
        if money and kind == BookingKind.ORDER:
            raise ValidationError("Order amounts are derived from its items and cannot be edited directly")
        for field, value in money.items():
            parsed[field] = parse_positive_money(value, field)
        return parsed

    def edit(self, kind: BookingKind, booking_id: int, actor: Actor, changes: BookingUpdate) -> Booking:
        """Update address, schedule, notes or amounts regardless of status."""
        kind = BookingKind(kind)
        parsed = self._parse_changes(kind, changes)
        with self.unit_of_work():
            booking = self._load(kind, booking_id)
            if not self.can_update(booking, actor):
                raise PermissionDenied("Access denied")
            for field, value in parsed.items():
                setattr(booking, field, value)
            self.db.flush()
        self.logger.info(
            f"{_LABELS[kind]} {booking_id} edited by user {actor.user_id}",
            extra={'extra_fields': {'fields': sorted(parsed)}},
        )
        return booking

    # --- side effects ---

    def _log_transition(self, kind: BookingKind, booking: Booking, actor: Actor, status: BookingStatus) -> None:
        self.logger.info(
            f"{_LABELS[BookingKind(kind)]} {booking.id} -> {status.value}",
            extra={'extra_fields': {
                'booking_id': booking.id,
                'kind': BookingKind(kind).value,
                'status': status.value,
                'actor_id': actor.user_id,
                'provider_id': booking.provider_id,
            }},
        )

    def _notify_client(self, booking: Booking, title: str, message: str) -> None:
        self.notifier.notify(booking.client_id, title, message, kind="booking")

    def _notify_provider(self, booking: Booking, title: str, message: str) -> None:
        self.notifier.notify(self._provider_user_id(booking), title, message, kind="booking")
