from enum import Enum
from typing import Dict, FrozenSet

from .exceptions import ValidationError


class BookingStatus(str, Enum):
    """Canonical status vocabulary shared by orders and service requests."""
    CART = "cart"
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UserRole(str, Enum):
    CLIENT = "client"
    PROVIDER = "provider"
    ADMIN = "admin"
    EMPLOYEE = "employee"


class ProviderStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class ChargingType(str, Enum):
    VISIT = "visit"
    HOUR = "hour"
    DAILY = "daily"
    PACKAGE = "package"
    QUOTE = "quote"
    SERVICO = "servico"
    PROJECT = "project"


# Older callers still send these; both mean "paid, waiting for a provider".
LEGACY_STATUS_ALIASES: Dict[str, BookingStatus] = {
    "confirmed": BookingStatus.PENDING,
    "pending_payment": BookingStatus.PENDING,
}

ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.CART: frozenset({BookingStatus.PENDING}),
    BookingStatus.PENDING: frozenset({BookingStatus.ACCEPTED, BookingStatus.CANCELLED}),
    BookingStatus.ACCEPTED: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


def normalize_status(value) -> BookingStatus:
    """Map any status string a caller may send onto the canonical enum."""
    if isinstance(value, BookingStatus):
        return value
    raw = str(value or "").strip().lower()
    if raw in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[raw]
    try:
        return BookingStatus(raw)
    except ValueError:
        raise ValidationError(f"Unknown status '{value}'")


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class BookingKind(str, Enum):
    """Which table a booking lives in; both share the lifecycle above."""
    ORDER = "order"
    SERVICE_REQUEST = "service_request"
