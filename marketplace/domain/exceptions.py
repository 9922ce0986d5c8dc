"""Typed errors raised by the booking core.

The HTTP adapter maps each class to a status code; nothing in the core knows
about HTTP.
"""


class MarketplaceError(Exception):
    """Base class for every error the core raises on purpose."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(MarketplaceError):
    """Cart, order, request, provider, listing or earning is absent."""


class PermissionDenied(MarketplaceError):
    """Actor lacks the role or ownership the operation needs."""


class InvalidState(MarketplaceError):
    """Transition attempted from a status that does not permit it."""


class ValidationError(MarketplaceError):
    """Malformed money/date input or a cart that cannot become one order."""


class Conflict(MarketplaceError):
    """Duplicate write race or insufficient withdrawal balance."""
