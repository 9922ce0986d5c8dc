from dataclasses import dataclass

from .status import UserRole


@dataclass(frozen=True)
class Actor:
    """The authenticated user an operation is performed on behalf of."""
    user_id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_provider(self) -> bool:
        return self.role == UserRole.PROVIDER
