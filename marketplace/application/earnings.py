from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.core_settings import get_settings
from marketplace.domain.actor import Actor
from marketplace.domain.exceptions import Conflict, InvalidState, PermissionDenied, ValidationError
from marketplace.domain.models import Order, ProviderEarning, ServiceRequest, SystemSetting
from marketplace.domain.pricing import CENT, ZERO, split_commission, to_money
from marketplace.infrastructure.repositories import SettingsRepository
from .base import BaseService
from .schemas import EarningsSummary

COMMISSION_RATE_KEY = "commission_rate"

Booking = Union[Order, ServiceRequest]


def parse_commission_rate(value) -> Decimal:
    try:
        rate = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Commission rate must be a number between 0 and 100, got '{value}'")
    if not rate.is_finite() or rate < 0 or rate > 100:
        raise ValidationError(f"Commission rate must be a number between 0 and 100, got '{value}'")
    if rate != rate.quantize(CENT):
        raise ValidationError(f"Commission rate allows at most 2 decimal places, got '{value}'")
    return rate


class EarningsService(BaseService):
    """Commission split and the one-earning-per-completed-booking ledger."""

    def __init__(self, db: Session, settings_repo: Optional[SettingsRepository] = None):
        super().__init__(db)
        self.settings_repo = settings_repo or SettingsRepository(db)

    def current_commission_rate(self) -> Decimal:
        default = Decimal(str(get_settings().DEFAULT_COMMISSION_RATE))
        setting = self.settings_repo.get_system_setting(COMMISSION_RATE_KEY)
        if setting is None or setting.value is None or not setting.value.strip():
            return default
        try:
            return parse_commission_rate(setting.value)
        except ValidationError:
            self.logger.warning(
                f"Ignoring unreadable commission_rate setting '{setting.value}', using {default}%",
            )
            return default

    @staticmethod
    def _source_filter(booking: Booking):
        if isinstance(booking, Order):
            return ProviderEarning.order_id == booking.id
        return ProviderEarning.service_request_id == booking.id

    def _existing(self, booking: Booking) -> Optional[ProviderEarning]:
        return self.db.scalars(select(ProviderEarning).where(self._source_filter(booking)).limit(1)).first()

    def record_earning(self, booking: Booking) -> ProviderEarning:
        """Insert the earning for a completed booking inside the caller's transaction.

        A second call for the same booking returns the row already there.
        """
        if booking.provider_id is None:
            raise InvalidState(f"Provider ID is required for earning calculation (booking {booking.id})")
        if booking.total_amount is None:
            raise InvalidState(f"Total amount is required for earning calculation (booking {booking.id})")

        existing = self._existing(booking)
        if existing:
            self.logger.info(f"Earning already recorded for booking {booking.id}")
            return existing

        split = split_commission(booking.total_amount, self.current_commission_rate())
        earning = ProviderEarning(
            provider_id=booking.provider_id,
            total_amount=split.total_amount,
            commission_rate=split.commission_rate,
            commission_amount=split.commission_amount,
            provider_amount=split.provider_amount,
            is_withdrawn=False,
        )
        if isinstance(booking, Order):
            earning.order_id = booking.id
        else:
            earning.service_request_id = booking.id

        try:
            with self.db.begin_nested():
                self.db.add(earning)
        except IntegrityError:
            # Concurrent completion won the unique key
            existing = self._existing(booking)
            if existing:
                self.logger.info(f"Earning for booking {booking.id} was recorded concurrently")
                return existing
            raise Conflict(f"Could not record earning for booking {booking.id}")

        self.logger.info(
            f"Recorded earning for provider {booking.provider_id}: {split.provider_amount} "
            f"(total {split.total_amount}, commission {split.commission_rate}%)",
            extra={'extra_fields': {
                'earning_id': earning.id,
                'provider_id': booking.provider_id,
                'total_amount': split.total_amount,
                'commission_amount': split.commission_amount,
                'provider_amount': split.provider_amount,
            }},
        )
        return earning

    def create_provider_earning(self, booking: Booking) -> ProviderEarning:
        with self.unit_of_work():
            earning = self.record_earning(booking)
        return earning

    def get_provider_earnings(self, provider_id: int) -> List[ProviderEarning]:
        return list(self.db.scalars(
            select(ProviderEarning)
            .where(ProviderEarning.provider_id == provider_id)
            .order_by(ProviderEarning.created_at.desc(), ProviderEarning.id.desc())
        ))

    def list_all_earnings(self) -> List[ProviderEarning]:
        return list(self.db.scalars(
            select(ProviderEarning).order_by(ProviderEarning.created_at.desc(), ProviderEarning.id.desc())
        ))

    def get_available_balance(self, provider_id: int) -> Decimal:
        total = self.db.scalar(
            select(func.coalesce(func.sum(ProviderEarning.provider_amount), 0))
            .where(ProviderEarning.provider_id == provider_id, ProviderEarning.is_withdrawn.is_(False))
        )
        return to_money(total)

    def get_earnings_summary(self, provider_id: int) -> EarningsSummary:
        earned = withdrawn = commission = ZERO
        earnings = self.get_provider_earnings(provider_id)
        for earning in earnings:
            earned += earning.provider_amount
            commission += earning.commission_amount
            if earning.is_withdrawn:
                withdrawn += earning.provider_amount
        return EarningsSummary(
            provider_id=provider_id,
            total_earned=to_money(earned),
            total_withdrawn=to_money(withdrawn),
            available_balance=to_money(earned - withdrawn),
            total_commission=to_money(commission),
            earnings_count=len(earnings),
        )


class SystemSettingsService(BaseService):
    def __init__(self, db: Session, settings_repo: Optional[SettingsRepository] = None):
        super().__init__(db)
        self.settings_repo = settings_repo or SettingsRepository(db)

    def get_system_setting(self, key: str) -> Optional[SystemSetting]:
        return self.settings_repo.get_system_setting(key)

    def set_system_setting(self, actor: Actor, key: str, value: str, description: Optional[str] = None) -> SystemSetting:
        if not actor.is_admin:
            raise PermissionDenied("Only admins can change system settings")
        if key == COMMISSION_RATE_KEY:
            value = str(parse_commission_rate(value))
        with self.unit_of_work():
            setting = self.settings_repo.set_system_setting(key, value, description)
        self.logger.info(
            f"System setting {key} set by admin {actor.user_id}",
            extra={'extra_fields': {'key': key, 'value': value}},
        )
        return setting
