from decimal import Decimal

import pytest

from marketplace.application.earnings import EarningsService, SystemSettingsService
from marketplace.domain.exceptions import InvalidState, PermissionDenied, ValidationError
from marketplace.domain.models import ProviderEarning
from marketplace.domain.status import BookingStatus, UserRole


def completed_request(seed, provider, total="100.00"):
    return seed.service_request(seed.user(), total=total, status=BookingStatus.COMPLETED, provider=provider)


def test_default_commission_is_four_percent(db, seed):
    provider = seed.provider()
    earning = EarningsService(db).create_provider_earning(completed_request(seed, provider))
    assert earning.commission_rate == Decimal("4.00")
    assert earning.commission_amount == Decimal("4.00")
    assert earning.provider_amount == Decimal("96.00")
    assert earning.is_withdrawn is False

def test_commission_rate_comes_from_system_setting(db, seed):
    seed.setting("commission_rate", "12.5")
    provider = seed.provider()
    earning = EarningsService(db).create_provider_earning(completed_request(seed, provider, total="80.00"))
    assert earning.commission_amount == Decimal("10.00")
    assert earning.provider_amount == Decimal("70.00")

def test_earning_snapshot_rate_reproduces_commission(db, seed):
    seed.setting("commission_rate", "12.55")
    provider = seed.provider()
    earning = EarningsService(db).create_provider_earning(completed_request(seed, provider, total="1000.00"))
    assert earning.commission_rate == Decimal("12.55")
    assert earning.commission_amount == Decimal("125.50")
    assert earning.commission_amount == earning.total_amount * earning.commission_rate / 100

def test_unreadable_commission_setting_falls_back_to_default(db, seed):
    seed.setting("commission_rate", "lots")
    assert EarningsService(db).current_commission_rate() == Decimal("4")

def test_recording_twice_returns_the_same_earning(db, seed):
    provider = seed.provider()
    request = completed_request(seed, provider)
    service = EarningsService(db)
    first = service.create_provider_earning(request)
    second = service.create_provider_earning(request)
    assert first.id == second.id
    assert db.query(ProviderEarning).count() == 1

class LateEarningsService(EarningsService):
    """Misses the pre-insert lookup once, as a concurrent completion would."""

    def __init__(self, db):
        super().__init__(db)
        self.missed = False

    def _existing(self, booking):
        if not self.missed:
            self.missed = True
            return None
        return super()._existing(booking)

def test_unique_key_race_resolves_to_existing_row(db, seed):
    provider = seed.provider()
    request = completed_request(seed, provider)
    first = EarningsService(db).create_provider_earning(request)

    second = LateEarningsService(db).create_provider_earning(request)

    assert second.id == first.id
    assert db.query(ProviderEarning).count() == 1


def test_earning_needs_provider_and_total(db, seed):
    client = seed.user()
    no_provider = seed.service_request(client, status=BookingStatus.COMPLETED)
    with pytest.raises(InvalidState):
        EarningsService(db).create_provider_earning(no_provider)

    no_total = seed.service_request(client, total=None, status=BookingStatus.COMPLETED, provider=seed.provider())
    with pytest.raises(InvalidState):
        EarningsService(db).create_provider_earning(no_total)

def test_balance_and_summary(db, seed):
    provider = seed.provider()
    service = EarningsService(db)
    first = service.create_provider_earning(completed_request(seed, provider, total="100.00"))
    service.create_provider_earning(completed_request(seed, provider, total="50.00"))
    first.is_withdrawn = True
    db.commit()

    assert service.get_available_balance(provider.id) == Decimal("48.00")
    summary = service.get_earnings_summary(provider.id)
    assert summary.total_earned == Decimal("144.00")
    assert summary.total_withdrawn == Decimal("96.00")
    assert summary.available_balance == Decimal("48.00")
    assert summary.total_commission == Decimal("6.00")
    assert summary.earnings_count == 2

def test_balance_is_zero_without_earnings(db, seed):
    assert EarningsService(db).get_available_balance(seed.provider().id) == Decimal("0.00")

def test_only_admin_changes_settings(db, seed, actor_for):
    client = actor_for(seed.user())
    admin = actor_for(seed.user(UserRole.ADMIN))
    service = SystemSettingsService(db)
    with pytest.raises(PermissionDenied):
        service.set_system_setting(client, "commission_rate", "5")
    with pytest.raises(ValidationError):
        service.set_system_setting(admin, "commission_rate", "150")

    with pytest.raises(ValidationError):
        service.set_system_setting(admin, "commission_rate", "12.555")

    service.set_system_setting(admin, "commission_rate", "5")
    assert service.get_system_setting("commission_rate").value == "5"
    assert EarningsService(db).current_commission_rate() == Decimal("5")
