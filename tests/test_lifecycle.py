from decimal import Decimal

import pytest

from marketplace.application.earnings import EarningsService
from marketplace.application.lifecycle import BookingLifecycleService
from marketplace.application.schemas import BookingUpdate
from marketplace.domain.exceptions import InvalidState, NotFound, PermissionDenied, ValidationError
from marketplace.domain.models import Order, ProviderEarning
from marketplace.domain.status import BookingKind, BookingStatus, ProviderStatus, UserRole

REQUEST = BookingKind.SERVICE_REQUEST


@pytest.fixture
def lifecycle(db, notifier):
    return BookingLifecycleService(db, notifier=notifier)


@pytest.fixture
def parties(seed, actor_for):
    client = seed.user()
    provider = seed.provider()
    admin = seed.user(UserRole.ADMIN)
    return {
        "client": actor_for(client),
        "provider": actor_for(provider.user),
        "provider_row": provider,
        "admin": actor_for(admin),
        "client_user": client,
    }


def test_full_lifecycle_records_one_earning(db, seed, lifecycle, parties, notifier):
    request = seed.service_request(parties["client_user"], total="200.00")

    lifecycle.transition(REQUEST, request.id, parties["provider"], "accepted")
    lifecycle.transition(REQUEST, request.id, parties["client"], "in_progress")
    done = lifecycle.transition(REQUEST, request.id, parties["client"], "completed")

    assert done.status == BookingStatus.COMPLETED.value
    assert done.provider_id == parties["provider_row"].id
    assert done.accepted_at is not None
    assert done.completed_at is not None
    earnings = db.query(ProviderEarning).all()
    assert len(earnings) == 1
    assert earnings[0].service_request_id == request.id
    assert earnings[0].provider_amount == Decimal("192.00")
    assert any(n["title"] == "Service completed" for n in notifier.sent)

def test_complete_from_pending_fails_without_earning(db, seed, lifecycle, parties):
    request = seed.service_request(parties["client_user"], provider=parties["provider_row"])
    with pytest.raises(InvalidState):
        lifecycle.complete(REQUEST, request.id, parties["client"])
    assert db.query(ProviderEarning).count() == 0
    assert lifecycle.get(REQUEST, request.id).status == BookingStatus.PENDING.value

def test_completing_twice_is_rejected(db, seed, lifecycle, parties):
    request = seed.service_request(
        parties["client_user"], status=BookingStatus.IN_PROGRESS, provider=parties["provider_row"]
    )
    lifecycle.complete(REQUEST, request.id, parties["client"])
    with pytest.raises(InvalidState) as exc:
        lifecycle.complete(REQUEST, request.id, parties["client"])
    assert "already completed" in exc.value.message
    assert db.query(ProviderEarning).count() == 1

def test_unapproved_provider_cannot_claim(db, seed, lifecycle, parties, actor_for):
    pending = seed.provider(status=ProviderStatus.PENDING)
    request = seed.service_request(parties["client_user"])
    with pytest.raises(PermissionDenied) as exc:
        lifecycle.accept(REQUEST, request.id, actor_for(pending.user))
    assert exc.value.message == (
        "Provider approval status is 'pending'; only approved providers can accept requests"
    )
    assert lifecycle.get(REQUEST, request.id).provider_id is None

def test_provider_cannot_accept_someone_elses_booking(seed, lifecycle, parties, actor_for):
    other = seed.provider()
    request = seed.service_request(parties["client_user"], provider=parties["provider_row"])
    with pytest.raises(PermissionDenied):
        lifecycle.accept(REQUEST, request.id, actor_for(other.user))

def test_client_accept_needs_a_provider(seed, lifecycle, parties):
    request = seed.service_request(parties["client_user"])
    with pytest.raises(InvalidState):
        lifecycle.accept(REQUEST, request.id, parties["client"])

def test_client_can_assign_provider_on_accept(seed, lifecycle, parties):
    request = seed.service_request(parties["client_user"])
    accepted = lifecycle.accept(REQUEST, request.id, parties["client"], provider_id=parties["provider_row"].id)
    assert accepted.provider_id == parties["provider_row"].id
    assert accepted.status == BookingStatus.ACCEPTED.value

def test_accept_with_unknown_provider_is_not_found(seed, lifecycle, parties):
    request = seed.service_request(parties["client_user"])
    with pytest.raises(NotFound):
        lifecycle.accept(REQUEST, request.id, parties["admin"], provider_id=999)

def test_only_owner_starts_and_completes(seed, lifecycle, parties, actor_for):
    stranger = actor_for(seed.user())
    request = seed.service_request(
        parties["client_user"], status=BookingStatus.ACCEPTED, provider=parties["provider_row"]
    )
    with pytest.raises(PermissionDenied):
        lifecycle.start(REQUEST, request.id, stranger)
    with pytest.raises(PermissionDenied):
        lifecycle.start(REQUEST, request.id, parties["provider"])
    assert lifecycle.start(REQUEST, request.id, parties["client"]).status == BookingStatus.IN_PROGRESS.value

def test_start_requires_accepted(seed, lifecycle, parties):
    request = seed.service_request(parties["client_user"], provider=parties["provider_row"])
    with pytest.raises(InvalidState):
        lifecycle.start(REQUEST, request.id, parties["client"])

def test_cancel_is_admin_only_and_not_from_terminal(seed, lifecycle, parties):
    request = seed.service_request(parties["client_user"], status=BookingStatus.ACCEPTED)
    with pytest.raises(PermissionDenied):
        lifecycle.cancel(REQUEST, request.id, parties["client"])
    assert lifecycle.cancel(REQUEST, request.id, parties["admin"]).status == BookingStatus.CANCELLED.value
    with pytest.raises(InvalidState):
        lifecycle.cancel(REQUEST, request.id, parties["admin"])

    done = seed.service_request(parties["client_user"], status=BookingStatus.COMPLETED)
    with pytest.raises(InvalidState):
        lifecycle.cancel(REQUEST, done.id, parties["admin"])

def test_legacy_status_names_and_unknown_status(seed, lifecycle, parties):
    request = seed.service_request(parties["client_user"])
    with pytest.raises(InvalidState):
        lifecycle.transition(REQUEST, request.id, parties["admin"], "confirmed")
    with pytest.raises(ValidationError):
        lifecycle.transition(REQUEST, request.id, parties["admin"], "teleported")

def test_missing_booking_is_not_found(lifecycle, parties):
    with pytest.raises(NotFound):
        lifecycle.start(REQUEST, 12345, parties["client"])

def test_order_lifecycle_records_order_earning(db, seed, lifecycle, parties):
    order = Order(
        client_id=parties["client_user"].id,
        provider_id=parties["provider_row"].id,
        status=BookingStatus.PENDING.value,
        subtotal=Decimal("100.00"),
        service_amount=Decimal("10.00"),
        discount_amount=Decimal("0.00"),
        total_amount=Decimal("110.00"),
    )
    db.add(order)
    db.commit()

    lifecycle.transition(BookingKind.ORDER, order.id, parties["provider"], "accepted")
    lifecycle.transition(BookingKind.ORDER, order.id, parties["client"], "in_progress")
    lifecycle.transition(BookingKind.ORDER, order.id, parties["client"], "completed")

    earning = EarningsService(db).get_provider_earnings(parties["provider_row"].id)[0]
    assert earning.order_id == order.id
    assert earning.service_request_id is None
    assert earning.total_amount == Decimal("110.00")

def test_cart_is_not_a_booking(db, seed, lifecycle, parties):
    cart = Order(client_id=parties["client_user"].id, status=BookingStatus.CART.value)
    db.add(cart)
    db.commit()
    with pytest.raises(InvalidState):
        lifecycle.accept(BookingKind.ORDER, cart.id, parties["admin"])

def test_edit_parses_input_before_writing(seed, lifecycle, parties):
    request = seed.service_request(parties["client_user"], provider=parties["provider_row"])
    with pytest.raises(ValidationError):
        lifecycle.edit(REQUEST, request.id, parties["client"], BookingUpdate(city="Olinda", final_price="abc"))
    assert lifecycle.get(REQUEST, request.id).city is None

    edited = lifecycle.edit(
        REQUEST, request.id, parties["provider"],
        BookingUpdate(city="Olinda", final_price="150", scheduled_at="2024-06-01T09:00:00Z"),
    )
    assert edited.city == "Olinda"
    assert edited.final_price == Decimal("150.00")
    assert edited.scheduled_at.year == 2024

def test_edit_requires_a_party_to_the_booking(seed, lifecycle, parties, actor_for):
    request = seed.service_request(parties["client_user"])
    with pytest.raises(PermissionDenied):
        lifecycle.edit(REQUEST, request.id, actor_for(seed.user()), BookingUpdate(notes="hi"))
