from decimal import Decimal

import pytest

from marketplace.application.cart import CartService
from marketplace.application.schemas import (
    CartItemCreate, CartItemUpdate, CatalogServiceRef, ProviderServiceRef,
)
from marketplace.domain.exceptions import InvalidState, NotFound, ValidationError
from marketplace.domain.models import Order, OrderItem
from marketplace.domain.status import BookingStatus


def provider_item(listing, quantity=1, **kwargs):
    return CartItemCreate(ref=ProviderServiceRef(id=listing.id), quantity=quantity, **kwargs)

def catalog_item(listing, quantity=1, **kwargs):
    return CartItemCreate(ref=CatalogServiceRef(id=listing.id), quantity=quantity, **kwargs)


def test_get_or_create_returns_the_same_open_cart(db, seed):
    client = seed.user()
    service = CartService(db)
    first = service.get_or_create_cart(client.id)
    second = service.get_or_create_cart(client.id)
    assert first.id == second.id
    assert first.status == BookingStatus.CART.value
    assert first.total_amount == Decimal("0.00")
    assert db.query(Order).filter(Order.client_id == client.id).count() == 1

def test_get_cart_without_cart_is_not_found(db, seed):
    client = seed.user()
    with pytest.raises(NotFound):
        CartService(db).get_cart(client.id)

def test_add_item_uses_listing_price_and_updates_totals(db, seed):
    client = seed.user()
    listing = seed.provider_service(price="100.00")
    service = CartService(db)
    line = service.add_item(client.id, provider_item(listing, quantity=2))

    assert line.unit_price == Decimal("100.00")
    assert line.total_price == Decimal("200.00")
    cart = service.get_cart(client.id)
    assert cart.subtotal == Decimal("200.00")
    assert cart.service_amount == Decimal("20.00")
    assert cart.total_amount == Decimal("220.00")

def test_adding_same_listing_merges_quantities(db, seed):
    client = seed.user()
    listing = seed.provider_service(price="10.00")
    service = CartService(db)
    service.add_item(client.id, provider_item(listing, quantity=2))
    line = service.add_item(client.id, provider_item(listing, quantity=3))

    cart = service.get_cart(client.id)
    assert len(cart.items) == 1
    assert line.quantity == 5
    assert line.total_price == Decimal("50.00")
    assert cart.subtotal == Decimal("50.00")

def test_same_id_in_different_listing_kinds_is_not_merged(db, seed):
    client = seed.user()
    own = seed.provider_service(price="10.00")
    catalog = seed.catalog_service(price="20.00")
    assert own.id == catalog.id
    service = CartService(db)
    service.add_item(client.id, provider_item(own))
    service.add_item(client.id, catalog_item(catalog))
    assert len(service.get_cart(client.id).items) == 2

def test_explicit_unit_price_overrides_listing(db, seed):
    client = seed.user()
    listing = seed.catalog_service(price=None)
    line = CartService(db).add_item(client.id, catalog_item(listing, unit_price=Decimal("75.00")))
    assert line.unit_price == Decimal("75.00")
    assert line.charging_type == listing.default_charging_type

def test_listing_without_price_needs_unit_price(db, seed):
    client = seed.user()
    listing = seed.catalog_service(price=None)
    with pytest.raises(ValidationError):
        CartService(db).add_item(client.id, catalog_item(listing))
    assert db.query(OrderItem).count() == 0

def test_inactive_listing_is_rejected(db, seed):
    client = seed.user()
    listing = seed.provider_service(is_active=False)
    with pytest.raises(NotFound):
        CartService(db).add_item(client.id, provider_item(listing))

def test_listed_price_cannot_be_overridden(db, seed):
    client = seed.user()
    listing = seed.provider_service(price="100.00")
    service = CartService(db)
    with pytest.raises(ValidationError):
        service.add_item(client.id, provider_item(listing, unit_price=Decimal("0.01")))

    line = service.add_item(client.id, provider_item(listing, unit_price=Decimal("100.00")))
    with pytest.raises(ValidationError):
        service.update_item(line.id, CartItemUpdate(unit_price=Decimal("0.01")), client_id=client.id)
    assert service.get_cart(client.id).items[0].unit_price == Decimal("100.00")

def test_update_item_recomputes_totals(db, seed):
    client = seed.user()
    listing = seed.catalog_service(price=None)
    service = CartService(db)
    line = service.add_item(client.id, catalog_item(listing, unit_price=Decimal("10.00")))
    service.update_item(line.id, CartItemUpdate(quantity=4, unit_price=Decimal("12.50")), client_id=client.id)

    cart = service.get_cart(client.id)
    assert cart.items[0].total_price == Decimal("50.00")
    assert cart.subtotal == Decimal("50.00")
    assert cart.total_amount == Decimal("55.00")

def test_other_clients_cannot_touch_a_cart_line(db, seed):
    owner, intruder = seed.user(), seed.user()
    listing = seed.provider_service()
    service = CartService(db)
    line = service.add_item(owner.id, provider_item(listing))
    with pytest.raises(NotFound):
        service.remove_item(line.id, client_id=intruder.id)

def test_remove_item_recomputes_totals(db, seed):
    client = seed.user()
    first = seed.provider_service(price="10.00")
    second = seed.catalog_service(price="30.00")
    service = CartService(db)
    line = service.add_item(client.id, provider_item(first))
    service.add_item(client.id, catalog_item(second))

    cart = service.remove_item(line.id, client_id=client.id)
    assert len(cart.items) == 1
    assert cart.subtotal == Decimal("30.00")
    assert db.get(OrderItem, line.id) is None

def test_clear_cart_deletes_cart_and_items(db, seed):
    client = seed.user()
    listing = seed.provider_service()
    service = CartService(db)
    service.add_item(client.id, provider_item(listing))
    service.clear_cart(client.id)

    assert service.find_cart(client.id) is None
    assert db.query(OrderItem).count() == 0
    # Clearing again is harmless
    service.clear_cart(client.id)

def test_lines_of_a_placed_order_are_frozen(db, seed):
    client = seed.user()
    listing = seed.provider_service()
    service = CartService(db)
    line = service.add_item(client.id, provider_item(listing))
    cart = service.get_cart(client.id)
    cart.status = BookingStatus.PENDING.value
    db.commit()

    with pytest.raises(InvalidState):
        service.update_item(line.id, CartItemUpdate(quantity=3), client_id=client.id)
