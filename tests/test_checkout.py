from decimal import Decimal

import pytest

from marketplace.application.cart import CartService
from marketplace.application.checkout import CheckoutService
from marketplace.application.schemas import (
    CartItemCreate, CatalogServiceRef, CheckoutData, OrderCreate, ProviderServiceRef,
)
from marketplace.domain.exceptions import NotFound, ValidationError
from marketplace.domain.models import Order
from marketplace.domain.status import BookingStatus


def test_checkout_converts_cart_in_place(db, seed, notifier):
    client = seed.user()
    provider = seed.provider()
    listing = seed.provider_service(provider=provider, price="100.00")
    carts = CartService(db)
    carts.add_item(client.id, CartItemCreate(ref=ProviderServiceRef(id=listing.id), quantity=2))
    cart_id = carts.get_cart(client.id).id

    order = CheckoutService(db, notifier=notifier).convert_cart_to_order(
        client.id,
        CheckoutData(payment_method="pix", address="Rua A, 10", city="Recife", discount_amount=Decimal("5.00")),
    )

    assert order.id == cart_id
    assert order.status == BookingStatus.PENDING.value
    assert order.provider_id == provider.id
    assert order.subtotal == Decimal("200.00")
    assert order.service_amount == Decimal("20.00")
    assert order.total_amount == Decimal("215.00")
    assert order.city == "Recife"
    assert carts.find_cart(client.id) is None
    assert {n["user_id"] for n in notifier.sent} == {client.id, provider.user_id}

def test_catalog_lines_follow_the_pinned_provider(db, seed, notifier):
    client = seed.user()
    provider = seed.provider()
    own = seed.provider_service(provider=provider, price="50.00")
    other_own = seed.provider_service(provider=provider, price="30.00")
    catalog = seed.catalog_service(price="20.00")
    carts = CartService(db)
    carts.add_item(client.id, CartItemCreate(ref=ProviderServiceRef(id=own.id)))
    carts.add_item(client.id, CartItemCreate(ref=ProviderServiceRef(id=other_own.id)))
    carts.add_item(client.id, CartItemCreate(ref=CatalogServiceRef(id=catalog.id)))

    order = CheckoutService(db, notifier=notifier).convert_cart_to_order(client.id, CheckoutData())
    assert order.provider_id == provider.id
    assert order.subtotal == Decimal("100.00")

def test_catalog_only_cart_has_no_provider_yet(db, seed, notifier):
    client = seed.user()
    catalog = seed.catalog_service(price="20.00")
    CartService(db).add_item(client.id, CartItemCreate(ref=CatalogServiceRef(id=catalog.id)))

    order = CheckoutService(db, notifier=notifier).convert_cart_to_order(client.id, CheckoutData())
    assert order.provider_id is None
    assert order.status == BookingStatus.PENDING.value

def test_multi_provider_cart_is_rejected_and_left_untouched(db, seed, notifier):
    client = seed.user()
    first = seed.provider_service(price="10.00")
    second = seed.provider_service(price="20.00")
    carts = CartService(db)
    carts.add_item(client.id, CartItemCreate(ref=ProviderServiceRef(id=first.id)))
    carts.add_item(client.id, CartItemCreate(ref=ProviderServiceRef(id=second.id)))

    with pytest.raises(ValidationError) as exc:
        CheckoutService(db, notifier=notifier).convert_cart_to_order(
            client.id, CheckoutData(payment_method="pix")
        )

    assert "2 different providers" in exc.value.message
    cart = carts.get_cart(client.id)
    assert cart.status == BookingStatus.CART.value
    assert cart.payment_method is None
    assert len(cart.items) == 2
    assert notifier.sent == []

def test_checkout_without_cart_is_not_found(db, seed, notifier):
    client = seed.user()
    with pytest.raises(NotFound) as exc:
        CheckoutService(db, notifier=notifier).convert_cart_to_order(client.id, CheckoutData())
    assert exc.value.message == "Cart not found"

def test_empty_cart_cannot_be_checked_out(db, seed, notifier):
    client = seed.user()
    CartService(db).get_or_create_cart(client.id)
    with pytest.raises(ValidationError):
        CheckoutService(db, notifier=notifier).convert_cart_to_order(client.id, CheckoutData())

def test_client_can_open_a_new_cart_after_checkout(db, seed, notifier):
    client = seed.user()
    listing = seed.provider_service()
    carts = CartService(db)
    carts.add_item(client.id, CartItemCreate(ref=ProviderServiceRef(id=listing.id)))
    order = CheckoutService(db, notifier=notifier).convert_cart_to_order(client.id, CheckoutData())

    fresh = carts.get_or_create_cart(client.id)
    assert fresh.id != order.id
    assert fresh.items == []

def test_order_from_payment_data_recomputes_prices(db, seed, notifier):
    client = seed.user()
    provider = seed.provider()
    listing = seed.provider_service(provider=provider, price="40.00")
    data = OrderCreate(
        client_id=client.id,
        payment_method="credit_card",
        items=[
            CartItemCreate(ref=ProviderServiceRef(id=listing.id), quantity=1),
            CartItemCreate(ref=ProviderServiceRef(id=listing.id), quantity=2),
        ],
    )

    order = CheckoutService(db, notifier=notifier).create_order_from_data(data)

    assert order.status == BookingStatus.PENDING.value
    assert order.provider_id == provider.id
    assert len(order.items) == 1
    assert order.items[0].quantity == 3
    assert order.total_amount == Decimal("132.00")
    assert db.query(Order).filter(Order.status == BookingStatus.CART.value).count() == 0

def test_order_from_payment_data_rejects_client_prices_below_listing(db, seed, notifier):
    client = seed.user()
    listing = seed.provider_service(price="100.00")
    data = OrderCreate(
        client_id=client.id,
        items=[CartItemCreate(ref=ProviderServiceRef(id=listing.id), unit_price=Decimal("0.01"))],
    )
    with pytest.raises(ValidationError) as exc:
        CheckoutService(db, notifier=notifier).create_order_from_data(data)
    assert "listed at 100.00" in exc.value.message
    assert db.query(Order).count() == 0

def test_order_from_payment_data_rejects_mixed_providers(db, seed, notifier):
    client = seed.user()
    first = seed.provider_service()
    second = seed.provider_service()
    data = OrderCreate(
        client_id=client.id,
        items=[
            CartItemCreate(ref=ProviderServiceRef(id=first.id)),
            CartItemCreate(ref=ProviderServiceRef(id=second.id)),
        ],
    )
    with pytest.raises(ValidationError):
        CheckoutService(db, notifier=notifier).create_order_from_data(data)
    assert db.query(Order).count() == 0
