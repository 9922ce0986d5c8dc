from typing import Iterable, Optional

from sqlalchemy.orm import Session

from marketplace.domain.exceptions import NotFound, ValidationError
from marketplace.domain.models import Order, OrderItem
from marketplace.domain.pricing import format_money, line_total, parse_timestamp, to_money
from marketplace.domain.status import BookingStatus
from marketplace.infrastructure.notifications import NotificationDispatcher
from marketplace.infrastructure.repositories import CatalogRepository, DirectoryRepository
from .base import BaseService
from .cart import CartService, apply_totals
from .schemas import CheckoutData, OrderCreate

# Checkout fields copied verbatim onto the order row
_CHECKOUT_FIELDS = (
    "payment_method", "coupon_code", "address", "cep", "city", "state",
    "latitude", "longitude", "scheduled_at", "notes",
)


def resolve_provider(items: Iterable[OrderItem], catalog: CatalogRepository) -> Optional[int]:
    """Pick the single provider that fulfils every line.

    Provider-service lines pin their owner; catalog lines can be served by
    anyone and add no constraint. Returns None when nothing pins a provider.
    """
    providers = set()
    for item in items:
        if item.provider_service_id is None:
            continue
        listing = catalog.get_provider_service(item.provider_service_id)
        if not listing:
            raise NotFound(f"Provider service {item.provider_service_id} not found")
        providers.add(listing.provider_id)
    if len(providers) > 1:
        raise ValidationError(
            f"Cart contains services from {len(providers)} different providers. "
            f"Please split it into one order per provider."
        )
    return providers.pop() if providers else None


class CheckoutService(BaseService):
    """Turns a cart (or a paid item list) into a single-provider order awaiting acceptance."""

    def __init__(
        self,
        db: Session,
        catalog: Optional[CatalogRepository] = None,
        directory: Optional[DirectoryRepository] = None,
        notifier: Optional[NotificationDispatcher] = None,
    ):
        super().__init__(db)
        self.catalog = catalog or CatalogRepository(db)
        self.directory = directory or DirectoryRepository(db)
        self.notifier = notifier or NotificationDispatcher()
        self.carts = CartService(db, self.catalog)

    def _apply_checkout(self, order: Order, data: CheckoutData) -> None:
        for field in _CHECKOUT_FIELDS:
            value = getattr(data, field)
            if value is None:
                continue
            if field == "scheduled_at":
                value = parse_timestamp(value, field)
            setattr(order, field, value)
        order.discount_amount = to_money(data.discount_amount)
        apply_totals(order)

    def convert_cart_to_order(self, client_id: int, data: CheckoutData) -> Order:
        """Convert the client's cart row in place into a pending order."""
        with self.unit_of_work():
            cart = self.carts.find_cart(client_id, lock=True)
            if not cart:
                raise NotFound("Cart not found")
            if not cart.items:
                raise ValidationError("Cart is empty")
            provider_id = resolve_provider(cart.items, self.catalog)
            self._apply_checkout(cart, data)
            cart.provider_id = provider_id
            cart.status = BookingStatus.PENDING.value
            self.db.flush()
        self.logger.info(
            f"Checked out cart {cart.id} for client {client_id}",
            extra={'extra_fields': {
                'order_id': cart.id,
                'provider_id': provider_id,
                'total_amount': cart.total_amount,
            }},
        )
        self._announce(cart)
        return cart

    def create_order_from_data(self, data: OrderCreate) -> Order:
        """Insert a pending order and its lines after an external payment confirmation.

        Prices and totals are recomputed from the listings. A client unit
        price is only taken for listings without a fixed price.
        """
        with self.unit_of_work():
            order = Order(client_id=data.client_id, status=BookingStatus.PENDING.value)
            for item_data in data.items:
                line = CartService.matching_line(order, item_data.ref)
                if line:
                    line.quantity += item_data.quantity
                    line.total_price = line_total(line.quantity, line.unit_price)
                else:
                    order.items.append(self.carts.build_item(item_data))
            order.provider_id = resolve_provider(order.items, self.catalog)
            self._apply_checkout(order, data)
            self.db.add(order)
            self.db.flush()
        self.logger.info(
            f"Created order {order.id} from payment data for client {data.client_id}",
            extra={'extra_fields': {'order_id': order.id, 'total_amount': order.total_amount}},
        )
        self._announce(order)
        return order

    def _announce(self, order: Order) -> None:
        self.notifier.notify(
            order.client_id,
            "Order placed",
            f"Order #{order.id} ({format_money(order.total_amount)}) is waiting for a provider to accept it.",
            kind="order",
        )
        if order.provider_id is None:
            return
        provider = self.directory.get_provider(order.provider_id)
        if provider:
            self.notifier.notify(
                provider.user_id,
                "New order",
                f"Order #{order.id} is waiting for your acceptance.",
                kind="order",
            )
