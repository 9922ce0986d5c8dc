from typing import Optional, Tuple
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.domain.exceptions import InvalidState, NotFound, ValidationError
from marketplace.domain.models import Order, OrderItem
from marketplace.domain.pricing import ZERO, compute_totals, format_money, line_total, to_money
from marketplace.domain.status import BookingStatus
from marketplace.infrastructure.repositories import CatalogRepository
from .base import BaseService
from .schemas import CartItemCreate, CartItemUpdate, CatalogServiceRef, ProviderServiceRef


def apply_totals(order: Order) -> None:
    """Recompute the order's money fields from its current lines."""
    totals = compute_totals((item.total_price for item in order.items), order.discount_amount)
    order.subtotal = totals.subtotal
    order.service_amount = totals.service_amount
    order.discount_amount = totals.discount_amount
    order.total_amount = totals.total_amount


class CartService(BaseService):
    """A client's draft order: one open cart per client, merged lines, live totals."""

    def __init__(self, db: Session, catalog: Optional[CatalogRepository] = None):
        super().__init__(db)
        self.catalog = catalog or CatalogRepository(db)

    def find_cart(self, client_id: int, lock: bool = False) -> Optional[Order]:
        stmt = select(Order).where(
            Order.client_id == client_id,
            Order.status == BookingStatus.CART.value,
        ).limit(1)
        if lock:
            stmt = stmt.with_for_update()
        return self.db.scalars(stmt).first()

    def get_cart(self, client_id: int) -> Order:
        cart = self.find_cart(client_id)
        if not cart:
            raise NotFound(f"No open cart for client {client_id}")
        return cart

    def _get_or_create_locked(self, client_id: int) -> Order:
        cart = self.find_cart(client_id, lock=True)
        if cart:
            return cart
        cart = Order(
            client_id=client_id,
            status=BookingStatus.CART.value,
            subtotal=ZERO,
            discount_amount=ZERO,
            service_amount=ZERO,
            total_amount=ZERO,
        )
        try:
            with self.db.begin_nested():
                self.db.add(cart)
        except IntegrityError:
            # Another request opened the cart first
            cart = self.find_cart(client_id, lock=True)
            if not cart:
                raise
            return cart
        self.logger.info(
            f"Opened cart {cart.id} for client {client_id}",
            extra={'extra_fields': {'order_id': cart.id, 'client_id': client_id}},
        )
        return cart

    def get_or_create_cart(self, client_id: int) -> Order:
        with self.unit_of_work():
            cart = self._get_or_create_locked(client_id)
        return cart

    def resolve_listing(self, ref) -> Tuple[object, Optional[Decimal], str]:
        """Return (listing, listed price, charging type) for an item reference."""
        if isinstance(ref, ProviderServiceRef):
            listing = self.catalog.get_provider_service(ref.id)
            if not listing or not listing.is_active:
                raise NotFound(f"Provider service {ref.id} not found")
            return listing, listing.price, listing.charging_type
        if isinstance(ref, CatalogServiceRef):
            listing = self.catalog.get_catalog_service(ref.id)
            if not listing or not listing.is_active:
                raise NotFound(f"Catalog service {ref.id} not found")
            return listing, listing.price, listing.default_charging_type
        raise ValidationError("Item must reference a provider service or a catalog service")

    @staticmethod
    def line_price(label: str, listed_price, requested) -> Decimal:
        """A listed price is authoritative; a caller's price only fills in for unpriced listings."""
        if listed_price is not None:
            if requested is not None and to_money(requested) != to_money(listed_price):
                raise ValidationError(
                    f"{label} is listed at {format_money(listed_price)}; "
                    f"unit price {format_money(requested)} is not accepted"
                )
            return to_money(listed_price)
        if requested is None:
            raise ValidationError(f"{label} has no fixed price; a unit price is required")
        return to_money(requested)

    def build_item(self, data: CartItemCreate) -> OrderItem:
        _, listed_price, charging_type = self.resolve_listing(data.ref)
        label = f"{data.ref.kind.replace('_', ' ').capitalize()} {data.ref.id}"
        unit_price = self.line_price(label, listed_price, data.unit_price)
        item = OrderItem(
            quantity=data.quantity,
            unit_price=unit_price,
            total_price=line_total(data.quantity, unit_price),
            charging_type=data.charging_type or charging_type,
            notes=data.notes,
        )
        if isinstance(data.ref, ProviderServiceRef):
            item.provider_service_id = data.ref.id
        else:
            item.catalog_service_id = data.ref.id
        return item

    @staticmethod
    def matching_line(cart: Order, ref) -> Optional[OrderItem]:
        for line in cart.items:
            if isinstance(ref, ProviderServiceRef) and line.provider_service_id == ref.id:
                return line
            if isinstance(ref, CatalogServiceRef) and line.catalog_service_id == ref.id:
                return line
        return None

    def add_item(self, client_id: int, data: CartItemCreate) -> OrderItem:
        """Add a line, or grow the existing line that references the same listing."""
        with self.unit_of_work():
            cart = self._get_or_create_locked(client_id)
            line = self.matching_line(cart, data.ref)
            if line:
                previous = line.quantity
                line.quantity = previous + data.quantity
                line.total_price = line_total(line.quantity, line.unit_price)
                self.logger.info(
                    f"Merged {data.ref.kind} {data.ref.id} into cart {cart.id}: quantity {previous} -> {line.quantity}",
                    extra={'extra_fields': {'order_id': cart.id, 'item_id': line.id, 'quantity': line.quantity}},
                )
            else:
                line = self.build_item(data)
                cart.items.append(line)
                self.logger.info(
                    f"Added {data.quantity}x {data.ref.kind} {data.ref.id} to cart {cart.id}",
                    extra={'extra_fields': {'order_id': cart.id, 'unit_price': line.unit_price}},
                )
            apply_totals(cart)
            self.db.flush()
        return line

    def _listed_price(self, item: OrderItem) -> Tuple[str, Optional[Decimal]]:
        if item.provider_service_id is not None:
            listing = self.catalog.get_provider_service(item.provider_service_id)
            label = f"Provider service {item.provider_service_id}"
        else:
            listing = self.catalog.get_catalog_service(item.catalog_service_id)
            label = f"Catalog service {item.catalog_service_id}"
        return label, listing.price if listing else None

    def _load_cart_line(self, item_id: int, client_id: Optional[int]) -> Tuple[Order, OrderItem]:
        item = self.db.get(OrderItem, item_id)
        if not item:
            raise NotFound(f"Cart item {item_id} not found")
        cart = self.db.get(Order, item.order_id, with_for_update=True)
        if client_id is not None and cart.client_id != client_id:
            raise NotFound(f"Cart item {item_id} not found")
        if cart.status != BookingStatus.CART.value:
            raise InvalidState(f"Item {item_id} belongs to order {cart.id}, which is no longer a cart")
        return cart, item

    def update_item(self, item_id: int, changes: CartItemUpdate, client_id: Optional[int] = None) -> OrderItem:
        """Change quantity and/or unit price. Non-positive quantities are the caller's to route to removal."""
        with self.unit_of_work():
            cart, item = self._load_cart_line(item_id, client_id)
            if changes.quantity is not None:
                item.quantity = changes.quantity
            if changes.unit_price is not None:
                label, listed_price = self._listed_price(item)
                item.unit_price = self.line_price(label, listed_price, changes.unit_price)
            item.total_price = line_total(item.quantity, item.unit_price)
            apply_totals(cart)
            self.db.flush()
        self.logger.info(
            f"Updated cart item {item_id}",
            extra={'extra_fields': {'order_id': cart.id, 'quantity': item.quantity, 'unit_price': item.unit_price}},
        )
        return item

    def remove_item(self, item_id: int, client_id: Optional[int] = None) -> Order:
        with self.unit_of_work():
            cart, item = self._load_cart_line(item_id, client_id)
            cart.items.remove(item)
            apply_totals(cart)
            self.db.flush()
        self.logger.info(f"Removed item {item_id} from cart {cart.id}")
        return cart

    def clear_cart(self, client_id: int) -> None:
        with self.unit_of_work():
            cart = self.find_cart(client_id, lock=True)
            if not cart:
                return
            cart.items.clear()
            self.db.flush()
            self.db.delete(cart)
        self.logger.info(f"Cleared cart for client {client_id}")
