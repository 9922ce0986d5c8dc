from typing import Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from marketplace.application.bookings import BookingService
from marketplace.application.cart import CartService
from marketplace.application.checkout import CheckoutService
from marketplace.application.earnings import EarningsService, SystemSettingsService
from marketplace.application.lifecycle import BookingLifecycleService
from marketplace.application.schemas import (
    BalanceRead, BookingUpdate, CartItemCreate, CartItemUpdate, CheckoutData, EarningRead,
    EarningsSummary, OrderCreate, OrderRead, ServiceRequestCreate, ServiceRequestRead,
    SettingRead, SettingUpdate, StatusChange, WithdrawalCreate, WithdrawalDecision, WithdrawalRead,
)
from marketplace.application.withdrawals import WithdrawalService
from marketplace.domain.actor import Actor
from marketplace.domain.exceptions import NotFound, PermissionDenied
from marketplace.domain.models import Provider
from marketplace.domain.status import BookingKind, BookingStatus
from marketplace.infrastructure.db import get_db
from marketplace.infrastructure.notifications import NotificationDispatcher
from marketplace.infrastructure.repositories import DirectoryRepository
from .auth import get_actor, require_admin


def get_notifier() -> NotificationDispatcher:
    return NotificationDispatcher()


def lifecycle_service(db: Session, notifier: NotificationDispatcher) -> BookingLifecycleService:
    return BookingLifecycleService(db, notifier=notifier)


def current_provider(db: Session, actor: Actor) -> Provider:
    provider = DirectoryRepository(db).get_provider_by_user_id(actor.user_id)
    if not provider:
        raise NotFound(f"No provider profile for user {actor.user_id}")
    return provider


def ensure_visible(lifecycle: BookingLifecycleService, booking, actor: Actor) -> None:
    if lifecycle.can_update(booking, actor):
        return
    # Unclaimed requests are on the open market for any provider to look at
    if actor.is_provider and booking.provider_id is None and booking.status == BookingStatus.PENDING.value:
        return
    raise PermissionDenied("Access denied")


# --- cart ---

cart_router = APIRouter(prefix="/cart", tags=["cart"])

@cart_router.get("", response_model=OrderRead)
def get_cart(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return CartService(db).get_cart(actor.user_id)

@cart_router.post("/items", response_model=OrderRead, status_code=201)
def add_cart_item(payload: CartItemCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    service = CartService(db)
    service.add_item(actor.user_id, payload)
    return service.get_cart(actor.user_id)

@cart_router.patch("/items/{item_id}", response_model=OrderRead)
def update_cart_item(
    item_id: int,
    payload: CartItemUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = CartService(db)
    if payload.quantity is not None and payload.quantity <= 0:
        return service.remove_item(item_id, client_id=actor.user_id)
    service.update_item(item_id, payload, client_id=actor.user_id)
    return service.get_cart(actor.user_id)

@cart_router.delete("/items/{item_id}", response_model=OrderRead)
def remove_cart_item(item_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return CartService(db).remove_item(item_id, client_id=actor.user_id)

@cart_router.delete("", status_code=204)
def clear_cart(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    CartService(db).clear_cart(actor.user_id)
    return Response(status_code=204)

@cart_router.post("/checkout", response_model=OrderRead, status_code=201)
def checkout(
    payload: CheckoutData,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return CheckoutService(db, notifier=notifier).convert_cart_to_order(actor.user_id, payload)


# --- orders ---

orders_router = APIRouter(prefix="/orders", tags=["orders"])

@orders_router.post("", response_model=OrderRead, status_code=201)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    if not actor.is_admin and payload.client_id != actor.user_id:
        raise PermissionDenied("Orders can only be placed for yourself")
    return CheckoutService(db, notifier=notifier).create_order_from_data(payload)

@orders_router.get("", response_model=list[OrderRead])
def list_orders(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    service = BookingService(db)
    if actor.is_provider:
        return service.list_orders_for_provider(current_provider(db, actor).id)
    return service.list_orders_for_client(actor.user_id)

@orders_router.get("/{order_id}", response_model=OrderRead)
def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    order = BookingService(db).get_order(order_id)
    ensure_visible(lifecycle_service(db, notifier), order, actor)
    return order

@orders_router.post("/{order_id}/status", response_model=OrderRead)
def change_order_status(
    order_id: int,
    payload: StatusChange,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return lifecycle_service(db, notifier).transition(
        BookingKind.ORDER, order_id, actor, payload.status, payload.provider_id
    )

@orders_router.patch("/{order_id}", response_model=OrderRead)
def edit_order(
    order_id: int,
    payload: BookingUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return lifecycle_service(db, notifier).edit(BookingKind.ORDER, order_id, actor, payload)


# --- service requests ---

requests_router = APIRouter(prefix="/service-requests", tags=["service-requests"])

@requests_router.post("", response_model=ServiceRequestRead, status_code=201)
def create_service_request(
    payload: ServiceRequestCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return BookingService(db).create_service_request(actor.user_id, payload)

@requests_router.get("", response_model=list[ServiceRequestRead])
def list_service_requests(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    service = BookingService(db)
    if actor.is_provider:
        return service.list_service_requests_for_provider(current_provider(db, actor).id)
    return service.list_service_requests_for_client(actor.user_id)

@requests_router.get("/open", response_model=list[ServiceRequestRead])
def list_open_service_requests(
    category_id: Optional[int] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return BookingService(db).list_open_service_requests(category_id)

@requests_router.get("/{request_id}", response_model=ServiceRequestRead)
def get_service_request(
    request_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    request = BookingService(db).get_service_request(request_id)
    ensure_visible(lifecycle_service(db, notifier), request, actor)
    return request

@requests_router.post("/{request_id}/status", response_model=ServiceRequestRead)
def change_service_request_status(
    request_id: int,
    payload: StatusChange,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return lifecycle_service(db, notifier).transition(
        BookingKind.SERVICE_REQUEST, request_id, actor, payload.status, payload.provider_id
    )

@requests_router.patch("/{request_id}", response_model=ServiceRequestRead)
def edit_service_request(
    request_id: int,
    payload: BookingUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return lifecycle_service(db, notifier).edit(BookingKind.SERVICE_REQUEST, request_id, actor, payload)


# --- earnings ---

earnings_router = APIRouter(tags=["earnings"])

@earnings_router.get("/providers/me/earnings", response_model=list[EarningRead])
def my_earnings(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return EarningsService(db).get_provider_earnings(current_provider(db, actor).id)

@earnings_router.get("/providers/me/earnings/summary", response_model=EarningsSummary)
def my_earnings_summary(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return EarningsService(db).get_earnings_summary(current_provider(db, actor).id)

@earnings_router.get("/providers/me/balance", response_model=BalanceRead)
def my_balance(db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    provider = current_provider(db, actor)
    return BalanceRead(
        provider_id=provider.id,
        available_balance=EarningsService(db).get_available_balance(provider.id),
    )

@earnings_router.get("/earnings", response_model=list[EarningRead])
def all_earnings(db: Session = Depends(get_db), admin: Actor = Depends(require_admin)):
    return EarningsService(db).list_all_earnings()


# --- withdrawals ---

withdrawals_router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])

@withdrawals_router.post("", response_model=WithdrawalRead, status_code=201)
def request_withdrawal(
    payload: WithdrawalCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    provider = current_provider(db, actor)
    return WithdrawalService(db, notifier=notifier).create_withdrawal_request(provider.id, payload)

@withdrawals_router.get("", response_model=list[WithdrawalRead])
def list_withdrawals(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    service = WithdrawalService(db, notifier=notifier)
    if actor.is_admin:
        return service.list_withdrawal_requests(status=status)
    return service.list_withdrawal_requests(provider_id=current_provider(db, actor).id, status=status)

@withdrawals_router.post("/{withdrawal_id}/process", response_model=WithdrawalRead)
def process_withdrawal(
    withdrawal_id: int,
    payload: WithdrawalDecision,
    db: Session = Depends(get_db),
    admin: Actor = Depends(require_admin),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return WithdrawalService(db, notifier=notifier).process_withdrawal_request(
        withdrawal_id, payload.status, admin.user_id, payload.admin_notes
    )


# --- system settings ---

settings_router = APIRouter(prefix="/settings", tags=["settings"])

@settings_router.get("/{key}", response_model=SettingRead)
def get_setting(key: str, db: Session = Depends(get_db), admin: Actor = Depends(require_admin)):
    setting = SystemSettingsService(db).get_system_setting(key)
    if not setting:
        raise NotFound(f"Setting '{key}' not found")
    return setting

@settings_router.put("/{key}", response_model=SettingRead)
def put_setting(
    key: str,
    payload: SettingUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return SystemSettingsService(db).set_system_setting(actor, key, payload.value, payload.description)


routers = (
    cart_router,
    orders_router,
    requests_router,
    earnings_router,
    withdrawals_router,
    settings_router,
)
