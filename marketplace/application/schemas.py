from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from marketplace.domain.status import BookingStatus, WithdrawalStatus

# --- line item references: a line points at exactly one kind of listing ---

class ProviderServiceRef(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["provider_service"] = "provider_service"
    id: int

class CatalogServiceRef(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["catalog_service"] = "catalog_service"
    id: int

OrderItemRef = Annotated[Union[ProviderServiceRef, CatalogServiceRef], Field(discriminator="kind")]

Money = Union[Decimal, float, int, str]
Timestamp = Union[datetime, str]

class CartItemCreate(BaseModel):
    ref: OrderItemRef
    quantity: int = Field(default=1, ge=1)
    # Defaults to the listing's price when omitted
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    charging_type: Optional[str] = None
    notes: Optional[str] = None

class CartItemUpdate(BaseModel):
    quantity: Optional[int] = None
    unit_price: Optional[Decimal] = Field(default=None, ge=0)

class CheckoutData(BaseModel):
    payment_method: Optional[str] = None
    coupon_code: Optional[str] = None
    discount_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    address: Optional[str] = None
    cep: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    latitude: Optional[Decimal] = None
    longitude: Optional[Decimal] = None
    scheduled_at: Optional[datetime] = None
    notes: Optional[str] = None

class OrderCreate(CheckoutData):
    """Order placed directly after an external payment, with no prior cart."""
    client_id: int
    items: list[CartItemCreate] = Field(min_length=1)

class BookingUpdate(BaseModel):
    """General edit of an existing order or service request.

    Money and timestamp fields arrive loosely typed and are parsed by the
    lifecycle service so malformed input is rejected before any write.
    """
    address: Optional[str] = None
    cep: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    notes: Optional[str] = None
    scheduled_at: Optional[Timestamp] = None
    estimated_price: Optional[Money] = None
    final_price: Optional[Money] = None
    total_amount: Optional[Money] = None

class StatusChange(BaseModel):
    status: str
    provider_id: Optional[int] = None

class ServiceRequestCreate(BaseModel):
    category_id: int
    title: str
    description: Optional[str] = None
    address: Optional[str] = None
    cep: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    estimated_price: Optional[Decimal] = Field(default=None, gt=0)
    total_amount: Optional[Decimal] = Field(default=None, gt=0)
    payment_method: Optional[str] = None
    payment_status: str = "pending"
    notes: Optional[str] = None
    scheduled_at: Optional[datetime] = None

class WithdrawalCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    payment_method: Optional[str] = None
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    account_holder_name: Optional[str] = None
    cpf_cnpj: Optional[str] = None
    pix_key: Optional[str] = None
    request_notes: Optional[str] = None

class WithdrawalDecision(BaseModel):
    status: Literal["approved", "rejected"]
    admin_notes: Optional[str] = None

class SettingUpdate(BaseModel):
    value: str
    description: Optional[str] = None

# --- read models ---

class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    provider_service_id: Optional[int] = None
    catalog_service_id: Optional[int] = None
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    charging_type: str
    notes: Optional[str] = None

class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    client_id: int
    provider_id: Optional[int] = None
    status: BookingStatus
    subtotal: Decimal
    discount_amount: Decimal
    service_amount: Decimal
    total_amount: Decimal
    coupon_code: Optional[str] = None
    payment_method: Optional[str] = None
    address: Optional[str] = None
    cep: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    notes: Optional[str] = None
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    items: list[OrderItemRead]

class ServiceRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    client_id: int
    category_id: int
    provider_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    estimated_price: Optional[Decimal] = None
    final_price: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    payment_method: Optional[str] = None
    payment_status: str
    status: BookingStatus
    scheduled_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

class EarningRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    provider_id: int
    service_request_id: Optional[int] = None
    order_id: Optional[int] = None
    total_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    provider_amount: Decimal
    is_withdrawn: bool
    withdrawn_at: Optional[datetime] = None
    created_at: datetime

class EarningsSummary(BaseModel):
    provider_id: int
    total_earned: Decimal
    total_withdrawn: Decimal
    available_balance: Decimal
    total_commission: Decimal
    earnings_count: int

class BalanceRead(BaseModel):
    provider_id: int
    available_balance: Decimal

class WithdrawalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    provider_id: int
    amount: Decimal
    payment_method: Optional[str] = None
    bank_name: Optional[str] = None
    account_holder_name: Optional[str] = None
    status: WithdrawalStatus
    request_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    processed_by: Optional[int] = None
    processed_at: Optional[datetime] = None
    created_at: datetime

class SettingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    key: str
    value: Optional[str] = None
    description: Optional[str] = None
