"""
Pydantic Schemas for Request/Response Validation

Covers the shapes that cross a boundary:
- order / customer capture coming from the terminal UI
- menu snapshots coming from the backend
- sync reports and statistics going back to the UI

Author: GourmetFlow Team
Version: 1.0.0
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Any
from datetime import datetime
from enum import Enum
import re


# =============================================================================
# ENUMS
# =============================================================================

class DeliveryTypeEnum(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"
    DINE_IN = "dine_in"


class PaymentMethodEnum(str, Enum):
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PIX = "pix"
    PAGHIPER = "paghiper"
    PENDING = "pending"


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class DeliveryAddress(BaseModel):
    """Structured delivery address."""
    street: str = Field(..., min_length=1, max_length=200)
    number: Optional[str] = Field(None, max_length=20)
    complement: Optional[str] = Field(None, max_length=100)
    neighborhood: Optional[str] = Field(None, max_length=100)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=50)
    zip_code: Optional[str] = Field(None, max_length=10)
    reference: Optional[str] = Field(None, max_length=200)


class OrderItemCreate(BaseModel):
    """Single line of an order."""
    menu_item_id: str = Field(..., min_length=1, examples=["b7c1..."])
    name: str = Field(..., min_length=1, max_length=100, examples=["X-Burger"])
    quantity: int = Field(..., ge=1, le=999, examples=[2])
    unit_price: float = Field(..., ge=0, examples=[10.0])
    notes: Optional[str] = Field(None, max_length=200)

    @property
    def total_price(self) -> float:
        return round(self.quantity * self.unit_price, 2)


class OfflineOrderCreate(BaseModel):
    """Order captured at the terminal. Totals are computed by the store."""
    restaurant_id: str = Field(..., min_length=1)
    items: List[OrderItemCreate] = Field(..., min_length=1)

    customer_id: Optional[str] = None
    customer_name: Optional[str] = Field(None, max_length=100)
    customer_phone: Optional[str] = Field(None, max_length=20)
    customer_cpf: Optional[str] = Field(None, max_length=20)

    delivery_type: DeliveryTypeEnum = DeliveryTypeEnum.DELIVERY
    delivery_address: Optional[DeliveryAddress] = None
    payment_method: PaymentMethodEnum = PaymentMethodEnum.PENDING
    notes: Optional[str] = Field(None, max_length=500)
    status: str = Field(default="new", max_length=30)

    delivery_fee: float = Field(default=0.0, ge=0)
    service_fee: float = Field(default=0.0, ge=0)
    discount: float = Field(default=0.0, ge=0)

    @field_validator("customer_phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        cleaned = re.sub(r"[^\d]", "", v)
        if len(cleaned) < 8:
            raise ValueError("Phone number must have at least 8 digits")
        return v

    @property
    def subtotal(self) -> float:
        return round(sum(item.total_price for item in self.items), 2)

    @property
    def total(self) -> float:
        return round(self.subtotal + self.delivery_fee + self.service_fee - self.discount, 2)


class OfflineCustomerCreate(BaseModel):
    """Customer captured at the terminal."""
    restaurant_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=8, max_length=20)
    cpf: Optional[str] = Field(None, max_length=20)
    address: Optional[DeliveryAddress] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        cleaned = re.sub(r"[^\d]", "", v)
        if len(cleaned) < 8:
            raise ValueError("Phone number must have at least 8 digits")
        return v


class OrderUpdate(BaseModel):
    """Changes to an order that must reach the backend after its creation."""
    status: Optional[str] = Field(None, max_length=30)
    payment_method: Optional[PaymentMethodEnum] = None
    notes: Optional[str] = Field(None, max_length=500)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ConnectivityUpdate(BaseModel):
    online: bool


class NotifyOrderRequest(BaseModel):
    status: str
    motoboy: Optional[str] = None


class ChargeRequest(BaseModel):
    method: PaymentMethodEnum = PaymentMethodEnum.CREDIT_CARD


# =============================================================================
# MENU SNAPSHOT
# =============================================================================

class MenuCategorySnapshot(BaseModel):
    id: str
    name: str
    image_url: Optional[str] = None


class MenuItemSnapshot(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    price: float
    promotional_price: Optional[float] = None
    image_url: Optional[str] = None
    category_id: Optional[str] = None
    is_available: bool = True


class MenuSnapshot(BaseModel):
    """Categories and items of one restaurant as returned by the backend."""
    restaurant_id: str
    categories: List[MenuCategorySnapshot] = Field(default_factory=list)
    items: List[MenuItemSnapshot] = Field(default_factory=list)
    cached_at: Optional[datetime] = None
    from_cache: bool = False


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OfflineStats(BaseModel):
    pending_orders: int
    pending_customers: int
    sync_queue_size: int
    failed_items: int
    needs_attention: bool = False


class SyncReport(BaseModel):
    """Outcome of one drain."""
    restaurant_id: str
    skipped: bool = False
    processed: int = 0
    synced: int = 0
    retried: int = 0
    failed: int = 0
    deferred: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    errors: List[str] = Field(default_factory=list)


class SyncStatusResponse(BaseModel):
    online: bool
    syncing: bool
    last_sync_time: Optional[datetime]
    stats: OfflineStats


class HealthResponse(BaseModel):
    status: str
    local_store: str
    remote_backend: str
    worker_broker: str
    timestamp: datetime
