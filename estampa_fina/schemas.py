"""
Record shapes for the document collections.

Documents carry camelCase keys. Reads go through ``model_validate`` so that
missing or null fields fall back to the defaults below instead of failing.
Form models (``*Form``) validate user input before anything is written.
"""
from __future__ import annotations

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class OrderStatus(str, Enum):
    AWAITING_PAYMENT = "Awaiting Payment"
    REQUESTED = "Requested"
    SHIPPED = "Shipped"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class QuoteStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


STATUS_LABELS = {
    "Awaiting Payment": "Aguardando Pagamento",
    "Requested": "Solicitado",
    "Shipped": "Enviado",
    "Completed": "Concluído",
    "Cancelled": "Cancelado",
    "Pending": "Pendente",
    "Approved": "Aprovado",
    "Rejected": "Rejeitado",
}

PAYMENT_METHODS = ("Pix", "Cartão de Crédito", "Cartão de Débito", "Dinheiro")
CREDIT_CARD = "Cartão de Crédito"


class _Doc(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class Record(_Doc):
    id: str = ""

    def to_doc(self) -> dict:
        doc = self.model_dump(by_alias=True, mode="json")
        doc.pop("id", None)
        return doc


class Address(_Doc):
    street: str = ""
    number: str = ""
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""


class UserRecord(Record):
    name: str = ""
    email: str = ""
    role: str = "customer"
    permissions: Optional[dict[str, bool]] = None
    active: bool = True
    created_at: Optional[datetime] = None
    photo_url: str = ""


class Client(Record):
    name: str = ""
    email: str = ""
    phone: str = ""
    cpf: str = ""
    address: Address = Field(default_factory=Address)
    notes: str = ""
    created_at: Optional[datetime] = None


class Category(Record):
    name: str = ""
    description: str = ""
    is_active: bool = True
    created_at: Optional[datetime] = None


class Product(Record):
    name: str = ""
    description: str = ""
    sku: str = ""
    current_stock: float = 0
    min_stock: float = 0
    max_stock: float = 0
    cost_price: float = 0
    sale_price: float = 0
    expiry_date: Optional[datetime] = None
    image_url: str = ""
    category: str = ""
    supplier: str = ""
    location: str = ""


class OrderItem(_Doc):
    product_id: str = ""
    name: str = ""
    quantity: int = 1
    sale_price: float = 0


class Order(Record):
    client_id: str = ""
    customer_name: str = ""
    items: list[OrderItem] = Field(default_factory=list)
    total_value: float = 0
    status: str = OrderStatus.AWAITING_PAYMENT.value
    payment_method: str = ""
    payment_details: dict[str, Any] = Field(default_factory=lambda: {"installments": 1})
    notes: str = ""
    date: Optional[datetime] = None
    quote_id: str = ""


class Quote(Record):
    client_id: str = ""
    customer_name: str = ""
    items: list[OrderItem] = Field(default_factory=list)
    total_value: float = 0
    status: str = QuoteStatus.PENDING.value
    notes: str = ""
    date: Optional[datetime] = None
    converted_order_id: str = ""


class Notification(Record):
    title: str = ""
    message: str = ""
    type: str = ""
    severity: str = ""
    details: str = ""
    cta_link: str = ""
    read: bool = False
    timestamp: Optional[datetime] = None


class ActivityLog(Record):
    action: str = ""
    actor_id: str = ""
    actor_name: str = ""
    target: str = ""
    details: str = ""
    timestamp: Optional[datetime] = None


class AppSettings(Record):
    company_name: str = "Estampa Fina"
    primary_color: str = "#1a1a1a"
    secondary_color: str = "#800000"
    tertiary_color: str = "#a0a0a0"
    logo_url: str = ""
    favicon_url: str = ""
    notify_low_stock: bool = Field(True, alias="notify_low_stock")
    notify_expiry: bool = Field(True, alias="notify_expiry")
    notify_overdue: bool = Field(True, alias="notify_overdue")


# =========================
# FORMS
# =========================
class ProductForm(BaseModel):
    name: str = Field(..., min_length=1, max_length=160)
    description: str = ""
    sku: str = ""
    current_stock: float = Field(0, ge=0)
    min_stock: float = Field(0, ge=0)
    max_stock: float = Field(0, ge=0)
    cost_price: float = Field(0, ge=0)
    sale_price: float = Field(0, ge=0)
    expiry_date: Optional[date] = None
    category: str = ""
    supplier: str = ""
    location: str = ""

    @field_validator("expiry_date", mode="before")
    @classmethod
    def _blank_date(cls, v: Any) -> Any:
        return v or None

    def to_doc(self) -> dict:
        doc = Product(**self.model_dump(exclude={"expiry_date"})).to_doc()
        doc.pop("imageUrl", None)
        doc["expiryDate"] = (
            datetime.combine(self.expiry_date, time.min, tzinfo=timezone.utc).isoformat()
            if self.expiry_date else None
        )
        return doc


class ClientForm(BaseModel):
    name: str = Field(..., min_length=1, max_length=160)
    email: str = ""
    phone: str = ""
    cpf: str = ""
    address: Address = Field(default_factory=Address)
    notes: str = ""

    def to_doc(self) -> dict:
        doc = Client(**self.model_dump()).to_doc()
        doc.pop("createdAt", None)
        return doc
