"""Typed shapes of the platform webhook payloads the service understands.

The queue stores payloads as opaque bytes. They only become one of these
models at the processor boundary, where `topic` selects the variant.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _PlatformModel(BaseModel):
    # Platforms add fields over time; unknown keys must not break decoding.
    model_config = ConfigDict(extra="allow")


class NoteAttribute(_PlatformModel):
    name: str
    value: str | None = None


class AppliedDiscountCode(_PlatformModel):
    code: str
    amount: str | None = None
    type: str | None = None


class CustomerRef(_PlatformModel):
    id: int | str | None = None
    email: str | None = None


class OrderPayload(_PlatformModel):
    id: int | str
    order_number: int | str | None = None
    email: str | None = None
    customer: CustomerRef | None = None
    total_price: str | None = None
    total_discounts: str | None = None
    currency: str | None = None
    note_attributes: list[NoteAttribute] = Field(default_factory=list)
    discount_codes: list[AppliedDiscountCode] = Field(default_factory=list)

    def note_attribute(self, name: str) -> str | None:
        for attribute in self.note_attributes:
            if attribute.name == name:
                return attribute.value
        return None


class ShopPayload(_PlatformModel):
    id: int | str | None = None
    domain: str | None = None


class ScopesPayload(_PlatformModel):
    id: int | str | None = None
    previous: list[str] = Field(default_factory=list)
    current: list[str] = Field(default_factory=list)
    updated_at: datetime | None = None


class DataRequestPayload(_PlatformModel):
    shop_id: int | str | None = None
    shop_domain: str | None = None
    customer: CustomerRef | None = None
    orders_requested: list[int | str] = Field(default_factory=list)


class CustomerRedactPayload(_PlatformModel):
    shop_id: int | str | None = None
    shop_domain: str | None = None
    customer: CustomerRef | None = None
    orders_to_redact: list[int | str] = Field(default_factory=list)


class ShopRedactPayload(_PlatformModel):
    shop_id: int | str | None = None
    shop_domain: str | None = None


class OrdersCreateEvent(BaseModel):
    topic: Literal["orders/create"]
    tenant: str
    data: OrderPayload


class AppUninstalledEvent(BaseModel):
    topic: Literal["app/uninstalled"]
    tenant: str
    data: ShopPayload


class AppScopesUpdateEvent(BaseModel):
    topic: Literal["app/scopes_update"]
    tenant: str
    data: ScopesPayload


class CustomersDataRequestEvent(BaseModel):
    topic: Literal["customers/data_request"]
    tenant: str
    data: DataRequestPayload


class CustomersRedactEvent(BaseModel):
    topic: Literal["customers/redact"]
    tenant: str
    data: CustomerRedactPayload


class ShopRedactEvent(BaseModel):
    topic: Literal["shop/redact"]
    tenant: str
    data: ShopRedactPayload


class UnknownTopicEvent(BaseModel):
    """A verified delivery for a topic this service has no model for."""

    topic: str
    tenant: str
    data: Any = None


PlatformEvent = Annotated[
    OrdersCreateEvent
    | AppUninstalledEvent
    | AppScopesUpdateEvent
    | CustomersDataRequestEvent
    | CustomersRedactEvent
    | ShopRedactEvent,
    Field(discriminator="topic"),
]

PLATFORM_EVENT_ADAPTER: TypeAdapter[PlatformEvent] = TypeAdapter(PlatformEvent)

KNOWN_TOPICS: frozenset[str] = frozenset(
    {
        "orders/create",
        "app/uninstalled",
        "app/scopes_update",
        "customers/data_request",
        "customers/redact",
        "shop/redact",
    },
)

COMPLIANCE_TOPICS: frozenset[str] = frozenset(
    {"customers/data_request", "customers/redact", "shop/redact"},
)
