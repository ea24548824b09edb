from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def money_value(value: Any) -> Any:
    """Unwrap ``{"value": "12.50", "currency": "EUR"}`` money objects."""

    if isinstance(value, dict):
        return value.get("value")
    return value


class Customer(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    email: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    country_code: Optional[str] = Field(default=None, alias="countryCode")
    phone: Optional[str] = None

    @property
    def full_name(self) -> Optional[str]:
        parts = [part for part in (self.first_name, self.last_name) if part]
        return " ".join(parts) if parts else None


class LineItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    product_name: Optional[str] = Field(default=None, alias="productName")
    quantity: float = 1
    unit_price: float = Field(default=0.0, alias="unitPrice")
    sku: Optional[str] = None
    product_id: Optional[str] = Field(default=None, alias="productId")
    unit: Optional[str] = None
    discount: float = 0.0

    @field_validator("unit_price", mode="before")
    @classmethod
    def _unwrap_price(cls, value: Any) -> Any:
        value = money_value(value)
        return 0.0 if value in (None, "") else value

    @field_validator("quantity", mode="before")
    @classmethod
    def _default_quantity(cls, value: Any) -> Any:
        return 1 if value in (None, "") else value

    @field_validator("discount", mode="before")
    @classmethod
    def _default_discount(cls, value: Any) -> Any:
        value = money_value(value)
        return 0.0 if value in (None, "") else value

    @property
    def net_amount(self) -> float:
        return self.unit_price * self.quantity


class Order(BaseModel):
    """A remote commerce order. Read-only to the pipeline."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    order_number: str = Field(alias="orderNumber", min_length=1)
    line_items: List[LineItem] = Field(alias="lineItems", min_length=1)
    created_on: Optional[datetime] = Field(default=None, alias="createdOn")
    customer_info: Optional[Customer] = Field(default=None, alias="customerInfo")
    billing_address: Optional[Customer] = Field(default=None, alias="billingAddress")
    customer_email: Optional[str] = Field(default=None, alias="customerEmail")
    grand_total: Optional[float] = Field(default=None, alias="grandTotal")
    receipt_info: Optional[str] = Field(default=None, alias="receiptInfo")
    project_number: Optional[str] = Field(default=None, alias="projectNumber")

    @field_validator("order_number", mode="before")
    @classmethod
    def _coerce_order_number(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("grand_total", mode="before")
    @classmethod
    def _unwrap_total(cls, value: Any) -> Any:
        return money_value(value)

    @property
    def customer(self) -> Customer:
        return self.customer_info or self.billing_address or Customer()

    @property
    def customer_name(self) -> str:
        customer = self.customer
        return customer.full_name or self.customer_email or customer.email or "Unknown Customer"

    @property
    def order_total(self) -> float:
        if self.grand_total is not None:
            return float(self.grand_total)
        return sum(item.net_amount for item in self.line_items)
