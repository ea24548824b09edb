from typing import List

from pydantic import BaseModel


class InvoiceLine(BaseModel):
    code: str
    description: str
    quantity: float
    price: float
    unit: str
    discount: float = 0.0
    net_amount: float
    vat_amount: float
    total_amount: float


class Invoice(BaseModel):
    """Flat renderer input projected from one order and the shop settings."""

    shop_name: str
    shop_address: str
    shop_phone: str = ""
    shop_email: str = ""
    shop_registration_1: str = ""
    shop_registration_2: str = ""
    shop_logo_url: str = ""
    vat_number: str = ""

    invoice_number: str
    invoice_date: str
    page_number: int = 1
    customer_name: str
    customer_address: str = ""
    receipt_info: str = "N/A"
    project_number: str = "N/A"

    items: List[InvoiceLine]
    net_total: float
    vat_total: float
    grand_total: float
    currency: str
    vat_rate_percent: int
