from typing import Optional

from pydantic import BaseModel, Field


class OrderIn(BaseModel):
    event_id: Optional[int] = None
    event_slug: Optional[str] = None
    link_code: Optional[str] = None
    customer_name: str = ""
    customer_phone: str = ""
    customer_email: Optional[str] = None
    seats_count: int = 1
    total_price: Optional[int] = None


class MarkPaidIn(BaseModel):
    # data URL, bare base64 or http(s) link
    screenshot: Optional[str] = None


class LoginIn(BaseModel):
    username: str
    password: str


class EventIn(BaseModel):
    name: str = Field(min_length=1)
    price: int = Field(ge=0)
    available_seats: int = Field(ge=0)
    description: Optional[str] = None
    city: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None


class TemplateIn(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None


class LinkIn(BaseModel):
    event_template_id: int
    available_seats: int = Field(default=100, ge=0)
    price: Optional[int] = Field(default=None, ge=0)
    city: Optional[str] = None
    event_date: Optional[str] = None
    event_time: Optional[str] = None
    venue_address: Optional[str] = None


class PaymentSettingsIn(BaseModel):
    card_number: str = ""
    card_holder_name: str = ""
    bank_name: str = ""
    # true: global settings used for link orders
    is_global: bool = False


class EventUpdateIn(BaseModel):
    # no available_seats: seat counts change only through orders
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    city: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    price: Optional[int] = Field(default=None, ge=0)
    is_published: Optional[bool] = None


class TemplateUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
