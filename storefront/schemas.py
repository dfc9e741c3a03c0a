"""Pydantic schemas for request/response validation and cached rows."""
import re
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from storefront.config import PRODUCT_CATEGORIES

CARD_NUMBER_RE = re.compile(r"^\d{16}$")
EXPIRY_RE = re.compile(r"^(0[1-9]|1[0-2])/\d{2}$")
CVV_RE = re.compile(r"^\d{3}$")
CARDHOLDER_RE = re.compile(r"^[A-Za-z ]+$")


def _check_category(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in PRODUCT_CATEGORIES:
        raise ValueError(f"category must be one of {', '.join(PRODUCT_CATEGORIES)}")
    return value


def _dedupe_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    if tags is None:
        return None
    seen = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class Product(BaseModel):
    """Product row as held in the query cache."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    user_id: str
    name: str
    description: str
    price: Decimal
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    image_urls: List[str]
    share_id: str
    created_at: Optional[datetime] = None
    likes_count: int = 0
    has_liked: bool = False


class CartItem(BaseModel):
    """Cart row joined with its product."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    user_id: str
    product_id: str
    quantity: int
    created_at: Optional[datetime] = None
    product: Optional[Product] = None


class ProductPage(BaseModel):
    """One page of a user's products."""
    model_config = ConfigDict(frozen=True)

    items: List[Product]
    page: int
    page_size: int
    total: int
    has_more: bool


class ProductCreate(BaseModel):
    """Schema for creating a product."""
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    image_urls: List[str] = Field(min_length=1)
    category: Optional[str] = "Electronics"
    tags: Optional[List[str]] = None

    @field_validator("category")
    @classmethod
    def check_category(cls, value: Optional[str]) -> Optional[str]:
        return _check_category(value)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _dedupe_tags(value)


class ProductUpdate(BaseModel):
    """Schema for a partial product update; share_id and owner are immutable."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    image_urls: Optional[List[str]] = Field(default=None, min_length=1)
    category: Optional[str] = None
    tags: Optional[List[str]] = None

    @field_validator("category")
    @classmethod
    def check_category(cls, value: Optional[str]) -> Optional[str]:
        return _check_category(value)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _dedupe_tags(value)


class ImageUploadResponse(BaseModel):
    """Schema for an uploaded product image."""
    url: str


class LikeResponse(BaseModel):
    """Schema for like toggle response."""
    product_id: str
    liked: bool


class AddToCartRequest(BaseModel):
    """Schema for add to cart request."""
    product_id: str
    quantity: int = Field(default=1, ge=1)


class UpdateQuantityRequest(BaseModel):
    """Schema for cart quantity change; values below 1 are ignored."""
    quantity: int


class CartResponse(BaseModel):
    """Schema for cart response."""
    user_id: str
    items: List[CartItem]
    total: Decimal


class DashboardResponse(BaseModel):
    """Schema for the dashboard: a product page plus cart membership."""
    products: ProductPage
    category: str
    cart_product_ids: List[str]


class CredentialsRequest(BaseModel):
    """Schema for sign-in / sign-up."""
    email: EmailStr
    password: str = Field(min_length=6)


class SessionResponse(BaseModel):
    """Schema for an authenticated session."""
    access_token: Optional[str] = None
    token_type: str = "bearer"
    user_id: Optional[str] = None
    email: Optional[str] = None
    message: Optional[str] = None


class CheckoutRequest(BaseModel):
    """Schema for checkout request; card details are validated and discarded."""
    card_number: str
    expiry: str
    cvv: str
    cardholder_name: str = Field(max_length=30)

    @field_validator("card_number")
    @classmethod
    def check_card_number(cls, value: str) -> str:
        digits = value.replace(" ", "")
        if not CARD_NUMBER_RE.match(digits):
            raise ValueError("card number must have 16 digits")
        return digits

    @field_validator("expiry")
    @classmethod
    def check_expiry(cls, value: str) -> str:
        if not EXPIRY_RE.match(value):
            raise ValueError("expiry must be MM/YY")
        return value

    @field_validator("cvv")
    @classmethod
    def check_cvv(cls, value: str) -> str:
        if not CVV_RE.match(value):
            raise ValueError("cvv must have 3 digits")
        return value

    @field_validator("cardholder_name")
    @classmethod
    def check_cardholder_name(cls, value: str) -> str:
        if not CARDHOLDER_RE.match(value):
            raise ValueError("cardholder name may contain letters and spaces only")
        return value.strip()


class CheckoutSummary(BaseModel):
    """Schema for the order summary shown before payment."""
    items: List[CartItem]
    subtotal: Decimal
    shipping: Decimal = Decimal("0.00")
    total: Decimal


class CheckoutResponse(BaseModel):
    """Schema for checkout response."""
    message: str
    total_amount: Decimal
    item_count: int
