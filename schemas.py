"""
Database and request schemas for the Marketplace API

Collections:
- user: admin and customers
- product: listings sold on the marketplace
- order: purchases, direct or through the payment provider
- review: product ratings left by customers
- contact_message: messages sent through the contact form
"""

from pydantic import BaseModel, Field, EmailStr
from typing import Optional, List
from datetime import datetime

ROLES = ("customer", "admin")
ORDER_STATUSES = ("pending", "completed", "failed", "cancelled")
MIN_PASSWORD_LENGTH = 6


class User(BaseModel):
    email: EmailStr = Field(..., description="Email address, unique")
    password: str = Field(..., description="bcrypt hash, never returned")
    full_name: str = Field(..., description="Display name")
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    role: str = Field("customer", description="role: admin or customer")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Product(BaseModel):
    name: str = Field(..., min_length=1, description="Product name")
    slug: Optional[str] = Field(None, description="URL slug, unique")
    description: Optional[str] = None
    short_description: Optional[str] = None
    price: int = Field(0, ge=0, description="Price in minor currency units")
    original_price: int = Field(0, ge=0)
    category: Optional[str] = None
    tech_stack: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    demo_url: Optional[str] = None
    featured: bool = False
    is_active: bool = Field(True, description="Publicly visible")


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)
    original_price: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    tech_stack: Optional[List[str]] = None
    features: Optional[List[str]] = None
    image_url: Optional[str] = None
    demo_url: Optional[str] = None
    featured: Optional[bool] = None
    is_active: Optional[bool] = None


class Order(BaseModel):
    user_id: str
    product_id: Optional[int] = None
    product_name: str = Field(..., description="Product name at purchase time")
    order_number: str = Field(..., description="Correlation id shared with the payment provider")
    amount: int = Field(..., ge=0)
    status: str = Field("pending", description="pending, completed, failed, cancelled")
    payment_method: str = "cashfree"
    payment_id: Optional[str] = None


class OrderCreate(BaseModel):
    product_id: int
    amount: Optional[int] = Field(None, ge=0)
    payment_method: Optional[str] = None


class ReviewCreate(BaseModel):
    product_id: int
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


class ContactCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    subject: str = ""
    message: str = Field(..., min_length=1)


# Auth payloads

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    full_name: Optional[str] = None
    role: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None


class PasswordChange(BaseModel):
    currentPassword: str
    newPassword: str = Field(..., min_length=MIN_PASSWORD_LENGTH)


class ForgotPassword(BaseModel):
    email: EmailStr


class UserUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    role: Optional[str] = None


class CurrentUser(BaseModel):
    id: str
    email: str
    full_name: str
    phone: Optional[str] = None
    role: str = "customer"
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None


# Payments

class PaymentOrderCreate(BaseModel):
    product_id: Optional[str | int] = None
    amount: Optional[int] = Field(None, ge=0)
    product_name: Optional[str] = None


class PaymentVerify(BaseModel):
    order_id: Optional[str] = None
