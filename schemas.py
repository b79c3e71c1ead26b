"""
Database Schemas for the Flame & Crumble store

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name (User -> "user").
Embedded models (Address, CartItem, WishlistItem, OrderItem) live inside
their parent document.
"""
from datetime import datetime
from typing import List, Optional, Literal

from bson import ObjectId
from pydantic import BaseModel, Field, EmailStr

Role = Literal["user", "admin"]
Category = Literal["candles", "cookies", "chocolates"]
AddressType = Literal["home", "work", "other"]
PaymentMethod = Literal["razorpay", "cod"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]


class Address(BaseModel):
    id: str = Field(default_factory=lambda: str(ObjectId()))
    type: AddressType = "home"
    full_name: Optional[str] = None
    phone: Optional[str] = None
    line1: str
    line2: Optional[str] = None
    city: str
    state: str
    zip: str
    country: str = "India"
    is_default: bool = False


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: Optional[str] = Field(None, description="Hashed password, absent for OAuth-only accounts")
    phone: Optional[str] = None
    role: Role = "user"
    oauth_provider: Optional[Literal["google", "facebook"]] = None
    oauth_id: Optional[str] = None
    addresses: List[Address] = []
    is_verified: bool = False
    verification_code: Optional[str] = None
    verification_expires_at: Optional[datetime] = None


class ProductVariant(BaseModel):
    name: str
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)


class Product(BaseModel):
    name: str
    description: str
    price: float = Field(..., ge=0)
    category: Category
    image: str
    stock: int = Field(0, ge=0)
    is_new: bool = False
    bestseller: bool = False
    variants: List[ProductVariant] = []


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    variant: Optional[str] = None


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = []


class WishlistItem(BaseModel):
    product_id: str
    name: str
    price: float
    image: Optional[str] = None
    variant: Optional[str] = None
    added_at: datetime


class Wishlist(BaseModel):
    user_id: str
    items: List[WishlistItem] = []


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None
    variant: Optional[str] = None


class ShippingAddress(BaseModel):
    full_name: str
    phone: str
    line1: str
    line2: Optional[str] = None
    city: str
    state: str
    zip: str
    country: str = "India"


class PaymentResult(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = "razorpay"
    status: OrderStatus = "pending"
    subtotal: float = Field(..., ge=0)
    shipping_price: float = Field(..., ge=0)
    tax_price: float = Field(..., ge=0)
    total_amount: float = Field(..., ge=0)
    currency: str = "INR"
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    payment_result: PaymentResult = PaymentResult()


class Contact(BaseModel):
    kind: Literal["contact", "corporate"] = "contact"
    name: Optional[str] = None
    company_name: Optional[str] = None
    email: EmailStr
    subject: Optional[str] = None
    message: str
