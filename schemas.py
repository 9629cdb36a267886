"""
Database Schemas for the Ayurvedic storefront

Each Pydantic model corresponds to a MongoDB collection. The collection name is the lowercase
snake_case of the class name.

Example: class OrderItem -> collection "order_item"
"""
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr
from datetime import datetime

# Accounts

class User(BaseModel):
    name: str
    email: EmailStr
    hashed_password: str
    is_active: bool = True
    is_admin: bool = False

# Catalogue

class Category(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    featured: bool = False

class Collection(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    product_ids: List[str] = Field(default_factory=list)

class Product(BaseModel):
    name: str
    slug: str
    sku: Optional[str] = None
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    mrp: Optional[float] = Field(None, ge=0)
    images: List[str] = Field(default_factory=list)
    category_id: Optional[str] = None
    inventory: int = Field(0, ge=0)
    featured: bool = False
    bestseller: bool = False
    is_active: bool = True

class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    price_at_add: float = Field(..., ge=0)

class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)

# Checkout

class Coupon(BaseModel):
    code: str
    description: str
    discount_amount: float = Field(..., ge=0)
    discount_type: Literal["percentage", "fixed"] = "percentage"
    minimum_cart_value: float = Field(0, ge=0)
    max_uses: int = Field(-1, description="-1 means unlimited")
    used_count: int = 0
    start_date: datetime
    end_date: datetime
    is_active: bool = True

class Setting(BaseModel):
    site_name: str = ""
    maintenance_mode: bool = False
    support_email: str = ""
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    shiprocket_api_key: str = ""
    shiprocket_api_secret: str = ""
    shiprocket_source_pincode: str = ""
    shiprocket_pickup_location: str = ""
    shiprocket_channel_id: int = 0
    tax_enabled: bool = False
    tax_percentage: float = Field(0, ge=0, le=100)

class PaymentIntent(BaseModel):
    provider_order_id: str
    amount: int = Field(..., gt=0, description="Minor currency units (paise)")
    currency: str = "INR"
    receipt: Optional[str] = None
    consumed: bool = False
    order_id: Optional[str] = None

class Order(BaseModel):
    user_id: str
    status: str = Field("pending", description="pending|processing|shipped|delivered|completed|cancelled")
    subtotal: float = Field(..., ge=0)
    discount_amount: float = Field(0, ge=0)
    coupon_code: Optional[str] = None
    shipping_fee: float = Field(0, ge=0)
    tax_amount: float = Field(0, ge=0)
    total_amount: float = Field(..., ge=0)
    payment_method: Literal["card", "upi", "cod"]
    payment_status: str = Field("pending", description="unpaid|pending|paid")
    payment_id: Optional[str] = None
    provider_order_id: Optional[str] = None
    billing_customer_name: str
    billing_last_name: str = ""
    billing_address: str
    billing_city: str
    billing_state: str
    billing_country: str = "India"
    billing_pincode: str
    billing_email: EmailStr
    billing_phone: str
    shipping_is_billing: bool = True
    shipping_customer_name: Optional[str] = None
    shipping_address: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_state: Optional[str] = None
    shipping_country: Optional[str] = None
    shipping_pincode: Optional[str] = None
    package_length: Optional[float] = None
    package_breadth: Optional[float] = None
    package_height: Optional[float] = None
    package_weight: Optional[float] = None
    shiprocket_order_id: Optional[str] = None
    shiprocket_shipment_id: Optional[str] = None
    shipment_status: str = Field("none", description="none|pending|created|failed|cancel_pending|cancelled")
    shipment_error: Optional[str] = None

class OrderItem(BaseModel):
    order_id: str
    product_id: str
    name: str
    sku: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price frozen at order time")

class ShipmentTask(BaseModel):
    order_id: str
    kind: Literal["create", "cancel"]
    status: str = Field("pending", description="pending|running|done|failed")
    attempts: int = 0
    next_attempt_at: datetime
    last_error: Optional[str] = None
    reason: Optional[str] = None
