"""
Database Schemas for E‑commerce

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase of the class name.
Request bodies for the API live at the bottom of the module.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, EmailStr, field_validator

Role = Literal["customer", "admin"]
StockStatus = Literal["in-stock", "low-stock", "out-of-stock", "discontinued"]
OrderStatus = Literal["pending", "paid", "shipped", "delivered", "cancelled"]
PaymentStatus = Literal["unpaid", "paid", "refund_pending", "refunded"]
PaymentMethod = Literal["cod", "card", "bank_transfer"]


class Address(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "Vietnam"
    is_default: bool = False


class Preferences(BaseModel):
    newsletter: bool = True
    currency: str = "USD"
    language: str = "en"


class User(BaseModel):
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="Hashed password")
    phone: Optional[str] = None
    role: Role = "customer"
    avatar_url: Optional[str] = None
    addresses: List[dict] = []
    wishlist: List[str] = Field(default_factory=list, description="Product ids")
    date_of_birth: Optional[datetime] = None
    preferences: Preferences = Field(default_factory=Preferences)
    is_active: bool = Field(True)
    last_login: Optional[datetime] = None


class Category(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    slug: str = Field(..., description="URL-safe identifier")
    description: Optional[str] = Field(None, max_length=500)
    image: Optional[str] = None
    is_active: bool = True
    parent_category: Optional[str] = Field(None, description="Parent category id")
    level: int = 0
    display_order: int = 0


class Product(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    slug: str
    sku: str
    description: str = Field(..., min_length=20, max_length=2000)
    price: float = Field(..., ge=0, le=1_000_000)
    compare_at_price: Optional[float] = Field(None, ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    on_sale: bool = False
    sale_start_date: Optional[datetime] = None
    sale_end_date: Optional[datetime] = None
    category: str = Field(..., description="Category id")
    brand: str
    stock: int = Field(0, ge=0)
    reserved: int = Field(0, ge=0)
    low_stock_threshold: int = Field(10, ge=0)
    stock_status: StockStatus = "in-stock"
    images: List[str] = []
    features: List[str] = []
    specifications: Dict[str, str] = {}
    tags: List[str] = []
    rating: float = Field(0.0, ge=0, le=5)
    num_reviews: int = Field(0, ge=0)
    featured: bool = False
    is_active: bool = True
    views: int = 0


class Reviewer(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


class Review(BaseModel):
    product_id: str
    user: Reviewer
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., max_length=100)
    comment: str = Field(..., min_length=10, max_length=1000)
    verified: bool = False
    helpful: int = 0
    images: List[str] = Field(default_factory=list, max_length=5)


class Cart(BaseModel):
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    items: List[dict] = []
    version: int = 0


class OrderItem(BaseModel):
    product_id: str
    name: str
    sku: Optional[str] = None
    price: float
    quantity: int
    subtotal: float
    image: Optional[str] = None


class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    postal_code: str = Field(..., min_length=1)
    country: str = "Vietnam"


class Pricing(BaseModel):
    subtotal: float
    tax: float
    shipping: float
    total: float


class Order(BaseModel):
    order_number: str
    user_id: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = "cod"
    pricing: Pricing
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "unpaid"
    status_history: List[dict] = []
    customer_note: Optional[str] = None
    tracking: Optional[dict] = None


class Transaction(BaseModel):
    order_id: str
    order_number: str
    user_id: str
    amount: float
    method: PaymentMethod
    reference: Optional[str] = None
    status: Literal["completed", "refunded"] = "completed"
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None


# ----------------------- Request bodies -----------------------

class RegisterRequest(BaseModel):
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None


class ProfileUpdate(BaseModel):
    model_config = {"extra": "allow"}

    first_name: Optional[str] = Field(None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    preferences: Optional[Preferences] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    image: Optional[str] = None
    parent_category: Optional[str] = None
    display_order: int = 0
    is_active: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    image: Optional[str] = None
    parent_category: Optional[str] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    sku: str = Field(..., min_length=1)
    description: str = Field(..., min_length=20, max_length=2000)
    price: float = Field(..., ge=0, le=1_000_000)
    compare_at_price: Optional[float] = Field(None, ge=0)
    category: str
    brand: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    images: List[str] = []
    features: List[str] = []
    specifications: Dict[str, str] = {}
    tags: List[str] = []
    featured: bool = False
    is_active: bool = True


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, min_length=20, max_length=2000)
    price: Optional[float] = Field(None, ge=0, le=1_000_000)
    compare_at_price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    brand: Optional[str] = None
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    stock_status: Optional[StockStatus] = None
    images: Optional[List[str]] = None
    features: Optional[List[str]] = None
    specifications: Optional[Dict[str, str]] = None
    tags: Optional[List[str]] = None
    featured: Optional[bool] = None
    is_active: Optional[bool] = None


class StockUpdate(BaseModel):
    quantity: int = Field(..., ge=0)
    operation: Literal["add", "subtract", "set"]


class QuantityRequest(BaseModel):
    quantity: int = Field(1, ge=1)


class DiscountRequest(BaseModel):
    percentage: float = Field(..., gt=0, lt=100)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ReviewCreate(BaseModel):
    user: Optional[Reviewer] = None
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1, max_length=100)
    comment: str = Field(..., min_length=10, max_length=1000)
    images: List[str] = Field(default_factory=list, max_length=5)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    comment: Optional[str] = Field(None, min_length=10, max_length=1000)
    images: Optional[List[str]] = Field(None, max_length=5)


class CartItemAdd(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1)


class CheckoutRequest(BaseModel):
    shipping_address: Optional[ShippingAddress] = None
    address_id: Optional[str] = None
    payment_method: PaymentMethod = "cod"
    customer_note: Optional[str] = Field(None, max_length=500)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AddressUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    is_default: Optional[bool] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    note: Optional[str] = None


class PaymentUpdate(BaseModel):
    reference: Optional[str] = None


class TrackingUpdate(BaseModel):
    carrier: str = Field(..., min_length=1)
    tracking_number: str = Field(..., min_length=1)


class RoleUpdate(BaseModel):
    role: Role


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
