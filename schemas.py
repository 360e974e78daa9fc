"""
Database Schemas for the KOI helpdesk and storefront

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
References to other documents are stored as string ids.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["client", "support", "admin"]
TicketStatus = Literal["open", "in_progress", "resolved", "closed"]
TicketPriority = Literal["low", "medium", "high"]
ShippingStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]

TICKET_STATUSES = ("open", "in_progress", "resolved", "closed")
SHIPPING_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")


class Image(BaseModel):
    url: Optional[str] = None
    public_id: Optional[str] = None


class User(BaseModel):
    name: str = Field("", description="Display name")
    email: EmailStr
    password_hash: Optional[str] = Field(None, description="Only set for credentials accounts")
    provider: Literal["credentials", "google"] = "credentials"
    role: Role = "client"
    image: Image = Field(default_factory=Image)


class Attachment(BaseModel):
    url: str = Field(..., min_length=1)
    public_id: Optional[str] = None
    format: Optional[str] = None
    size: Optional[int] = None
    original_name: Optional[str] = None


class TicketMessage(BaseModel):
    sender: str
    message: str = Field(..., max_length=2000)
    created_at: datetime
    attachments: List[Attachment] = []


class Ticket(BaseModel):
    title: str = Field(..., max_length=120)
    description: str = Field(..., max_length=2000)
    status: TicketStatus = "open"
    priority: TicketPriority = "medium"
    category: str = "general"
    created_by: str = Field(..., description="Client user id")
    assigned_to: Optional[str] = Field(None, description="Support agent user id")
    attachments: List[Attachment] = []
    messages: List[TicketMessage] = []
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class Category(BaseModel):
    name: str
    slug: str
    description: str = ""
    kind: Literal["category", "collection"] = "category"


class Variant(BaseModel):
    color: str
    size: str
    stock: int = Field(..., ge=0)


class ProductImage(BaseModel):
    url: str
    public_id: Optional[str] = None


class Product(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    brand: str = Field(..., min_length=1)
    category_id: str = Field(..., min_length=1)
    collection_id: Optional[str] = None
    price: float = Field(..., ge=0)
    discount: float = Field(0, ge=0, le=100, description="Percentage off")
    colors: List[str] = []
    sizes: List[str] = []
    variants: List[Variant] = []
    images: List[ProductImage] = []
    status: Literal["active", "inactive"] = "active"


class CartItem(BaseModel):
    product_id: str
    qty: int = Field(1, ge=1)
    price_at_add: float = Field(..., ge=0)
    variant: Optional[str] = None


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = []


class OrderItem(BaseModel):
    product_id: str
    qty: int
    price_at_add: float
    variant: Optional[str] = None
    title: str
    image: str


class Order(BaseModel):
    user_id: str
    paypal_order_id: str
    items: List[OrderItem]
    total: float = Field(..., ge=0)
    status: Literal["pending", "paid", "failed"] = "pending"
    payment_method: Literal["paypal", "testing"]
    shipping_status: ShippingStatus = "pending"
