"""
Schemas for the flat-file shop

Each stored model corresponds to one JSON collection file:
- User     -> users.json
- Product  -> products.json
- Order    -> orders.json (items and customer details are snapshots)

CartItem lives only in the server-side session.
Field names are camelCase because they are the wire and file format.
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

Role = Literal["admin", "customer"]

ORDER_STATUSES = ["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]


class Address(BaseModel):
    model_config = ConfigDict(extra="allow")

    street: Optional[str] = ""
    city: Optional[str] = ""
    state: Optional[str] = ""
    zipCode: Optional[str] = ""
    country: Optional[str] = ""


class User(BaseModel):
    """
    Users collection schema
    Collection name: "users"
    """
    id: str
    name: str = Field(..., description="Full name")
    email: str = Field(..., description="Lower-cased email address, unique")

    # Stored in the file, never returned in public responses
    password: str = Field(..., description="bcrypt hash")

    role: Role = "customer"
    avatar: Optional[str] = None
    phone: str = ""
    address: Address = Field(default_factory=Address)
    createdAt: str
    updatedAt: str


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "products"
    """
    id: str
    name: str
    description: str
    price: float = Field(..., ge=0)
    originalPrice: float = Field(..., ge=0)
    category: str
    subcategory: str = ""
    brand: str = ""
    images: List[str] = Field(default_factory=list, description="Image URLs, first is the cover")
    stock: int = Field(0, ge=0, description="Available inventory")
    rating: float = Field(0, ge=0, le=5)
    reviews: int = Field(0, ge=0)
    featured: bool = False
    tags: List[str] = Field(default_factory=list, description="Search tags")
    specifications: Dict[str, Any] = Field(default_factory=dict)
    createdAt: str
    updatedAt: Optional[str] = None


class CartItem(BaseModel):
    productId: str
    quantity: int = Field(..., ge=1)
    addedAt: str


class OrderItem(BaseModel):
    productId: str
    name: str
    price: float
    quantity: int
    image: str = ""


class StatusEntry(BaseModel):
    status: str
    timestamp: str
    note: str


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "orders"
    """
    id: str
    orderNumber: str
    userId: str
    customerName: str
    customerEmail: str
    items: List[OrderItem]
    shippingAddress: Dict[str, Any]
    paymentMethod: str = "card"
    subtotal: float
    shipping: float
    tax: float
    total: float
    status: str = "pending"
    statusHistory: List[StatusEntry]
    createdAt: str
    updatedAt: str


# ----------------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str
    confirmPassword: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[Dict[str, Any]] = None


class PasswordChangeRequest(BaseModel):
    currentPassword: Optional[str] = None
    newPassword: Optional[str] = None
    confirmPassword: Optional[str] = None


class ProductCreateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    originalPrice: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    stock: int = Field(0, ge=0)
    tags: List[str] = Field(default_factory=list)
    specifications: Dict[str, Any] = Field(default_factory=dict)
    featured: bool = False


class ProductUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    originalPrice: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    images: Optional[List[str]] = None
    stock: Optional[int] = Field(None, ge=0)
    rating: Optional[float] = Field(None, ge=0, le=5)
    reviews: Optional[int] = Field(None, ge=0)
    featured: Optional[bool] = None
    tags: Optional[List[str]] = None
    specifications: Optional[Dict[str, Any]] = None


class AddCartRequest(BaseModel):
    productId: Optional[str] = None
    quantity: int = Field(1, ge=1)


class UpdateCartRequest(BaseModel):
    productId: Optional[str] = None
    quantity: Optional[int] = None


class CheckoutRequest(BaseModel):
    shippingAddress: Optional[Address] = None
    paymentMethod: str = "card"


class StatusUpdateRequest(BaseModel):
    status: Optional[str] = None
    note: Optional[str] = None
