"""
Database Schemas for the storefront

Each collection model corresponds to one MongoDB collection; the collection
name is the lowercase of the class name. Documents are stored with camelCase
keys, which is also the JSON shape the storefront and admin console speak.

Request bodies sit at the bottom of the module. They reject unknown fields
so a malformed payload fails validation instead of being written through.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

Role = Literal["user", "admin"]
PaymentMethod = Literal["cod", "stripe"]
ProductStatus = Literal["active", "inactive"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RequestBody(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# ----------------------- Collections -----------------------
class User(CamelModel):
    first_name: str
    last_name: str
    email: EmailStr
    password: str = Field(..., description="Salted password hash")
    address: str = ""
    phone: str = ""
    role: Role = "user"
    suspended: bool = False
    cart_data: Dict[str, Dict[str, int]] = Field(default_factory=dict, description="productId -> size -> quantity")
    wishlist_data: Dict[str, bool] = Field(default_factory=dict, description="productId -> True")


class Product(CamelModel):
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    category: str
    sub_category: str = ""
    stock: int = Field(0, ge=0)
    bestseller: bool = False
    sizes: List[str] = Field(default_factory=list)
    image: List[str] = Field(default_factory=list, max_length=4)
    status: ProductStatus = "active"
    date: Optional[datetime] = None


class OrderItem(CamelModel):
    """Copy of a product taken when the order was placed."""
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    image: List[str] = Field(default_factory=list)
    category: str = ""
    sub_category: str = ""
    size: str
    quantity: int = Field(..., ge=1)


class Address(RequestBody):
    first_name: str
    last_name: str
    email: EmailStr
    street: str
    city: str
    state: str = ""
    zipcode: str = ""
    country: str = ""
    phone: str = ""


class StatusChange(CamelModel):
    status: str
    by: str
    role: Role
    date: datetime


class Order(CamelModel):
    user_id: str
    items: List[OrderItem]
    address: Address
    amount: float = Field(..., ge=0)
    status: str = "Order Placed"
    payment: bool = False
    payment_method: PaymentMethod = "cod"
    date: datetime
    return_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    status_history: List[StatusChange] = Field(default_factory=list)


# ----------------------- Request bodies -----------------------
class RegisterBody(RequestBody):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    address: str = ""
    phone: str = ""


class LoginBody(RequestBody):
    email: EmailStr
    password: str


class AdminCreateBody(RegisterBody):
    role: Role = "admin"


class ProfileUpdateBody(RequestBody):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None


class AdminUserUpdateBody(RequestBody):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[Role] = None
    suspended: Optional[bool] = None


class CartAddBody(RequestBody):
    item_id: str
    size: str


class CartUpdateBody(RequestBody):
    item_id: str
    size: str
    quantity: int


class WishlistBody(RequestBody):
    item_id: str


class SingleProductBody(RequestBody):
    product_id: str


class RemoveProductBody(RequestBody):
    id: str


class StockUpdateBody(RequestBody):
    product_id: str
    stock: int = Field(..., ge=0)


class ProductStatusBody(RequestBody):
    id: str
    status: ProductStatus


class OrderLine(RequestBody):
    item_id: str
    size: str
    quantity: int = Field(..., ge=1)


class PlaceOrderBody(RequestBody):
    address: Address
    items: Optional[List[OrderLine]] = None
    # Client-side estimate; the stored amount is always recomputed
    amount: Optional[float] = None
    method: PaymentMethod = "cod"


class StatusBody(RequestBody):
    order_id: str
    status: str
    reason: Optional[str] = None


class ReturnRequestBody(RequestBody):
    order_id: str
    status: str = "Return/Refund Requested"
    return_reason: str = Field(..., min_length=1)


class CancelOrderBody(RequestBody):
    order_id: str
    cancellation_reason: str = ""


class VerifyPaymentBody(RequestBody):
    order_id: str
    success: bool


class OrderUpdateBody(RequestBody):
    items: Optional[List[OrderItem]] = None
    address: Optional[Address] = None
    amount: Optional[float] = Field(None, ge=0)
    payment: Optional[bool] = None
    payment_method: Optional[PaymentMethod] = None
