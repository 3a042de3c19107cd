from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from decimal import Decimal
from datetime import datetime
from storefront.shared.security_config import validate_password_strength, sanitize_input

# --- Requests ---

class UserRegister(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    password: str

    class Config:
        extra = "forbid"

    @field_validator('password')
    def password_length(cls, v):
        if not validate_password_strength(v):
            raise ValueError('Password must be at least 6 characters')
        return v

    @field_validator('name', 'phone', 'address')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    class Config:
        extra = "forbid"

class UserUpdate(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)

    class Config:
        extra = "forbid"

    @field_validator('name', 'phone', 'address')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CartItemAdd(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., ge=1)

    class Config:
        extra = "forbid"

class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1)

    class Config:
        extra = "forbid"

class OrderCreate(BaseModel):
    payment_method: str = Field(..., min_length=1, max_length=50)

    class Config:
        extra = "forbid"

    @field_validator('payment_method')
    def sanitize_method(cls, v):
        return sanitize_input(v)

# --- Responses ---

class UserResponse(BaseModel):
    id: int
    name: str
    email: EmailStr
    phone: str
    address: str
    status: str
    member_since: datetime

    class Config:
        from_attributes = True

class Token(BaseModel):
    token: str
    token_type: str = "bearer"
    issued_at: datetime
    expires_at: datetime

class AuthResponse(Token):
    message: str
    user: UserResponse

class UserUpdateResponse(BaseModel):
    message: str
    user: UserResponse

class CartLine(BaseModel):
    id: int
    product_id: int
    name: str
    price: str  # display string, e.g. "$1,299.99"
    amount: float
    img: Optional[str] = None
    quantity: int

class ProductResponse(BaseModel):
    id: int
    name: str
    price: Decimal
    image: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    stock: int

    class Config:
        from_attributes = True

class OrderResponse(BaseModel):
    id: int
    user_id: int
    total_amount: Decimal
    payment_method: str
    created_at: datetime

    class Config:
        from_attributes = True

class OrderCreatedResponse(BaseModel):
    message: str
    order_id: int
    total_amount: Decimal
