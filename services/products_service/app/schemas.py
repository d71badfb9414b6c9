from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from shared.security_config import sanitize_input
from services.products_service.app.discounts import DiscountScope
from services.products_service.app.models import Category

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    brand: Optional[str] = None
    image: Optional[str] = None
    category: Category
    price: Decimal = Field(..., ge=0)
    original_price: Decimal = Field(Decimal(0), ge=0)
    count_in_stock: int = Field(0, ge=0)
    shipping_price: Decimal = Field(Decimal(0), ge=0)

    @field_validator('name', 'description', 'brand')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    image: Optional[str] = None
    category: Optional[Category] = None
    price: Optional[Decimal] = Field(None, ge=0)
    original_price: Optional[Decimal] = Field(None, ge=0)
    count_in_stock: Optional[int] = Field(None, ge=0)
    shipping_price: Optional[Decimal] = Field(None, ge=0)

    @field_validator('name', 'description', 'brand')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ProductResponse(BaseModel):
    id: str
    name: str
    description: str = ""
    brand: Optional[str] = None
    image: Optional[str] = None
    category: Category
    price: Decimal
    original_price: Decimal = Decimal(0)
    count_in_stock: int = 0
    shipping_price: Decimal = Decimal(0)
    created_at: datetime
    updated_at: Optional[datetime] = None

class ProductListResponse(BaseModel):
    products: List[ProductResponse]
    total: int
    page: int
    limit: int

class MassDiscountApply(BaseModel):
    scope: DiscountScope
    target: Optional[str] = None
    percentage: Decimal

class MassDiscountRemove(BaseModel):
    scope: DiscountScope
    target: Optional[str] = None

class MassDiscountApplied(BaseModel):
    updated_count: int

class MassDiscountRemoved(BaseModel):
    reverted_count: int
