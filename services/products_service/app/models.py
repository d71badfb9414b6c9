from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

class Category(str, Enum):
    ELECTRONICS = "Electronics"
    FASHION = "Fashion"
    FOOTWEAR = "Footwear"
    BEAUTY = "Beauty & Personal Care"
    HOME = "Home & Appliances"
    SPORTS = "Sports & Fitness"
    TOYS = "Toys & Baby"
    BOOKS = "Books"
    GROCERY = "Grocery"
    ACCESSORIES = "Accessories"

class ProductDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    description: str = ""
    brand: Optional[str] = None
    image: Optional[str] = None
    category: Category
    price: Decimal
    original_price: Decimal = Decimal(0) # MRP; 0 until a sale captures it
    count_in_stock: int = 0
    shipping_price: Decimal = Decimal(0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
        use_enum_values = True
