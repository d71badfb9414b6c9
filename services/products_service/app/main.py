from fastapi import FastAPI, Depends, HTTPException, status, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
from typing import Optional
import re

from shared.utils import (
    get_db_client, str_to_oid, serialize_doc, SuccessResponse, HealthResponse,
    NotFoundException, require_admin, setup_exception_handlers
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

from services.products_service.app.schemas import (
    ProductCreate, ProductUpdate, ProductResponse, ProductListResponse,
    MassDiscountApply, MassDiscountRemove, MassDiscountApplied, MassDiscountRemoved
)
from services.products_service.app.models import ProductDB, Category
from services.products_service.app.discounts import apply_mass_discount, remove_mass_discount

# Setup Logging
logger = setup_logging("products-service")

app = FastAPI(title="Products Service")

# Security Setup
setup_rate_limiting(app)
setup_exception_handlers(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="products-service")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Money fields are Decimal in the models and float in Mongo
MONEY_FIELDS = ("price", "original_price", "shipping_price")

def to_storage(data: dict) -> dict:
    for field in MONEY_FIELDS:
        if data.get(field) is not None:
            data[field] = float(data[field])
    return data

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = app.mongodb_client.products_db
    # Indexes
    await app.mongodb.products.create_index([("name", "text"), ("description", "text")])
    await app.mongodb.products.create_index("category")

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

# --- Endpoints ---

# Products
@app.get("/products", response_model=SuccessResponse[ProductListResponse])
@limiter.limit("60/minute")
async def list_products(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    category: Optional[Category] = None,
    search: Optional[str] = None
):
    query = {}
    if category:
        query["category"] = category.value
    if search:
        query["name"] = {"$regex": re.escape(search), "$options": "i"}

    skip = (page - 1) * limit
    total = await app.mongodb.products.count_documents(query)
    cursor = app.mongodb.products.find(query).sort("created_at", -1).skip(skip).limit(limit)
    products_docs = await cursor.to_list(length=limit)

    return SuccessResponse(data=ProductListResponse(
        products=[ProductResponse(**serialize_doc(doc)) for doc in products_docs],
        total=total,
        page=page,
        limit=limit
    ))

@app.get("/products/{product_id}", response_model=SuccessResponse[ProductResponse])
@limiter.limit("120/minute")
async def get_product(product_id: str, request: Request):
    product = await app.mongodb.products.find_one({"_id": str_to_oid(product_id)})
    if not product:
        raise NotFoundException("Product not found")
    return SuccessResponse(data=ProductResponse(**serialize_doc(product)))

@app.post("/products", response_model=SuccessResponse[ProductResponse], status_code=status.HTTP_201_CREATED)
async def create_product(product: ProductCreate, user: dict = Depends(require_admin)):
    product_db = ProductDB(**product.dict())
    product_dict = to_storage(product_db.dict(by_alias=True, exclude={"id"}))

    new_product = await app.mongodb.products.insert_one(product_dict)
    created_product = await app.mongodb.products.find_one({"_id": new_product.inserted_id})

    return SuccessResponse(data=ProductResponse(**serialize_doc(created_product)), message="Product created successfully")

@app.put("/products/{product_id}", response_model=SuccessResponse[ProductResponse])
async def update_product(product_id: str, product_update: ProductUpdate, user: dict = Depends(require_admin)):
    oid = str_to_oid(product_id)
    product = await app.mongodb.products.find_one({"_id": oid})
    if not product:
        raise NotFoundException("Product not found")

    update_data = {k: v for k, v in product_update.dict().items() if v is not None}
    if "category" in update_data:
        update_data["category"] = update_data["category"].value
    to_storage(update_data)

    if update_data:
        update_data["updated_at"] = datetime.utcnow()
        await app.mongodb.products.update_one({"_id": oid}, {"$set": update_data})

    updated_product = await app.mongodb.products.find_one({"_id": oid})
    return SuccessResponse(data=ProductResponse(**serialize_doc(updated_product)), message="Product updated successfully")

@app.delete("/products/{product_id}", response_model=SuccessResponse[dict])
async def delete_product(product_id: str, user: dict = Depends(require_admin)):
    result = await app.mongodb.products.delete_one({"_id": str_to_oid(product_id)})
    if not result.deleted_count:
        raise NotFoundException("Product not found")
    return SuccessResponse(data={"id": product_id}, message="Product removed")

# Mass discounts
@app.post("/products/apply-discount", response_model=SuccessResponse[MassDiscountApplied])
async def apply_discount(body: MassDiscountApply, user: dict = Depends(require_admin)):
    updated_count = await apply_mass_discount(app.mongodb.products, body.scope, body.target, body.percentage)
    return SuccessResponse(
        data=MassDiscountApplied(updated_count=updated_count),
        message=f"Successfully applied {body.percentage}% discount to {updated_count} products."
    )

@app.post("/products/remove-discount", response_model=SuccessResponse[MassDiscountRemoved])
async def remove_discount(body: MassDiscountRemove, user: dict = Depends(require_admin)):
    reverted_count = await remove_mass_discount(app.mongodb.products, body.scope, body.target)
    return SuccessResponse(
        data=MassDiscountRemoved(reverted_count=reverted_count),
        message=f"Successfully reverted prices for {reverted_count} products."
    )

@app.get("/health", response_model=HealthResponse)
async def health_check():
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    if db_status != "connected":
        logger.error(f"Health Check Failed: DB={db_status}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Service Unhealthy: DB={db_status}"
        )

    return HealthResponse(
        service="products-service",
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status
    )
