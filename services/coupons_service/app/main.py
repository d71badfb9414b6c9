from fastapi import FastAPI, Depends, HTTPException, status, Request
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
from typing import List

from shared.utils import (
    get_db_client, str_to_oid, serialize_doc, SuccessResponse, HealthResponse,
    NotFoundException, ConflictException, require_auth, require_admin,
    setup_exception_handlers
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

from services.coupons_service.app.schemas import CouponCreate, CouponUpdate, CouponResponse, CouponValidate
from services.coupons_service.app.models import CouponDB
from services.coupons_service.app.validator import validate_coupon, CouponValidation

# Setup Logging
logger = setup_logging("coupons-service")

app = FastAPI(title="Coupons Service")

# Security Setup
setup_rate_limiting(app)
setup_exception_handlers(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="coupons-service")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = app.mongodb_client.coupons_db
    # Indexes
    await app.mongodb.coupons.create_index("code", unique=True)

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

# --- Endpoints ---

@app.post("/coupons", response_model=SuccessResponse[CouponResponse], status_code=status.HTTP_201_CREATED)
async def create_coupon(coupon: CouponCreate, user: dict = Depends(require_admin)):
    existing = await app.mongodb.coupons.find_one({"code": coupon.code})
    if existing:
        raise ConflictException("Coupon code already exists")

    coupon_dict = CouponDB(**coupon.dict()).dict(by_alias=True, exclude={"id"})
    coupon_dict["discount_value"] = float(coupon_dict["discount_value"])
    coupon_dict["min_order_amount"] = float(coupon_dict["min_order_amount"])

    new_coupon = await app.mongodb.coupons.insert_one(coupon_dict)
    created = await app.mongodb.coupons.find_one({"_id": new_coupon.inserted_id})
    logger.info("Coupon created", extra={"coupon_code": coupon.code})
    return SuccessResponse(data=CouponResponse(**serialize_doc(created)), message="Coupon created")

@app.get("/coupons", response_model=SuccessResponse[List[CouponResponse]])
async def list_coupons(user: dict = Depends(require_admin)):
    cursor = app.mongodb.coupons.find({}).sort("created_at", -1)
    coupons = []
    async for doc in cursor:
        coupons.append(CouponResponse(**serialize_doc(doc)))
    return SuccessResponse(data=coupons)

@app.post("/coupons/validate", response_model=SuccessResponse[CouponValidation])
@limiter.limit("30/minute")
async def validate(body: CouponValidate, request: Request, user: dict = Depends(require_auth)):
    coupon = await app.mongodb.coupons.find_one({"code": body.code})
    result = validate_coupon(coupon, body.total_amount)
    return SuccessResponse(data=result)

@app.put("/coupons/{coupon_id}", response_model=SuccessResponse[CouponResponse])
async def update_coupon(coupon_id: str, update: CouponUpdate, user: dict = Depends(require_admin)):
    oid = str_to_oid(coupon_id)
    coupon = await app.mongodb.coupons.find_one({"_id": oid})
    if not coupon:
        raise NotFoundException("Coupon not found")

    if update.is_active is not None:
        await app.mongodb.coupons.update_one(
            {"_id": oid},
            {"$set": {"is_active": update.is_active, "updated_at": datetime.utcnow()}}
        )

    updated = await app.mongodb.coupons.find_one({"_id": oid})
    return SuccessResponse(data=CouponResponse(**serialize_doc(updated)))

@app.delete("/coupons/{coupon_id}", response_model=SuccessResponse[dict])
async def delete_coupon(coupon_id: str, user: dict = Depends(require_admin)):
    # Orders keep their own snapshot of the discount, nothing cascades
    result = await app.mongodb.coupons.delete_one({"_id": str_to_oid(coupon_id)})
    if not result.deleted_count:
        raise NotFoundException("Coupon not found")
    return SuccessResponse(data={"id": coupon_id}, message="Coupon removed")

@app.get("/health", response_model=HealthResponse)
async def health_check():
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    if db_status != "connected":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service="coupons-service",
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status
    )
