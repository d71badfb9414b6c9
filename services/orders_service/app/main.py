from fastapi import FastAPI, Depends, HTTPException, status, Query, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import httpx

from shared.utils import (
    get_db_client, settings, str_to_oid, serialize_doc, to_decimal,
    SuccessResponse, HealthResponse, AppException, NotFoundException, ForbiddenException,
    InvalidException, UpstreamUnavailable, require_auth, require_admin, require_internal,
    setup_exception_handlers
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware, request_id_headers
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

from services.orders_service.app.schemas import (
    OrderCreate, OrderResponse, OrderCreated, PaymentIntent, TrackingUpdate, OrderPaid
)
from services.orders_service.app.models import OrderDB, OrderItemDB
from services.orders_service.app.pricing import (
    PaymentMethod, normalize_payment_method, coupon_base, calculate_prices, amount_to_charge
)
from services.orders_service.app.tracking import resolve_stage, is_backward

# Setup Logging
logger = setup_logging("orders-service")

app = FastAPI(title="Orders Service")

# Security Setup
setup_rate_limiting(app)
setup_exception_handlers(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="orders-service")

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
    app.mongodb = app.mongodb_client.orders_db
    # Indexes
    await app.mongodb.orders.create_index("user_id")
    await app.mongodb.orders.create_index("created_at")

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

# --- Downstream services ---
async def fetch_product(product_id: str, headers: dict) -> dict:
    async with httpx.AsyncClient(timeout=10.0) as client:
        try:
            response = await client.get(f"{settings.PRODUCTS_SERVICE_URL}/products/{product_id}", headers=headers)
            if response.status_code == 404:
                raise NotFoundException(f"Product {product_id} not found")
            response.raise_for_status()
            return response.json()["data"]
        except httpx.HTTPStatusError:
            raise UpstreamUnavailable("Products service error")
        except httpx.RequestError:
            raise UpstreamUnavailable("Products service unavailable")

async def validate_coupon_remote(code: str, total_amount: Decimal, authorization: str, headers: dict) -> dict:
    async with httpx.AsyncClient(timeout=10.0) as client:
        try:
            response = await client.post(
                f"{settings.COUPONS_SERVICE_URL}/coupons/validate",
                json={"code": code, "total_amount": str(total_amount)},
                headers={**headers, "Authorization": authorization}
            )
        except httpx.RequestError:
            raise UpstreamUnavailable("Coupons service unavailable")

    if response.status_code >= 500:
        raise UpstreamUnavailable("Coupons service error")
    body = response.json()
    if response.status_code != 200:
        # Rejected coupon: hand the reason back to the shopper as-is
        raise AppException(
            status_code=response.status_code,
            detail=body.get("error") or body.get("detail") or "Invalid coupon",
            details=body.get("details")
        )
    return body["data"]

async def create_payment_intent(amount: Decimal, receipt: str, headers: dict) -> dict:
    async with httpx.AsyncClient(timeout=15.0) as client:
        try:
            response = await client.post(
                f"{settings.PAYMENTS_SERVICE_URL}/payments/intent",
                json={"amount": str(amount), "receipt": receipt},
                headers={**headers, "X-Internal-Key": settings.INTERNAL_API_KEY}
            )
            response.raise_for_status()
            return response.json()["data"]
        except (httpx.RequestError, httpx.HTTPStatusError):
            raise UpstreamUnavailable("Payment gateway unavailable")

# --- Helpers ---
def to_storage(value):
    # Decimal -> float for Mongo, recursively
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: to_storage(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_storage(v) for v in value]
    return value

def order_response(doc: dict, now: Optional[datetime] = None) -> OrderResponse:
    method = normalize_payment_method(doc["payment_method"])
    stage = resolve_stage(doc, now)

    advance = amount_to_charge(doc["total_price"], doc["shipping_price"], method)
    balance = Decimal(0)
    if method == PaymentMethod.COD:
        balance = max(to_decimal(doc["total_price"]) - advance, Decimal(0))

    doc = serialize_doc(dict(doc))
    doc["payment_method"] = method.value
    return OrderResponse(
        **doc,
        tracking_stage=int(stage),
        tracking_label=stage.label,
        advance_amount=advance,
        balance_on_delivery=balance
    )

async def get_order_or_404(order_id: str) -> dict:
    order = await app.mongodb.orders.find_one({"_id": str_to_oid(order_id)})
    if not order:
        raise NotFoundException("Order not found")
    return order

def ensure_can_view(order: dict, user: dict):
    if order["user_id"] != user["sub"] and user.get("role") != "admin":
        raise ForbiddenException("Not authorized to view this order")

async def request_intent(order_id: str, amount: Decimal, headers: dict) -> PaymentIntent:
    try:
        intent = await create_payment_intent(amount, order_id, headers)
    except UpstreamUnavailable:
        # No rollback: the order stays unpaid and the shopper can retry payment
        logger.warning("Payment intent failed, order left unpaid", extra={"order_id": order_id})
        raise UpstreamUnavailable("Payment gateway unavailable", details={"order_id": order_id})

    await app.mongodb.orders.update_one(
        {"_id": str_to_oid(order_id)},
        {"$set": {"gateway_order_id": intent["id"], "updated_at": datetime.utcnow()}}
    )
    return PaymentIntent(**intent)

# --- Endpoints ---

@app.post("/orders", response_model=SuccessResponse[OrderCreated], status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_order(
    order_in: OrderCreate,
    request: Request,
    authorization: str = Header(...),
    user: dict = Depends(require_auth)
):
    user_id = user["sub"]
    headers = request_id_headers(request)
    method = order_in.payment_method

    # 1. Snapshot catalog prices; whatever the client thinks an item costs is ignored
    order_items = []
    for item in order_in.order_items:
        product = await fetch_product(item.product_id, headers)
        if product["count_in_stock"] < item.qty:
            raise InvalidException(f"Product {product['name']} unavailable or insufficient stock")
        order_items.append(OrderItemDB(
            product_id=product["id"],
            name=product["name"],
            image=product.get("image"),
            price=product["price"],
            original_price=product.get("original_price") or 0,
            qty=item.qty,
            shipping_price=product.get("shipping_price") or 0,
            size=item.size,
            color=item.color
        ))

    # 2. Re-validate the coupon against the total this order actually uses
    coupon_code = None
    coupon_discount = Decimal(0)
    if order_in.coupon_code:
        validation = await validate_coupon_remote(
            order_in.coupon_code, coupon_base(order_items, method), authorization, headers
        )
        coupon_code = validation["code"]
        coupon_discount = to_decimal(validation["discount_amount"])

    # 3. Price and persist
    prices = calculate_prices(order_items, method, coupon_discount)
    order_db = OrderDB(
        user_id=user_id,
        order_items=order_items,
        shipping_address=order_in.shipping_address.dict(),
        payment_method=method.value,
        coupon_code=coupon_code,
        **prices.dict(exclude={"item_discount"})
    )
    new_order = await app.mongodb.orders.insert_one(to_storage(order_db.dict(by_alias=True, exclude={"id"})))
    order_id = str(new_order.inserted_id)
    logger.info("Order created", extra={
        "order_id": order_id,
        "user_id": user_id,
        "payment_method": method.value,
        "coupon_code": coupon_code,
        "amount": str(prices.total_price)
    })

    # 4. Payment
    charge = amount_to_charge(prices.total_price, prices.shipping_price, method)
    payment_intent = None
    if charge == 0:
        # Nothing to collect through the gateway
        if method == PaymentMethod.ONLINE:
            now = datetime.utcnow()
            await app.mongodb.orders.update_one(
                {"_id": new_order.inserted_id},
                {"$set": {"is_paid": True, "paid_at": now, "updated_at": now}}
            )
    else:
        payment_intent = await request_intent(order_id, charge, headers)

    created_order = await app.mongodb.orders.find_one({"_id": new_order.inserted_id})
    return SuccessResponse(
        data=OrderCreated(
            order=order_response(created_order),
            payment_required=payment_intent is not None,
            payment_intent=payment_intent
        ),
        message="Order created successfully"
    )

@app.get("/orders", response_model=SuccessResponse[List[OrderResponse]])
async def list_orders(
    user: dict = Depends(require_admin),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100)
):
    skip = (page - 1) * limit
    cursor = app.mongodb.orders.find({}).sort("created_at", -1).skip(skip).limit(limit)
    now = datetime.utcnow()
    orders = [order_response(doc, now) async for doc in cursor]
    return SuccessResponse(data=orders)

@app.get("/orders/mine", response_model=SuccessResponse[List[OrderResponse]])
async def list_my_orders(
    user: dict = Depends(require_auth),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100)
):
    skip = (page - 1) * limit
    cursor = app.mongodb.orders.find({"user_id": user["sub"]}).sort("created_at", -1).skip(skip).limit(limit)
    now = datetime.utcnow()
    orders = [order_response(doc, now) async for doc in cursor]
    return SuccessResponse(data=orders)

@app.get("/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(order_id: str, user: dict = Depends(require_auth)):
    order = await get_order_or_404(order_id)
    ensure_can_view(order, user)
    return SuccessResponse(data=order_response(order))

@app.post("/orders/{order_id}/payment-intent", response_model=SuccessResponse[PaymentIntent])
@limiter.limit("10/minute")
async def retry_payment(order_id: str, request: Request, user: dict = Depends(require_auth)):
    order = await get_order_or_404(order_id)
    ensure_can_view(order, user)
    if order["is_paid"]:
        raise InvalidException("Order is already paid")

    method = normalize_payment_method(order["payment_method"])
    charge = amount_to_charge(order["total_price"], order["shipping_price"], method)
    if charge == 0:
        raise InvalidException("Nothing to pay online for this order")

    intent = await request_intent(order_id, charge, request_id_headers(request))
    return SuccessResponse(data=intent)

@app.put("/orders/{order_id}/pay", response_model=SuccessResponse[OrderResponse], dependencies=[Depends(require_internal)])
async def mark_paid(order_id: str, body: OrderPaid):
    # Called by the payments service after a verified signature
    order = await get_order_or_404(order_id)
    if not order["is_paid"]:
        now = datetime.utcnow()
        await app.mongodb.orders.update_one(
            {"_id": order["_id"]},
            {"$set": {
                "is_paid": True,
                "paid_at": now,
                "payment_result": {
                    "id": body.payment_id,
                    "gateway_order_id": body.gateway_order_id,
                    "status": "captured"
                },
                "updated_at": now
            }}
        )
        logger.info("Order paid", extra={"order_id": order_id})

    updated_order = await app.mongodb.orders.find_one({"_id": order["_id"]})
    return SuccessResponse(data=order_response(updated_order))

@app.put("/orders/{order_id}/tracking", response_model=SuccessResponse[OrderResponse])
async def update_tracking(order_id: str, update: TrackingUpdate, user: dict = Depends(require_admin)):
    order = await get_order_or_404(order_id)

    previous_status = order.get("status")
    if is_backward(previous_status, update.status.value):
        logger.warning("Order status moved backward", extra={
            "order_id": order_id,
            "previous_status": previous_status,
            "status": update.status.value
        })

    await app.mongodb.orders.update_one(
        {"_id": order["_id"]},
        {"$set": {
            "status": update.status.value,
            "courier_name": update.courier_name,
            "tracking_id": update.tracking_id,
            "updated_at": datetime.utcnow()
        }}
    )

    updated_order = await app.mongodb.orders.find_one({"_id": order["_id"]})
    return SuccessResponse(data=order_response(updated_order), message="Tracking updated")

@app.put("/orders/{order_id}/deliver", response_model=SuccessResponse[OrderResponse])
async def mark_delivered(order_id: str, user: dict = Depends(require_admin)):
    order = await get_order_or_404(order_id)
    now = datetime.utcnow()
    await app.mongodb.orders.update_one(
        {"_id": order["_id"]},
        {"$set": {"is_delivered": True, "delivered_at": now, "updated_at": now}}
    )
    logger.info("Order delivered", extra={"order_id": order_id})

    updated_order = await app.mongodb.orders.find_one({"_id": order["_id"]})
    return SuccessResponse(data=order_response(updated_order), message="Order delivered")

@app.get("/health", response_model=HealthResponse)
async def health_check():
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    dependencies = {}
    async with httpx.AsyncClient() as client:
        for name, url in (
            ("products-service", settings.PRODUCTS_SERVICE_URL),
            ("coupons-service", settings.COUPONS_SERVICE_URL),
            ("payments-service", settings.PAYMENTS_SERVICE_URL),
        ):
            try:
                resp = await client.get(f"{url}/health", timeout=2.0)
                dependencies[name] = "healthy" if resp.status_code == 200 else "unhealthy"
            except httpx.HTTPError:
                dependencies[name] = "unreachable"

    overall_status = "healthy" if (
        db_status == "connected" and
        all(s == "healthy" for s in dependencies.values())
    ) else "unhealthy"

    if overall_status == "unhealthy":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service="orders-service",
        status=overall_status,
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status,
        dependencies=dependencies
    )
