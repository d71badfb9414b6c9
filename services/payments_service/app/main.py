from fastapi import FastAPI, Depends, HTTPException, status, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
import httpx

from shared.utils import (
    get_db_client, settings, serialize_doc, to_decimal, SuccessResponse, HealthResponse,
    AppException, NotFoundException, PaymentVerificationFailed, UpstreamUnavailable,
    require_auth, require_internal, setup_exception_handlers
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware, request_id_headers
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

from services.payments_service.app.schemas import (
    IntentCreate, IntentResponse, GatewayKey, PaymentVerify, PaymentVerified, PaymentResponse
)
from services.payments_service.app.models import PaymentDB
from services.payments_service.app.gateway import RazorpayGateway, get_gateway

# Setup Logging
logger = setup_logging("payments-service")

app = FastAPI(title="Payments Service")

# Security Setup
setup_rate_limiting(app)
setup_exception_handlers(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="payments-service")

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
    app.mongodb = app.mongodb_client.payments_db
    # Indexes
    await app.mongodb.payments.create_index("order_id", unique=True)
    await app.mongodb.payments.create_index("gateway_payment_id", unique=True)
    await app.mongodb.payments.create_index("user_id")

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

# --- Orders service ---
async def get_order_details(order_id: str, authorization: str, headers: dict) -> dict:
    async with httpx.AsyncClient(timeout=10.0) as client:
        try:
            response = await client.get(
                f"{settings.ORDERS_SERVICE_URL}/orders/{order_id}",
                headers={**headers, "Authorization": authorization}
            )
        except httpx.RequestError:
            raise UpstreamUnavailable("Orders service unavailable")

    if response.status_code == 404:
        raise NotFoundException("Order not found")
    if response.status_code >= 500:
        raise UpstreamUnavailable("Orders service error")
    if response.status_code != 200:
        body = response.json()
        raise AppException(status_code=response.status_code, detail=body.get("error") or "Could not verify order")
    return response.json()["data"]

async def mark_order_paid(order_id: str, payment_id: str, gateway_order_id: str, headers: dict):
    async with httpx.AsyncClient(timeout=10.0) as client:
        try:
            response = await client.put(
                f"{settings.ORDERS_SERVICE_URL}/orders/{order_id}/pay",
                json={"payment_id": payment_id, "gateway_order_id": gateway_order_id},
                headers={**headers, "X-Internal-Key": settings.INTERNAL_API_KEY}
            )
            response.raise_for_status()
        except (httpx.RequestError, httpx.HTTPStatusError):
            # Payment is recorded; a repeated verify call finishes the job
            logger.error("Failed to mark order paid", extra={"order_id": order_id})
            raise UpstreamUnavailable("Orders service unavailable", details={"order_id": order_id})

# --- Endpoints ---

@app.post("/payments/intent", response_model=SuccessResponse[IntentResponse], dependencies=[Depends(require_internal)])
async def create_intent(intent_in: IntentCreate, gateway: RazorpayGateway = Depends(get_gateway)):
    intent = await gateway.create_intent(intent_in.amount, intent_in.receipt)
    logger.info("Payment intent created", extra={
        "order_id": intent_in.receipt,
        "amount": str(intent_in.amount)
    })
    return SuccessResponse(data=IntentResponse(**intent))

@app.get("/payments/key", response_model=SuccessResponse[GatewayKey])
async def get_key(gateway: RazorpayGateway = Depends(get_gateway)):
    gateway.ensure_configured()
    return SuccessResponse(data=GatewayKey(key_id=gateway.key_id))

@app.post("/payments/verify", response_model=SuccessResponse[PaymentVerified])
@limiter.limit("10/minute")
async def verify_payment(
    body: PaymentVerify,
    request: Request,
    authorization: str = Header(...),
    user: dict = Depends(require_auth),
    gateway: RazorpayGateway = Depends(get_gateway)
):
    headers = request_id_headers(request)

    # 1. The order must exist and be visible to the caller
    order = await get_order_details(body.order_id, authorization, headers)
    if order["is_paid"]:
        payment_id = (order.get("payment_result") or {}).get("id") or body.razorpay_payment_id
        return SuccessResponse(
            data=PaymentVerified(order_id=body.order_id, payment_id=payment_id),
            message="Order already paid"
        )

    # 2. Payment must be for this order's gateway order; on failure the order is left untouched
    if not order.get("gateway_order_id"):
        logger.warning("No gateway order recorded", extra={"order_id": body.order_id})
        raise PaymentVerificationFailed("No payment was requested for this order")
    if order["gateway_order_id"] != body.razorpay_order_id:
        logger.warning("Payment for a different gateway order", extra={"order_id": body.order_id})
        raise PaymentVerificationFailed("Payment does not belong to this order")
    if not gateway.verify(body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature):
        logger.warning("Invalid payment signature", extra={"order_id": body.order_id})
        raise PaymentVerificationFailed("Invalid signature")

    # 3. Record once per order, and a gateway payment against one order only
    reused = await app.mongodb.payments.find_one({
        "gateway_payment_id": body.razorpay_payment_id,
        "order_id": {"$ne": body.order_id}
    })
    if reused:
        logger.warning("Gateway payment already recorded", extra={"order_id": body.order_id})
        raise PaymentVerificationFailed("Payment already used for another order")

    existing_payment = await app.mongodb.payments.find_one({"order_id": body.order_id})
    if not existing_payment:
        payment_db = PaymentDB(
            order_id=body.order_id,
            user_id=user["sub"],
            amount=to_decimal(order["advance_amount"]),
            gateway_order_id=body.razorpay_order_id,
            gateway_payment_id=body.razorpay_payment_id
        )
        payment_dict = payment_db.dict(by_alias=True, exclude={"id"})
        payment_dict["amount"] = float(payment_dict["amount"])
        await app.mongodb.payments.insert_one(payment_dict)
        logger.info("Payment captured", extra={
            "order_id": body.order_id,
            "user_id": user["sub"],
            "amount": str(payment_db.amount)
        })

    # 4. Update the order
    await mark_order_paid(body.order_id, body.razorpay_payment_id, body.razorpay_order_id, headers)

    return SuccessResponse(
        data=PaymentVerified(order_id=body.order_id, payment_id=body.razorpay_payment_id),
        message="Payment verified"
    )

@app.get("/payments/order/{order_id}", response_model=SuccessResponse[PaymentResponse])
async def get_payment_by_order(order_id: str, user: dict = Depends(require_auth)):
    payment = await app.mongodb.payments.find_one({"order_id": order_id})
    if not payment:
        raise NotFoundException("Payment not found")
    if payment["user_id"] != user["sub"] and user.get("role") != "admin":
        raise NotFoundException("Payment not found")
    return SuccessResponse(data=PaymentResponse(**serialize_doc(payment)))

@app.get("/health", response_model=HealthResponse)
async def health_check():
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    gateway_status = "configured" if get_gateway().configured else "not_configured"

    overall_status = "healthy" if db_status == "connected" else "unhealthy"

    if overall_status == "unhealthy":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service="payments-service",
        status=overall_status,
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status,
        dependencies={"razorpay": gateway_status}
    )
