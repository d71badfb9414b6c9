import time
import asyncio
from datetime import datetime
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import httpx
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from shared.utils import settings
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import SecurityHeadersMiddleware

# Setup Logging
logger = setup_logging("api-gateway")

# Rate Limiter; the gateway is the only hop that sees the caller directly
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)
app = FastAPI(title="API Gateway")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Security Middleware
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="api-gateway")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Never forwarded as sent; service-to-service calls don't go through the gateway
STRIPPED_REQUEST_HEADERS = ("host", "content-length", "x-internal-key", "x-forwarded-for", "x-request-id")
# httpx has already decoded the body
STRIPPED_RESPONSE_HEADERS = ("content-length", "content-encoding", "transfer-encoding")

# --- Proxy Logic ---

def forward_headers(request: Request) -> dict:
    headers = {k: v for k, v in request.headers.items() if k.lower() not in STRIPPED_REQUEST_HEADERS}
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        headers["X-Request-ID"] = request_id
    if request.client:
        headers["X-Forwarded-For"] = request.client.host
    return headers

async def forward_request(service_url: str, request: Request, path: str) -> Response:
    headers = forward_headers(request)
    request_id = headers.get("X-Request-ID")
    content = await request.body()

    url = f"{service_url}{path}"
    if request.url.query:
        url += f"?{request.url.query}"

    logger.info("Calling Downstream Service", extra={
        "target": service_url,
        "path": path,
        "method": request.method,
        "request_id": request_id
    })

    start_time = time.time()
    async with httpx.AsyncClient(timeout=20.0) as client:
        try:
            resp = await client.request(
                method=request.method,
                url=url,
                headers=headers,
                content=content
            )
        except httpx.RequestError:
            logger.error("Downstream Service Unreachable", extra={"target": service_url, "path": path})
            return JSONResponse(
                status_code=503,
                content={"success": False, "error": "Service Unavailable"}
            )

    duration = (time.time() - start_time) * 1000
    logger.info("Downstream Call Completed", extra={
        "target": service_url,
        "path": path,
        "status_code": resp.status_code,
        "duration_ms": round(duration, 2),
        "request_id": request_id
    })

    response_headers = {k: v for k, v in resp.headers.items() if k.lower() not in STRIPPED_RESPONSE_HEADERS}
    return Response(
        content=resp.content,
        status_code=resp.status_code,
        headers=response_headers
    )

# --- Routes ---

async def check_service(url: str, name: str) -> dict:
    start = time.time()
    details = None
    try:
        async with httpx.AsyncClient() as client:
            res = await client.get(f"{url}/health", timeout=3.0)
        if res.status_code == 200:
            status_val = "healthy"
            details = res.json()
        else:
            status_val = "unhealthy"
            details = {"error": f"Status {res.status_code}"}
    except httpx.HTTPError as e:
        status_val = "unreachable"
        details = {"error": str(e)}

    return {
        "service": name,
        "status": status_val,
        "latency": f"{time.time() - start:.4f}s",
        "details": details
    }

@app.get("/health")
async def health_check():
    results = await asyncio.gather(
        check_service(settings.PRODUCTS_SERVICE_URL, "products-service"),
        check_service(settings.COUPONS_SERVICE_URL, "coupons-service"),
        check_service(settings.ORDERS_SERVICE_URL, "orders-service"),
        check_service(settings.PAYMENTS_SERVICE_URL, "payments-service")
    )

    overall_status = "healthy" if all(r["status"] == "healthy" for r in results) else "unhealthy"

    response_data = {
        "service": "api-gateway",
        "status": overall_status,
        "timestamp": datetime.utcnow().isoformat(),
        "version": "1.0.0",
        "services": results
    }

    # 503 still carries the per-service breakdown
    return JSONResponse(status_code=200 if overall_status == "healthy" else 503, content=response_data)

# /api/<resource>... -> <service>/<resource>...
@app.api_route("/api/products{path:path}", methods=["GET", "POST", "PUT", "DELETE"])
@limiter.limit("100/minute")
async def products_proxy(request: Request, path: str):
    return await forward_request(settings.PRODUCTS_SERVICE_URL, request, f"/products{path}")

@app.api_route("/api/coupons{path:path}", methods=["GET", "POST", "PUT", "DELETE"])
@limiter.limit("100/minute")
async def coupons_proxy(request: Request, path: str):
    return await forward_request(settings.COUPONS_SERVICE_URL, request, f"/coupons{path}")

@app.api_route("/api/orders{path:path}", methods=["GET", "POST", "PUT", "DELETE"])
@limiter.limit("100/minute")
async def orders_proxy(request: Request, path: str):
    return await forward_request(settings.ORDERS_SERVICE_URL, request, f"/orders{path}")

@app.api_route("/api/payments{path:path}", methods=["GET", "POST", "PUT", "DELETE"])
@limiter.limit("100/minute")
async def payments_proxy(request: Request, path: str):
    return await forward_request(settings.PAYMENTS_SERVICE_URL, request, f"/payments{path}")
