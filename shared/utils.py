from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Generic, TypeVar, Any
from fastapi import FastAPI, HTTPException, Request, status, Header, Depends
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from pymongo.errors import DuplicateKeyError
from bson import ObjectId
from bson.errors import InvalidId
from jose import JWTError, jwt

# --- Configuration ---
class Settings(BaseSettings):
    MONGO_URL: str = "mongodb://mongodb:27017"
    SECRET_KEY: str = "secret"
    ALGORITHM: str = "HS256"
    INTERNAL_API_KEY: str = "internal_secret"

    PRODUCTS_SERVICE_URL: str = "http://products-service:8002"
    COUPONS_SERVICE_URL: str = "http://coupons-service:8005"
    ORDERS_SERVICE_URL: str = "http://orders-service:8003"
    PAYMENTS_SERVICE_URL: str = "http://payments-service:8004"

    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_API_URL: str = "https://api.razorpay.com/v1"
    CURRENCY: str = "INR"

    # Checkout rules
    COD_ADVANCE_FEE: Decimal = Decimal("69")
    COD_ORDER_LIMIT: Decimal = Decimal("1200")
    MRP_FALLBACK_MARKUP: Decimal = Decimal("1.1")

    RATE_LIMIT_ENABLED: bool = True

    class Config:
        env_file = ".env"

settings = Settings()

# --- Database ---
def get_db_client(url: str = settings.MONGO_URL) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url)

def str_to_oid(id: str) -> ObjectId:
    try:
        return ObjectId(id)
    except (InvalidId, TypeError):
        raise NotFoundException("Invalid ID format")

def serialize_doc(doc: dict) -> dict:
    """Expose Mongo's `_id` as a string `id` for response models."""
    doc["id"] = str(doc.pop("_id"))
    return doc

# --- Money ---
TWO_PLACES = Decimal("0.01")

def to_decimal(value: Any) -> Decimal:
    # Mongo hands back floats; go through str to avoid binary noise
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value or 0))

def round_money(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

# --- Time ---
def naive_utc(value: datetime) -> datetime:
    # Mongo hands back naive UTC datetimes; compare like with like
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value

# --- Authentication ---
def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: Optional[Any] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None
    dependencies: Optional[dict] = None


# --- Exceptions ---
class AppException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: str = "An error occurred",
        headers: Optional[dict] = None,
        details: Optional[Any] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.details = details

class NotFoundException(AppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class UnauthorizedException(AppException):
    def __init__(self, detail: str = "Unauthorized"):
         super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(AppException):
    def __init__(self, detail: str = "Not authorized as an admin"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

class InvalidException(AppException):
    def __init__(self, detail: str = "Invalid request", details: Optional[Any] = None):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail, details=details)

class ConflictException(AppException):
    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class PaymentVerificationFailed(AppException):
    def __init__(self, detail: str = "Payment verification failed"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class UpstreamUnavailable(AppException):
    def __init__(self, detail: str = "Upstream service unavailable", details: Optional[Any] = None):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail, details=details)

def setup_exception_handlers(app: FastAPI):
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        body = ErrorResponse(error=exc.detail, details=exc.details)
        return JSONResponse(
            status_code=exc.status_code,
            content=body.model_dump(mode="json"),
            headers=exc.headers
        )

    @app.exception_handler(DuplicateKeyError)
    async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
        key_value = (exc.details or {}).get("keyValue") or {}
        field = next(iter(key_value), "key")
        body = ErrorResponse(error=f"Duplicate field entered: {field}")
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=body.model_dump(mode="json"))

# --- Decorators/Dependencies ---
async def require_auth(authorization: str = Header(...)) -> dict:
    scheme, _, param = authorization.partition(" ")
    if not authorization or scheme.lower() != "bearer":
         raise UnauthorizedException(detail="Invalid authentication credentials")
    return verify_token(param)

async def require_admin(user: dict = Depends(require_auth)) -> dict:
    if user.get("role") != "admin":
        raise ForbiddenException()
    return user

async def require_internal(x_internal_key: str = Header(...)) -> None:
    # service-to-service calls only
    if x_internal_key != settings.INTERNAL_API_KEY:
        raise UnauthorizedException(detail="Invalid internal key")
