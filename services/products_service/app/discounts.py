"""
Mass discount engine.

A sale always discounts off the product's MRP (`original_price`). The MRP is
captured from the current price the first time a product goes on sale, so
repeated sales never compound against an already reduced price. Removing a
sale is a plain revert to MRP; the percentage that was applied is not kept.
"""
import logging
import math
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional

from bson import ObjectId
from pymongo.errors import PyMongoError

from shared.utils import InvalidException, UpstreamUnavailable, to_decimal

logger = logging.getLogger("products-service")

class DiscountScope(str, Enum):
    ALL = "all"
    CATEGORY = "category"
    PRODUCT = "product"

class InvalidPercentage(InvalidException):
    def __init__(self, detail: str = "Valid discount percentage is required (1-99)"):
        super().__init__(detail=detail)

class PartialBatchFailure(UpstreamUnavailable):
    def __init__(self, processed: int):
        super().__init__(
            detail=f"Catalog update failed after {processed} products",
            details={"processed": processed}
        )
        self.processed = processed

def validate_percentage(percentage) -> Decimal:
    try:
        value = to_decimal(percentage)
    except (InvalidOperation, ValueError):
        raise InvalidPercentage()
    if not value.is_finite() or value <= 0 or value >= 100:
        raise InvalidPercentage()
    return value

def build_selection(scope: DiscountScope, target: Optional[str] = None) -> dict:
    if scope == DiscountScope.ALL:
        return {}
    if not target:
        raise InvalidException(f"A target is required for '{scope.value}' discounts")
    if scope == DiscountScope.CATEGORY:
        return {"category": target}
    if not ObjectId.is_valid(target):
        # Unknown product, same as an empty selection
        return {"_id": {"$in": []}}
    return {"_id": ObjectId(target)}

def sale_price(original_price: Decimal, percentage: Decimal) -> Decimal:
    return Decimal(math.floor(original_price - original_price * percentage / 100))

def sale_update(product: dict, percentage: Decimal) -> dict:
    """$set for putting one product on sale; same input gives the same write."""
    original_price = to_decimal(product.get("original_price"))
    if original_price == 0:
        original_price = to_decimal(product["price"])

    return {
        "original_price": float(original_price),
        "price": float(sale_price(original_price, percentage)),
        "updated_at": datetime.utcnow(),
    }

async def apply_mass_discount(collection, scope: DiscountScope, target: Optional[str], percentage) -> int:
    percentage = validate_percentage(percentage)
    query = build_selection(scope, target)

    updated_count = 0
    try:
        products = await collection.find(query).to_list(length=None)
        for product in products:
            # Conditional on the price we read, so a concurrent writer is not clobbered
            result = await collection.update_one(
                {"_id": product["_id"], "price": product["price"]},
                {"$set": sale_update(product, percentage)}
            )
            if result.matched_count:
                updated_count += 1
            else:
                logger.warning("Product changed during discount batch, skipped", extra={
                    "target_value": str(product["_id"])
                })
    except PyMongoError:
        logger.exception("Discount batch aborted", extra={"updated_count": updated_count})
        raise PartialBatchFailure(updated_count)

    logger.info("Mass discount applied", extra={
        "scope": scope.value,
        "target_value": target,
        "percentage": str(percentage),
        "updated_count": updated_count
    })
    return updated_count

async def remove_mass_discount(collection, scope: DiscountScope, target: Optional[str]) -> int:
    query = build_selection(scope, target)
    query["original_price"] = {"$gt": 0}

    reverted_count = 0
    try:
        products = await collection.find(query).to_list(length=None)
        for product in products:
            result = await collection.update_one(
                {"_id": product["_id"], "price": product["price"]},
                {"$set": {"price": product["original_price"], "updated_at": datetime.utcnow()}}
            )
            if result.matched_count:
                reverted_count += 1
    except PyMongoError:
        logger.exception("Discount revert aborted", extra={"reverted_count": reverted_count})
        raise PartialBatchFailure(reverted_count)

    logger.info("Mass discount removed", extra={
        "scope": scope.value,
        "target_value": target,
        "reverted_count": reverted_count
    })
    return reverted_count
