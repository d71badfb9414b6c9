"""
Order tracking stages.

The displayed stage is resolved on every read and never stored:

1. a delivered order is always at the final stage;
2. otherwise an admin-set status wins;
3. otherwise the stage follows the time elapsed since the order was placed.
"""
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Optional

from shared.utils import naive_utc

class TrackingStage(IntEnum):
    CONFIRMED = 0
    PROCESSING = 1
    PACKED = 2
    SHIPPED = 3
    OUT_FOR_DELIVERY = 4
    DELIVERED = 5

    @property
    def label(self) -> str:
        return STAGE_LABELS[self]

STAGE_LABELS = {
    TrackingStage.CONFIRMED: "Confirmed",
    TrackingStage.PROCESSING: "Processing",
    TrackingStage.PACKED: "Packed",
    TrackingStage.SHIPPED: "Shipped",
    TrackingStage.OUT_FOR_DELIVERY: "Out for Delivery",
    TrackingStage.DELIVERED: "Delivered",
}

class OrderStatus(str, Enum):
    """Statuses an admin may set."""
    PROCESSING = "Processing"
    PACKED = "Packed"
    SHIPPED = "Shipped"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"

STATUS_STAGES = {
    OrderStatus.PROCESSING.value: TrackingStage.PROCESSING,
    OrderStatus.PACKED.value: TrackingStage.PACKED,
    OrderStatus.SHIPPED.value: TrackingStage.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY.value: TrackingStage.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED.value: TrackingStage.DELIVERED,
}

# Upper bounds, exclusive; anything older is shown as delivered
ELAPSED_STAGES = (
    (timedelta(days=1), TrackingStage.PROCESSING),
    (timedelta(days=3), TrackingStage.PACKED),
    (timedelta(days=12), TrackingStage.SHIPPED),
    (timedelta(days=14), TrackingStage.OUT_FOR_DELIVERY),
)

def stage_for_status(status: str) -> TrackingStage:
    # Free-text values stored before statuses were validated fall back to Confirmed
    return STATUS_STAGES.get(status, TrackingStage.CONFIRMED)

def stage_from_elapsed(created_at: datetime, now: datetime) -> TrackingStage:
    elapsed = naive_utc(now) - naive_utc(created_at)
    for bound, stage in ELAPSED_STAGES:
        if elapsed < bound:
            return stage
    return TrackingStage.DELIVERED

def resolve_stage(order: dict, now: Optional[datetime] = None) -> TrackingStage:
    if order.get("is_delivered"):
        return TrackingStage.DELIVERED
    if order.get("status"):
        return stage_for_status(order["status"])
    return stage_from_elapsed(order["created_at"], now or datetime.utcnow())

def is_backward(previous_status: Optional[str], new_status: str) -> bool:
    if not previous_status:
        return False
    return stage_for_status(new_status) < stage_for_status(previous_status)
