import random
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from config import DEFAULT_CONFIG, RunConfig

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso_millis(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. 2024-05-01T12:00:00.123Z"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class IterationContext(BaseModel):
    """Who is running this iteration and when; built fresh for every call"""
    model_config = ConfigDict(frozen=True)

    vu_id: int = Field(..., ge=1, description="Virtual user id, stable for the user's lifetime")
    iteration: int = Field(..., ge=0, description="Per-user iteration counter")
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("timestamp")
    @classmethod
    def ensure_aware(cls, v):
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def epoch_millis(self) -> int:
        return (self.timestamp - EPOCH) // timedelta(milliseconds=1)


class TransactionRequest(BaseModel):
    """Body of POST /api/middleware/v1/transaction"""
    model_config = ConfigDict(frozen=True)

    internalOrderId: str
    amount: int = Field(..., gt=0)
    currencyCode: str = Field(..., min_length=3, max_length=3)
    serviceType: str
    requestedAt: datetime

    @field_serializer("requestedAt")
    def serialize_requested_at(self, value: datetime) -> str:
        return to_iso_millis(value)


def build_order_id(prefix: str, ctx: IterationContext) -> str:
    return f"{prefix}-{ctx.epoch_millis}-{ctx.vu_id}-{ctx.iteration}"


def build_payload(
    ctx: IterationContext,
    rng: Optional[random.Random] = None,
    config: RunConfig = DEFAULT_CONFIG,
) -> TransactionRequest:
    """Generate the synthetic payment for one iteration"""
    rng = rng or random.Random()
    return TransactionRequest(
        internalOrderId=build_order_id(config.order_prefix, ctx),
        amount=rng.randint(config.amount_min, config.amount_max),
        currencyCode=rng.choice(config.currencies),
        serviceType=config.service_type,
        requestedAt=ctx.timestamp,
    )
