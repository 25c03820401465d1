"""Pydantic schemas for member subscription snapshots."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SubscriptionTier(str, Enum):
    """Subscription level governing borrowing entitlements."""

    FREE = "free"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    """Lifecycle of a subscription."""

    ACTIVE = "active"
    CANCELLED = "cancelled"  # premium until end_date
    EXPIRED = "expired"


class MemberSnapshot(BaseModel):
    """Member data as supplied by the identity/subscription provider."""

    id: str = Field(..., min_length=1, max_length=64)
    name: Optional[str] = Field(None, max_length=200)
    tier: SubscriptionTier = SubscriptionTier.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    end_date: Optional[datetime] = None


class MemberResponse(BaseModel):
    """Schema for member responses."""

    id: str
    name: Optional[str]
    tier: str
    status: str
    end_date: Optional[str]

    model_config = {"from_attributes": True}
