"""Check-in request schemas shared by the server and client codegen."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic import UUID4

from .common import Pagination, PaymentOutcome, PaymentStatus, RequestStatus


# ---------------------------------------------------------------------------
# Request CRUD
# ---------------------------------------------------------------------------

class CheckInRequestCreate(BaseModel):
    """Request body for POST /requests.

    Coordinates are optional; when absent the address is geocoded.
    """
    address: str
    scheduled_at: datetime
    party_size: int = 1
    guest_name: Optional[str] = None
    notes: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class CheckInRequestRead(BaseModel):
    id: UUID4
    creator_id: str
    fulfiller_id: Optional[str] = None
    address: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    scheduled_at: datetime
    party_size: int
    guest_name: Optional[str] = None
    notes: Optional[str] = None
    fee: Decimal
    platform_fee: Optional[Decimal] = None
    fulfiller_payout: Optional[Decimal] = None
    status: RequestStatus
    payment_status: PaymentStatus
    payment_failure_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class CheckInRequestList(BaseModel):
    data: List[CheckInRequestRead] = Field(default_factory=list)
    pagination: Pagination


class NearbyRequestRead(CheckInRequestRead):
    distance_km: float


class NearbyRequestsResponse(BaseModel):
    data: List[NearbyRequestRead] = Field(default_factory=list)
    radius_km: float


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

class RequestTransition(BaseModel):
    """Request body for POST /requests/{requestId}/transition."""
    to_status: RequestStatus
    reason: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Payment signal
# ---------------------------------------------------------------------------

class PaymentSignal(BaseModel):
    """Callback body delivered by the payment gateway."""
    request_id: UUID4
    outcome: PaymentOutcome


# ---------------------------------------------------------------------------
# Fulfiller presence
# ---------------------------------------------------------------------------

class FulfillerLocationUpdate(BaseModel):
    latitude: float
    longitude: float
    is_available: bool = True


class FulfillerLocationRead(BaseModel):
    fulfiller_id: str
    latitude: float
    longitude: float
    is_available: bool
    updated_at: datetime


class NearbyFulfillerRead(FulfillerLocationRead):
    distance_km: float
