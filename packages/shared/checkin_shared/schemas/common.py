from enum import Enum
from pydantic import BaseModel

class RequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED_BY_CREATOR = "cancelled_by_creator"
    CANCELLED_BY_FULFILLER = "cancelled_by_fulfiller"
    EXPIRED = "expired"

# No outgoing transitions from these
TERMINAL_STATUSES: frozenset["RequestStatus"] = frozenset({
    RequestStatus.COMPLETED,
    RequestStatus.CANCELLED_BY_CREATOR,
    RequestStatus.CANCELLED_BY_FULFILLER,
    RequestStatus.EXPIRED,
})

class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"

class PaymentOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"

class ActorRole(str, Enum):
    CREATOR = "creator"  # host
    FULFILLER = "fulfiller"  # agent

class Pagination(BaseModel):
    page: int
    per_page: int
    total: int
    total_pages: int
