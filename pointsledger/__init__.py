"""
Points ledger for the PlsHelp peer-help marketplace

This module provides:
- Point deduction when a listing is posted
- Payout to the fulfiller when the owner completes a listing
- Reward redemption with an append-only redemption history
- Optimistic-concurrency transactions so balances never go negative
- Callable HTTP endpoints (FastAPI, Mangum) over in-memory or Firestore storage
"""

from .errors import (
    ErrorCode,
    LedgerServiceError,
    UnauthenticatedError,
    InvalidArgumentError,
    NotFoundError,
    AlreadyExistsError,
    PermissionDeniedError,
    FailedPreconditionError,
    InternalError,
)
from .models import (
    ListingStatus,
    UserAccount,
    Listing,
    RedemptionRecord,
)
from .service import LedgerService
from .storage import InMemoryStorage, LedgerStore

__all__ = [
    "ErrorCode",
    "LedgerServiceError",
    "UnauthenticatedError",
    "InvalidArgumentError",
    "NotFoundError",
    "AlreadyExistsError",
    "PermissionDeniedError",
    "FailedPreconditionError",
    "InternalError",
    "ListingStatus",
    "UserAccount",
    "Listing",
    "RedemptionRecord",
    "LedgerService",
    "InMemoryStorage",
    "LedgerStore",
]
