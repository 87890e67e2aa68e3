import functools
import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .config import Settings
from .errors import (
    AlreadyExistsError,
    FailedPreconditionError,
    InternalError,
    InvalidArgumentError,
    LedgerServiceError,
    NotFoundError,
    PermissionDeniedError,
    UnauthenticatedError,
)
from .models import (
    LISTINGS,
    REDEMPTIONS,
    USERS,
    BalanceResponse,
    CompleteListingResponse,
    Listing,
    ListingStatus,
    MessageResponse,
    RedeemItemResponse,
    RedemptionHistoryResponse,
    RedemptionRecord,
    RegisterUserResponse,
    UserAccount,
)
from .storage import SERVER_TIMESTAMP, InMemoryStorage, LedgerStore, Transaction

logger = logging.getLogger(__name__)

CONFIRMATION_ALPHABET = string.ascii_lowercase + string.digits
MAX_HISTORY_LIMIT = 500

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def generate_confirmation_code(length: int = 12) -> str:
    return "".join(secrets.choice(CONFIRMATION_ALPHABET) for _ in range(length))


def ledger_operation(name: str):
    """Surface unexpected failures of a ledger operation as InternalError."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except LedgerServiceError as e:
                logger.warning("%s rejected (%s): %s", name, e.code.value, e.message)
                raise
            except Exception as e:
                logger.exception("Error in %s", name)
                raise InternalError("An unknown error occurred.") from e

        return wrapper

    return decorator


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_caller(caller_id: Optional[str]) -> str:
    if not caller_id:
        raise UnauthenticatedError("The function must be called while authenticated.")
    return caller_id


def _optional_str(value: Any, name: str) -> Optional[str]:
    if value is not None and not isinstance(value, str):
        raise InvalidArgumentError(f"{name} must be a string.")
    return value


class LedgerService:
    def __init__(
        self,
        storage: Optional[LedgerStore] = None,
        settings: Optional[Settings] = None,
        code_generator: Callable[[], str] = generate_confirmation_code,
    ):
        self.settings = settings or Settings()
        self.storage = storage or InMemoryStorage(max_attempts=self.settings.transaction_attempts)
        self.code_generator = code_generator

    @ledger_operation("createListing")
    def create_listing(self, caller_id: Optional[str], total_cost: Any) -> MessageResponse:
        user_id = _require_caller(caller_id)
        if not _is_int(total_cost) or total_cost < 0:
            raise InvalidArgumentError("The provided totalCost is not a valid integer.")

        def deduct(txn: Transaction) -> int:
            account = self._get_account(txn, user_id)
            if not account.can_afford(total_cost):
                raise FailedPreconditionError("Insufficient points.")
            remaining = account.points - total_cost
            txn.update(USERS, user_id, {"points": remaining})
            return remaining

        remaining = self.storage.run_transaction(deduct)
        logger.info("Deducted %d points from %s for a listing (remaining %d)", total_cost, user_id, remaining)
        return MessageResponse(message="Points deducted successfully!")

    @ledger_operation("completeListing")
    def complete_listing(
        self, caller_id: Optional[str], listing_id: Any, fulfiller_id: Any
    ) -> CompleteListingResponse:
        owner_id = _require_caller(caller_id)
        if not listing_id or not fulfiller_id or not isinstance(listing_id, str) or not isinstance(fulfiller_id, str):
            raise InvalidArgumentError("Missing listingId or fulfillerId.")

        def transfer(txn: Transaction) -> int:
            listing_data = txn.get(LISTINGS, listing_id)
            fulfiller_data = txn.get(USERS, fulfiller_id)
            if listing_data is None or fulfiller_data is None:
                raise NotFoundError("Listing or fulfiller not found.")

            # Ownership is checked before decoding so non-owners never see decode errors.
            if listing_data.get("ownerID") != owner_id:
                raise PermissionDeniedError("Only the listing owner can mark it as complete.")

            listing = Listing.from_document(listing_id, listing_data)
            fulfiller = UserAccount.from_document(fulfiller_id, fulfiller_data)
            if listing.status == ListingStatus.FULFILLED:
                raise FailedPreconditionError("This listing has already been fulfilled.")
            if not listing.can_fulfill():
                raise FailedPreconditionError(f"A {listing.status.value} listing cannot be fulfilled.")
            try:
                points_to_give = listing.point_value()
            except ValueError as e:
                raise FailedPreconditionError(str(e)) from e

            txn.update(USERS, fulfiller_id, {"points": fulfiller.points + points_to_give})
            txn.update(
                LISTINGS,
                listing_id,
                {
                    "status": ListingStatus.FULFILLED.value,
                    "fulfilledBy": fulfiller_id,
                    "fulfilledTimestamp": SERVER_TIMESTAMP,
                },
            )
            return points_to_give

        points_to_give = self.storage.run_transaction(transfer)
        logger.info("Listing %s fulfilled by %s, awarded %d points", listing_id, fulfiller_id, points_to_give)
        return CompleteListingResponse(
            message="Listing fulfilled and points transferred successfully!",
            points_awarded=points_to_give,
        )

    @ledger_operation("redeemItem")
    def redeem_item(
        self, caller_id: Optional[str], points_cost: Any, item_name: Any, item_id: Any = None
    ) -> RedeemItemResponse:
        user_id = _require_caller(caller_id)
        if points_cost is None or not item_name:
            raise InvalidArgumentError("Missing pointsCost or itemName.")
        if not _is_int(points_cost) or points_cost < 0:
            raise InvalidArgumentError("pointsCost must be a non-negative integer.")
        if points_cost == 0 and not self.settings.allow_free_redemptions:
            raise InvalidArgumentError("pointsCost must be greater than zero.")
        if not isinstance(item_name, str):
            raise InvalidArgumentError("itemName must be a string.")
        item_id = _optional_str(item_id, "itemId")

        def redeem(txn: Transaction) -> tuple[int, str, str]:
            account = self._get_account(txn, user_id)
            if not account.can_afford(points_cost):
                raise FailedPreconditionError("Insufficient points.")

            remaining = account.points - points_cost
            redemption_id = txn.new_document_id(REDEMPTIONS)
            code = self.code_generator()
            record = {
                "userId": user_id,
                "itemName": item_name,
                "pointsCost": points_cost,
                "timestamp": SERVER_TIMESTAMP,
                "confirmationCode": code,
            }
            if item_id is not None:
                record["itemId"] = item_id

            txn.update(USERS, user_id, {"points": remaining})
            txn.set(REDEMPTIONS, redemption_id, record)
            return remaining, redemption_id, code

        remaining, redemption_id, code = self.storage.run_transaction(redeem)
        logger.info("%s redeemed %r for %d points (remaining %d)", user_id, item_name, points_cost, remaining)
        return RedeemItemResponse(
            message="Item redeemed successfully!",
            remaining_points=remaining,
            redemption_id=redemption_id,
            confirmation_code=code,
        )

    @ledger_operation("registerUser")
    def register_user(self, caller_id: Optional[str], name: Any = None, email: Any = None) -> RegisterUserResponse:
        user_id = _require_caller(caller_id)
        name = _optional_str(name, "name")
        email = _optional_str(email, "email")
        starting_points = self.settings.starting_points

        def create(txn: Transaction) -> None:
            if txn.get(USERS, user_id) is not None:
                raise AlreadyExistsError("User already exists.")
            data: dict[str, Any] = {"points": starting_points}
            if name is not None:
                data["name"] = name
            if email is not None:
                data["email"] = email
            txn.set(USERS, user_id, data)

        self.storage.run_transaction(create)
        logger.info("Registered %s with %d points", user_id, starting_points)
        return RegisterUserResponse(message="User registered successfully!", points=starting_points)

    @ledger_operation("getBalance")
    def get_balance(self, caller_id: Optional[str]) -> BalanceResponse:
        user_id = _require_caller(caller_id)
        account = self.storage.run_transaction(lambda txn: self._get_account(txn, user_id))
        return BalanceResponse(user_id=user_id, points=account.points)

    @ledger_operation("listRedemptions")
    def list_redemptions(self, caller_id: Optional[str], limit: Any = 50) -> RedemptionHistoryResponse:
        user_id = _require_caller(caller_id)
        if not _is_int(limit) or not 1 <= limit <= MAX_HISTORY_LIMIT:
            raise InvalidArgumentError(f"limit must be an integer between 1 and {MAX_HISTORY_LIMIT}.")

        records = [
            RedemptionRecord.from_document(doc_id, data)
            for doc_id, data in self.storage.find(REDEMPTIONS, "userId", user_id)
        ]
        records.sort(key=lambda r: r.timestamp or _EPOCH, reverse=True)
        return RedemptionHistoryResponse(
            user_id=user_id,
            redemptions=records[:limit],
            total_count=len(records),
        )

    def _get_account(self, txn: Transaction, user_id: str) -> UserAccount:
        data = txn.get(USERS, user_id)
        if data is None:
            raise NotFoundError("User not found.")
        return UserAccount.from_document(user_id, data)
