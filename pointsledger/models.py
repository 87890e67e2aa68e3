import re
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import MalformedDocumentError

USERS = "users"
LISTINGS = "listings"
REDEMPTIONS = "redemptionHistory"

# Prices that carry no point value.
FREE_PRICES = ("Free", "Other")

_PRICE_PATTERN = re.compile(r"(\d+)(?:\.0*)?")


class ListingStatus(str, Enum):
    ACTIVE = "active"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class Document(BaseModel):
    """Base for models decoded from a store document."""

    model_config = ConfigDict(populate_by_name=True)

    collection: ClassVar[str]

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]):
        try:
            return cls.model_validate({**data, "id": doc_id})
        except ValidationError as e:
            raise MalformedDocumentError(cls.collection, doc_id, str(e)) from e


class UserAccount(Document):
    collection: ClassVar[str] = USERS
    id: str
    points: StrictInt = Field(..., ge=0)
    name: Optional[StrictStr] = None
    email: Optional[StrictStr] = None

    def can_afford(self, cost: int) -> bool:
        return self.points >= cost


class Listing(Document):
    collection: ClassVar[str] = LISTINGS
    id: str
    owner_id: StrictStr = Field(..., alias="ownerID")
    price: str
    status: ListingStatus
    fulfilled_by: Optional[StrictStr] = Field(default=None, alias="fulfilledBy")
    fulfilled_timestamp: Optional[datetime] = Field(default=None, alias="fulfilledTimestamp")

    @field_validator("price", mode="before")
    @classmethod
    def _price_as_text(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @model_validator(mode="after")
    def _fulfilled_by_matches_status(self) -> "Listing":
        if (self.status == ListingStatus.FULFILLED) != (self.fulfilled_by is not None):
            raise ValueError("fulfilledBy must be set exactly when status is fulfilled")
        return self

    def can_fulfill(self) -> bool:
        return self.status == ListingStatus.ACTIVE

    def point_value(self) -> int:
        """Points paid to the fulfiller.

        Whole amounts written as money ("0.00", "200.00") count as integers.
        Raises ValueError when the price is neither a sentinel nor a
        non-negative whole number.
        """
        if self.price in FREE_PRICES:
            return 0
        match = _PRICE_PATTERN.fullmatch(self.price.strip())
        if not match:
            raise ValueError(f"Listing price {self.price!r} is not a valid point amount.")
        return int(match.group(1))


class RedemptionRecord(Document):
    collection: ClassVar[str] = REDEMPTIONS
    id: str
    user_id: StrictStr = Field(..., alias="userId")
    item_name: StrictStr = Field(..., alias="itemName")
    item_id: Optional[StrictStr] = Field(default=None, alias="itemId")
    points_cost: StrictInt = Field(..., alias="pointsCost", ge=0)
    timestamp: Optional[datetime] = None
    confirmation_code: StrictStr = Field(..., alias="confirmationCode")


class MessageResponse(BaseModel):
    message: str


class CompleteListingResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    points_awarded: int = Field(..., alias="pointsAwarded")


class RedeemItemResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    remaining_points: int = Field(..., alias="remainingPoints")
    redemption_id: str = Field(..., alias="redemptionId")
    confirmation_code: str = Field(..., alias="confirmationCode")


class RegisterUserResponse(BaseModel):
    message: str
    points: int


class BalanceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    points: int


class RedemptionHistoryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    redemptions: list[RedemptionRecord]
    total_count: int = Field(..., alias="totalCount")
