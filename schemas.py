"""
Database Schemas for the Auction backend

Each Pydantic model below is either a stored document or a request/event
payload. Auctions live in the "auction" collection; bids are embedded in their
auction's ``bid_history`` and have no collection of their own.

Python attributes are snake_case; the public JSON read model uses camelCase
(startBid, currentBid, bidHistory, ...).
"""

from datetime import datetime, timezone
from typing import Annotated, Any, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

ACTIVE = "active"
FINALIZED = "finalized"
CANCELLED = "cancelled"

AuctionStatus = Literal["active", "finalized", "cancelled"]
EventKind = Literal["created", "bid", "finalized", "cancelled"]


def as_utc(value: datetime) -> datetime:
    """Naive datetimes (as stored by some drivers) are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Bid(Document):
    """An accepted bid, embedded in its auction's history"""
    bidder_id: str = Field(..., description="Discord ID of the bidder")
    bidder_name: str = Field(..., description="Discord name of the bidder at bid time")
    amount: float = Field(..., gt=0, description="Accepted bid amount")
    timestamp: UtcDatetime = Field(..., description="When the bid was accepted (server time)")


class Auction(Document):
    """
    Collection: "auction"
    A time-boxed listing accepting successively higher bids until closed
    """
    id: str = Field(..., description="Auction id (ObjectId hex)")
    title: str = Field(..., description="Auction title")
    description: str = Field(..., description="Auction description")
    image_url: str = Field(..., description="Image shown on the site and in Discord")
    start_bid: float = Field(..., ge=0, description="Opening price, floor for every bid")
    current_bid: float = Field(..., ge=0, description="Highest accepted bid, or the start bid")
    current_bidder_id: Optional[str] = Field(None, description="Discord ID of the leading bidder")
    current_bidder_name: Optional[str] = Field(None, description="Discord name of the leading bidder")
    bid_history: List[Bid] = Field(default_factory=list, description="Accepted bids, oldest first")
    end_date: UtcDatetime = Field(..., description="When bidding closes")
    creator_id: str = Field(..., description="Discord ID of the administrator who created it")
    creator_name: str = Field(..., description="Discord name of the administrator who created it")
    status: AuctionStatus = Field(ACTIVE, description="active | finalized | cancelled")
    winner_id: Optional[str] = None
    winner_name: Optional[str] = None
    final_price: Optional[float] = None
    created_at: UtcDatetime
    version: int = Field(0, ge=0, description="Bumped on every save, used for compare-and-swap")

    @model_validator(mode="after")
    def _current_bid_floor(self) -> "Auction":
        if self.current_bid < self.start_bid:
            raise ValueError(
                f"current bid {self.current_bid} is below the start bid {self.start_bid}"
            )
        return self

    @property
    def has_bids(self) -> bool:
        return self.current_bidder_id is not None


class AuctionView(Auction):
    """Public read model: the stored document plus derived flags"""
    is_open: bool = Field(..., description="Accepting bids right now (active and not past its end date)")


class Principal(BaseModel):
    """The acting user, as asserted by the identity provider"""
    id: str
    username: str
    roles: List[str] = Field(default_factory=list, description="Discord role ids")
    avatar: Optional[str] = None


class CreateAuctionRequest(Document):
    title: str
    description: str
    image_url: Optional[str] = None
    start_bid: float
    end_date: UtcDatetime


class UpdateAuctionRequest(Document):
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    end_date: Optional[UtcDatetime] = None


class PlaceBidRequest(Document):
    # Left untyped so that non-numeric amounts reach the bid validator
    bid_amount: Any = None


class AuctionEvent(Document):
    """Something that happened to an auction, for webhooks and live updates"""
    kind: EventKind
    auction_id: str
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    end_date: Optional[datetime] = None
    amount: Optional[float] = Field(None, description="Start bid, new bid or final price, by kind")
    previous_amount: Optional[float] = None
    bidder_id: Optional[str] = None
    bidder_name: Optional[str] = None
    bidder_avatar: Optional[str] = None
    winner_id: Optional[str] = None
    winner_name: Optional[str] = None
    actor_name: Optional[str] = Field(None, description="Administrator behind create/finalize/cancel")
    occurred_at: datetime
