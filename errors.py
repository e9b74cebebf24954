"""
Auction error taxonomy.

Every rejection carries a machine readable ``code`` and a ``context`` dict with
the authoritative values (current bid, status, ...) so a client can retry with
a valid request straight away.
"""

import math
from datetime import datetime
from typing import Any, Dict, Optional


def _number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


class AuctionError(Exception):
    code = "auction_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in context.items()
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "error": self.code, **self.context}


class NotFound(AuctionError):
    code = "not_found"

    def __init__(self, auction_id: str):
        super().__init__(f"Auction {auction_id} not found", auctionId=auction_id)


class InvalidAmount(AuctionError):
    code = "invalid_amount"

    def __init__(self, amount: Any):
        # NaN and infinities are not valid JSON, integers of any size are
        printable = not isinstance(amount, bool) and (
            isinstance(amount, int) or (isinstance(amount, float) and math.isfinite(amount))
        )
        super().__init__(
            f"Bid amount must be a positive number, got {amount!r}",
            amount=amount if printable else repr(amount),
        )


class AuctionClosed(AuctionError):
    code = "auction_closed"

    def __init__(self, auction_id: str, status: str, end_date: datetime):
        super().__init__(
            f"Auction {auction_id} is not accepting bids (status {status}, ended {end_date.isoformat()})",
            auctionId=auction_id,
            status=status,
            endDate=end_date,
        )


class BidTooLow(AuctionError):
    code = "bid_too_low"

    def __init__(self, amount: float, current_bid: float):
        super().__init__(
            f"Your bid ({_number(amount)}) must be higher than the current bid ({_number(current_bid)})",
            amount=amount,
            currentBid=current_bid,
        )


class AlreadyClosed(AuctionError):
    code = "already_closed"

    def __init__(self, auction_id: str, status: str):
        super().__init__(
            f"Auction {auction_id} is already {status}",
            auctionId=auction_id,
            status=status,
        )


class ValidationError(AuctionError):
    """Malformed create/update fields."""
    code = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None):
        if field:
            super().__init__(message, field=field)
        else:
            super().__init__(message)


class Unauthenticated(AuctionError):
    code = "unauthenticated"

    def __init__(self, message: str = "You must log in to perform this action"):
        super().__init__(message)


class Forbidden(AuctionError):
    code = "forbidden"

    def __init__(self, user_id: Optional[str] = None):
        super().__init__("Access denied: an administrator role is required", userId=user_id)


class StoreError(AuctionError):
    """Persistence level failure; the caller may retry."""
    code = "store_error"


class WriteConflict(StoreError):
    code = "write_conflict"

    def __init__(self, auction_id: str, attempts: int = 1):
        super().__init__(
            f"Auction {auction_id} was modified concurrently, please retry",
            auctionId=auction_id,
            attempts=attempts,
        )


class StoreUnavailable(StoreError):
    code = "store_unavailable"

    def __init__(self, reason: str):
        super().__init__(f"Auction storage is unavailable: {reason}")
