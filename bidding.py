"""
Bid Validator & Applier

A bid is checked and applied inside ``database.mutate``, so the checks always
run against the state that is about to be written; a bid that lost a race is
validated again against the winner's bid and rejected as too low.
"""

import logging
import math
from datetime import datetime
from typing import Any, Tuple

from database import AuctionStore, mutate
from errors import AuctionClosed, BidTooLow, InvalidAmount
from schemas import ACTIVE, Auction, Bid

logger = logging.getLogger(__name__)


def check_amount(amount: Any) -> float:
    """Return the amount as a float if it is a positive finite number."""
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise InvalidAmount(amount)
    try:
        value = float(amount)
    except OverflowError:
        raise InvalidAmount(amount) from None
    if not math.isfinite(value) or value <= 0:
        raise InvalidAmount(amount)
    return value


def is_open(auction: Auction, now: datetime) -> bool:
    return auction.status == ACTIVE and auction.end_date > now


def apply_bid(auction: Auction, bidder_id: str, bidder_name: str, amount: float, now: datetime) -> float:
    """
    Apply a validated amount to ``auction`` in place and return the previous bid.

    The leading bidder gets no exemption: raising your own bid follows the
    same strictly-greater rule as everyone else.
    """
    if not is_open(auction, now):
        raise AuctionClosed(auction.id, auction.status, auction.end_date)
    if amount <= auction.current_bid:
        raise BidTooLow(amount, auction.current_bid)

    previous = auction.current_bid
    auction.current_bid = amount
    auction.current_bidder_id = bidder_id
    auction.current_bidder_name = bidder_name
    auction.bid_history.append(
        Bid(bidder_id=bidder_id, bidder_name=bidder_name, amount=amount, timestamp=now)
    )
    return previous


def place_bid(
    store: AuctionStore,
    auction_id: str,
    bidder_id: str,
    bidder_name: str,
    amount: Any,
    now: datetime,
) -> Tuple[Auction, float]:
    """Validate and apply a bid atomically; returns the updated auction and the previous bid."""
    value = check_amount(amount)
    auction, previous = mutate(
        store, auction_id, lambda a: apply_bid(a, bidder_id, bidder_name, value, now)
    )
    logger.info(
        "Bid accepted on auction %s: %s (%s) bid %s over %s",
        auction_id, bidder_name, bidder_id, value, previous,
    )
    return auction, previous
