"""
Auction lifecycle: active -> finalized | cancelled.

Both end states are terminal. Finalizing records the leading bidder as the
winner (or no winner when nobody bid); cancelling voids the auction without
computing a winner and only ever happens on an administrator's request.
"""

import logging
from datetime import datetime

from database import AuctionStore, mutate
from errors import AlreadyClosed
from schemas import ACTIVE, CANCELLED, FINALIZED, Auction

logger = logging.getLogger(__name__)


def _ensure_active(auction: Auction) -> None:
    if auction.status != ACTIVE:
        raise AlreadyClosed(auction.id, auction.status)


def finalize(auction: Auction) -> Auction:
    _ensure_active(auction)
    if auction.has_bids:
        auction.winner_id = auction.current_bidder_id
        auction.winner_name = auction.current_bidder_name
        auction.final_price = auction.current_bid
    else:
        auction.winner_id = None
        auction.winner_name = None
        auction.final_price = None
    auction.status = FINALIZED
    return auction


def cancel(auction: Auction) -> Auction:
    _ensure_active(auction)
    auction.status = CANCELLED
    return auction


def finalize_auction(store: AuctionStore, auction_id: str, now: datetime) -> Auction:
    auction, _ = mutate(store, auction_id, finalize)
    if auction.winner_id:
        logger.info(
            "Auction %s finalized at %s: won by %s for %s",
            auction_id, now.isoformat(), auction.winner_name, auction.final_price,
        )
    else:
        logger.info("Auction %s finalized at %s with no bids", auction_id, now.isoformat())
    return auction


def cancel_auction(store: AuctionStore, auction_id: str, now: datetime) -> Auction:
    auction, _ = mutate(store, auction_id, cancel)
    logger.info("Auction %s cancelled at %s", auction_id, now.isoformat())
    return auction
