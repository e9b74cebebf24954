"""
AuctionService: the single entry point for requests and the scheduler.

It reads the clock, checks administrator rights through the injected policy,
runs the bidding and lifecycle operations against the store, and emits an
event for every state change once it is committed.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import bidding
import lifecycle
from auth import AuthorizationPolicy
from database import AuctionStore, mutate
from errors import Forbidden, ValidationError
from notifications import NotificationEmitter
from schemas import (
    ACTIVE,
    Auction,
    AuctionEvent,
    AuctionView,
    CreateAuctionRequest,
    Principal,
    UpdateAuctionRequest,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuctionService:
    def __init__(
        self,
        store: AuctionStore,
        emitter: NotificationEmitter,
        authorize: AuthorizationPolicy,
        clock: Clock = utcnow,
        default_image_url: str = "",
    ):
        self.store = store
        self.emitter = emitter
        self.authorize = authorize
        self.clock = clock
        self.default_image_url = default_image_url

    def _require_admin(self, actor: Principal) -> None:
        if not self.authorize(actor):
            raise Forbidden(actor.id)

    def _event(self, kind: str, auction: Auction, **fields: Any) -> AuctionEvent:
        return AuctionEvent(
            kind=kind,
            auction_id=auction.id,
            title=auction.title,
            description=auction.description,
            image_url=auction.image_url,
            end_date=auction.end_date,
            occurred_at=self.clock(),
            **fields,
        )

    # -- reads --------------------------------------------------------------

    def view(self, auction: Auction) -> AuctionView:
        return AuctionView(**auction.model_dump(), is_open=bidding.is_open(auction, self.clock()))

    def list_active(self) -> List[Auction]:
        return self.store.list_active(self.clock())

    def get(self, auction_id: str) -> Auction:
        return self.store.get(auction_id)

    def list_all(self, actor: Principal) -> List[Auction]:
        self._require_admin(actor)
        return self.store.list_all()

    # -- bidding ------------------------------------------------------------

    def place_bid(self, auction_id: str, bidder: Principal, amount: Any) -> Auction:
        auction, previous = bidding.place_bid(
            self.store, auction_id, bidder.id, bidder.username, amount, self.clock()
        )
        self.emitter.emit(
            self._event(
                "bid",
                auction,
                amount=auction.current_bid,
                previous_amount=previous,
                bidder_id=bidder.id,
                bidder_name=bidder.username,
                bidder_avatar=bidder.avatar,
            )
        )
        return auction

    # -- administration -----------------------------------------------------

    def create(self, actor: Principal, request: CreateAuctionRequest) -> Auction:
        self._require_admin(actor)
        now = self.clock()
        title = request.title.strip()
        description = request.description.strip()
        if not title:
            raise ValidationError("Title is required", field="title")
        if not description:
            raise ValidationError("Description is required", field="description")
        if not math.isfinite(request.start_bid) or request.start_bid < 0:
            raise ValidationError("Start bid must be a non-negative number", field="startBid")
        if request.end_date <= now:
            raise ValidationError("End date must be in the future", field="endDate")

        auction = self.store.create(
            {
                "title": title,
                "description": description,
                "image_url": (request.image_url or "").strip() or self.default_image_url,
                "start_bid": float(request.start_bid),
                "end_date": request.end_date,
                "creator_id": actor.id,
                "creator_name": actor.username,
            },
            now,
        )
        logger.info("Auction %s (%s) created by %s", auction.id, auction.title, actor.username)
        self.emitter.emit(self._event("created", auction, amount=auction.start_bid, actor_name=actor.username))
        return auction

    def update(self, actor: Principal, auction_id: str, request: UpdateAuctionRequest) -> Auction:
        self._require_admin(actor)
        changes: Dict[str, Any] = request.model_dump(exclude_unset=True)
        for name in ("title", "description"):
            if name in changes:
                value = (changes[name] or "").strip()
                if not value:
                    raise ValidationError(f"{name.capitalize()} cannot be empty", field=name)
                changes[name] = value
        if "image_url" in changes:
            changes["image_url"] = (changes["image_url"] or "").strip() or self.default_image_url

        def apply(auction: Auction) -> None:
            if "end_date" in changes:
                if changes["end_date"] is None:
                    raise ValidationError("End date cannot be empty", field="endDate")
                if auction.status == ACTIVE:
                    raise ValidationError(
                        "The end date of an active auction cannot be changed", field="endDate"
                    )
            for name, value in changes.items():
                setattr(auction, name, value)

        auction, _ = mutate(self.store, auction_id, apply)
        logger.info("Auction %s updated by %s: %s", auction_id, actor.username, ", ".join(sorted(changes)))
        return auction

    def delete(self, actor: Principal, auction_id: str) -> Auction:
        self._require_admin(actor)
        auction = self.store.delete(auction_id)
        logger.info("Auction %s (%s) deleted by %s", auction_id, auction.title, actor.username)
        return auction

    def finalize(self, actor: Principal, auction_id: str) -> Auction:
        self._require_admin(actor)
        return self._finalize(auction_id, actor_name=actor.username)

    def cancel(self, actor: Principal, auction_id: str) -> Auction:
        self._require_admin(actor)
        auction = lifecycle.cancel_auction(self.store, auction_id, self.clock())
        self.emitter.emit(self._event("cancelled", auction, actor_name=actor.username))
        return auction

    # -- scheduler ----------------------------------------------------------

    def expired(self) -> List[Auction]:
        return self.store.list_expired(self.clock())

    def close_expired(self, auction_id: str) -> Auction:
        return self._finalize(auction_id)

    def _finalize(self, auction_id: str, actor_name: Optional[str] = None) -> Auction:
        auction = lifecycle.finalize_auction(self.store, auction_id, self.clock())
        self.emitter.emit(
            self._event(
                "finalized",
                auction,
                amount=auction.final_price,
                winner_id=auction.winner_id,
                winner_name=auction.winner_name,
                actor_name=actor_name,
            )
        )
        return auction
