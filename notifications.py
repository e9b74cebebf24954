"""
Notification Emitter

Auction events are handed to every channel on a background thread pool.
``emit()`` returns immediately: a slow or failing channel can never block or
roll back the state change that produced the event. Delivery failures are
logged and dropped.
"""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent import futures
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import requests

from schemas import AuctionEvent

logger = logging.getLogger(__name__)

# Embed colors
COLOR_CREATED = 15158332
COLOR_BID = 3447003
COLOR_FINALIZED = 3066993
COLOR_CANCELLED = 9807270


class NotificationChannel(ABC):
    @abstractmethod
    def send(self, event: AuctionEvent) -> None:
        pass

    def __repr__(self) -> str:
        return type(self).__name__


class ListenerChannel(NotificationChannel):
    """Calls an in-process callback, e.g. a live-update publisher."""

    def __init__(self, callback: Callable[[AuctionEvent], None]):
        self.callback = callback

    def send(self, event: AuctionEvent) -> None:
        self.callback(event)


def discord_time(value: datetime, style: str = "F") -> str:
    return f"<t:{int(value.timestamp())}:{style}>"


def avatar_url(user_id: Optional[str], avatar: Optional[str]) -> str:
    if user_id and avatar:
        return f"https://cdn.discordapp.com/avatars/{user_id}/{avatar}.png"
    try:
        index = int(user_id or 0) % 5
    except ValueError:
        index = 0
    return f"https://cdn.discordapp.com/embed/avatars/{index}.png"


class DiscordWebhookChannel(NotificationChannel):
    """Posts events to a Discord channel webhook as a message with one embed."""

    def __init__(self, url: str, page_url: str, currency: str = "Rublos", timeout: float = 5.0):
        self.url = url
        self.page_url = page_url
        self.currency = currency
        self.timeout = timeout

    def _money(self, amount: Optional[float]) -> str:
        if amount is None:
            return "-"
        if float(amount).is_integer():
            amount = int(amount)
        return f"{amount} {self.currency}"

    def payload(self, event: AuctionEvent) -> Dict[str, Any]:
        footer_end = discord_time(event.end_date, "R") if event.end_date else ""
        embed: Dict[str, Any] = {"title": event.title, "url": self.page_url}

        if event.kind == "created":
            content = (
                f"🚨 New auction created by **{event.actor_name}**! **{event.title}** "
                f"starting at **{self._money(event.amount)}**."
            )
            if event.end_date:
                content += f" Ends {discord_time(event.end_date)}. Bid now on the website!"
            embed.update(
                description=event.description,
                color=COLOR_CREATED,
                fields=[
                    {"name": "Starting bid", "value": self._money(event.amount), "inline": True},
                    {"name": "Ends", "value": footer_end, "inline": True},
                ],
                footer={"text": f"Created by {event.actor_name} | ID: {event.auction_id}"},
            )
            if event.image_url:
                embed["image"] = {"url": event.image_url}
        elif event.kind == "bid":
            content = (
                f"🔔 New bid on **{event.title}**! **{event.bidder_name}** "
                f"bid **{self._money(event.amount)}**."
            )
            embed.update(
                title=f"New bid on {event.title}",
                description=(
                    f"**{event.bidder_name}** bid **{self._money(event.amount)}**.\n"
                    f"Previous bid: **{self._money(event.previous_amount)}**\n"
                    f"New bid: **{self._money(event.amount)}**"
                ),
                color=COLOR_BID,
                thumbnail={"url": avatar_url(event.bidder_id, event.bidder_avatar)},
                footer={"text": f"Ends {footer_end}"},
            )
        elif event.kind == "finalized":
            if event.winner_id:
                content = (
                    f"🏆 Auction **{event.title}** has ended! **{event.winner_name}** "
                    f"wins with **{self._money(event.amount)}**."
                )
            else:
                content = f"⌛ Auction **{event.title}** has ended with no bids."
            embed.update(
                description=event.description,
                color=COLOR_FINALIZED,
                fields=[
                    {"name": "Winner", "value": event.winner_name or "No winner", "inline": True},
                    {"name": "Final price", "value": self._money(event.amount), "inline": True},
                ],
                footer={"text": f"ID: {event.auction_id}"},
            )
            if event.image_url:
                embed["image"] = {"url": event.image_url}
        else:
            content = f"🚫 Auction **{event.title}** was cancelled by **{event.actor_name}**."
            embed.update(color=COLOR_CANCELLED, footer={"text": f"ID: {event.auction_id}"})

        return {"content": content, "embeds": [embed]}

    def send(self, event: AuctionEvent) -> None:
        response = requests.post(self.url, json=self.payload(event), timeout=self.timeout)
        response.raise_for_status()


class NotificationEmitter:
    def __init__(
        self,
        channels: Optional[Iterable[NotificationChannel]] = None,
        max_workers: int = 4,
        max_pending: int = 1000,
    ):
        self.channels: List[NotificationChannel] = list(channels or [])
        self.max_pending = max_pending
        self.dropped = 0
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def add_channel(self, channel: NotificationChannel) -> None:
        self.channels.append(channel)

    def emit(self, event: AuctionEvent) -> None:
        """
        Queue delivery of ``event`` to every channel; never blocks, never raises.

        At most ``max_pending`` deliveries wait or run at once. Past that the
        delivery is dropped with a warning, so a stalled channel cannot grow
        the queue without bound.
        """
        for channel in list(self.channels):
            with self._lock:
                backlog = sum(1 for pending in self._pending if not pending.done())
                if backlog >= self.max_pending:
                    self.dropped += 1
                    logger.warning(
                        "Notification queue is full (%d pending), dropping %s event for auction %s via %r",
                        backlog, event.kind, event.auction_id, channel,
                    )
                    continue
                try:
                    future = self._executor.submit(self._deliver, channel, event)
                except RuntimeError:
                    logger.warning("Emitter is shut down, dropping %s event for auction %s", event.kind, event.auction_id)
                    return
                self._pending.add(future)
            future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _deliver(self, channel: NotificationChannel, event: AuctionEvent) -> None:
        try:
            channel.send(event)
        except Exception:
            logger.exception(
                "Failed to deliver %s event for auction %s via %r", event.kind, event.auction_id, channel
            )

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued deliveries; True when all of them finished."""
        with self._lock:
            pending = set(self._pending)
        _, not_done = futures.wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
