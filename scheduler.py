"""
Finalization Scheduler

An auction's end date alone does not change its status; a periodic sweep
finalizes every active auction whose end date has passed. Each auction is
handled on its own: a failure is logged and the next sweep retries it.
"""

import logging
from typing import List

from apscheduler.schedulers.background import BackgroundScheduler

from errors import AlreadyClosed, NotFound
from schemas import Auction
from service import AuctionService

logger = logging.getLogger(__name__)

JOB_ID = "finalize-expired-auctions"


class FinalizationScheduler:
    def __init__(self, service: AuctionService, interval_seconds: int = 60):
        self.service = service
        self.interval_seconds = interval_seconds
        self._scheduler = BackgroundScheduler(timezone="UTC")
        self.last_sweep_count = 0

    def sweep(self) -> List[Auction]:
        """Finalize every expired active auction; returns the ones finalized by this sweep."""
        try:
            expired = self.service.expired()
        except Exception:
            logger.exception("Sweep could not list expired auctions")
            return []

        finalized = []
        for auction in expired:
            try:
                finalized.append(self.service.close_expired(auction.id))
            except (AlreadyClosed, NotFound) as e:
                # closed or deleted by an administrator since the listing
                logger.debug("Skipping auction %s: %s", auction.id, e)
            except Exception:
                logger.exception("Failed to finalize auction %s, will retry next sweep", auction.id)

        if finalized:
            logger.info("Sweep finalized %d of %d expired auctions", len(finalized), len(expired))
        self.last_sweep_count = len(finalized)
        return finalized

    def start(self) -> None:
        if self._scheduler.running:
            return
        # one sweep at a time; missed runs collapse into the next one
        self._scheduler.add_job(
            self.sweep,
            "interval",
            seconds=self.interval_seconds,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Finalization sweep scheduled every %ss", self.interval_seconds)

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Finalization scheduler stopped")

    @property
    def running(self) -> bool:
        return self._scheduler.running
