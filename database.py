"""
Auction Record Store

Durable keyed storage of Auction documents. Every write is a compare-and-swap
on the document's ``version`` field, and ``mutate()`` builds the per-auction
atomic read-modify-write that bidding and lifecycle transitions rely on.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import NotFound, StoreUnavailable, WriteConflict
from schemas import ACTIVE, Auction, as_utc

logger = logging.getLogger(__name__)

COLLECTION = "auction"
MAX_WRITE_ATTEMPTS = 5

T = TypeVar("T")


def new_auction(auction_id: str, fields: Dict[str, Any], now: datetime) -> Auction:
    """Build a freshly created auction: active, no bids, current bid at the start bid."""
    return Auction(
        id=auction_id,
        title=fields["title"],
        description=fields["description"],
        image_url=fields["image_url"],
        start_bid=fields["start_bid"],
        current_bid=fields["start_bid"],
        end_date=fields["end_date"],
        creator_id=fields["creator_id"],
        creator_name=fields["creator_name"],
        status=ACTIVE,
        created_at=now,
        version=0,
    )


class AuctionStore(ABC):
    """Storage contract shared by the MongoDB and in-memory stores."""

    @abstractmethod
    def get(self, auction_id: str) -> Auction:
        """Fresh copy of the stored auction, or NotFound."""

    @abstractmethod
    def list_active(self, now: datetime) -> List[Auction]:
        """Active auctions ending after ``now``, soonest ending first."""

    @abstractmethod
    def list_expired(self, now: datetime) -> List[Auction]:
        """Active auctions whose end date is at or before ``now``, oldest deadline first."""

    @abstractmethod
    def list_all(self) -> List[Auction]:
        """Every auction, newest first."""

    @abstractmethod
    def create(self, fields: Dict[str, Any], now: datetime) -> Auction:
        pass

    @abstractmethod
    def save(self, auction: Auction) -> Auction:
        """
        Persist the whole auction if nobody saved it since it was read.

        Raises WriteConflict when the stored version differs from
        ``auction.version``. On success the version is bumped in place.
        """

    @abstractmethod
    def delete(self, auction_id: str) -> Auction:
        pass

    def describe(self) -> Dict[str, Any]:
        return {"backend": type(self).__name__}


def mutate(
    store: AuctionStore,
    auction_id: str,
    apply: Callable[[Auction], T],
    attempts: int = MAX_WRITE_ATTEMPTS,
) -> Tuple[Auction, T]:
    """
    Read the auction, apply ``apply`` to it and save it atomically.

    ``apply`` mutates the auction in place and may raise to reject the change,
    in which case nothing is written. If another writer saved the auction in
    between, the whole cycle runs again on fresh state, so checks made by
    ``apply`` always hold for the state that gets written.
    """
    for attempt in range(1, attempts + 1):
        auction = store.get(auction_id)
        result = apply(auction)
        try:
            store.save(auction)
        except WriteConflict:
            logger.debug("Write conflict on auction %s (attempt %d/%d)", auction_id, attempt, attempts)
            continue
        return auction, result
    logger.warning("Giving up on auction %s after %d conflicting writes", auction_id, attempts)
    raise WriteConflict(auction_id, attempts)


# ---------------------------------------------------------------------------
# MongoDB
# ---------------------------------------------------------------------------

def _object_id(auction_id: str) -> ObjectId:
    try:
        return ObjectId(auction_id)
    except (InvalidId, TypeError):
        raise NotFound(auction_id)


def _bson_time(value: datetime) -> datetime:
    # BSON dates are naive UTC
    return as_utc(value).replace(tzinfo=None)


def _bson_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return _bson_time(value)
    if isinstance(value, dict):
        return {k: _bson_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_bson_value(v) for v in value]
    return value


def _to_document(auction: Auction) -> Dict[str, Any]:
    doc = _bson_value(auction.model_dump(exclude={"id"}))
    doc["_id"] = ObjectId(auction.id)
    return doc


def _from_document(doc: Dict[str, Any]) -> Auction:
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return Auction.model_validate(doc)


class MongoAuctionStore(AuctionStore):
    def __init__(self, db: Database, collection: str = COLLECTION):
        self.db = db
        self.collection = db[collection]

    def ensure_indexes(self) -> None:
        try:
            self.collection.create_index([("status", ASCENDING), ("end_date", ASCENDING)])
        except PyMongoError as e:
            logger.warning("Could not create auction indexes: %s", e)

    def get(self, auction_id: str) -> Auction:
        oid = _object_id(auction_id)
        try:
            doc = self.collection.find_one({"_id": oid})
        except PyMongoError as e:
            raise StoreUnavailable(str(e)) from e
        if not doc:
            raise NotFound(auction_id)
        return _from_document(doc)

    def _find(self, query: Dict[str, Any], sort: List[Tuple[str, int]]) -> List[Auction]:
        try:
            docs = list(self.collection.find(query).sort(sort))
        except PyMongoError as e:
            raise StoreUnavailable(str(e)) from e
        return [_from_document(d) for d in docs]

    def list_active(self, now: datetime) -> List[Auction]:
        return self._find({"status": ACTIVE, "end_date": {"$gt": _bson_time(now)}}, [("end_date", ASCENDING)])

    def list_expired(self, now: datetime) -> List[Auction]:
        return self._find({"status": ACTIVE, "end_date": {"$lte": _bson_time(now)}}, [("end_date", ASCENDING)])

    def list_all(self) -> List[Auction]:
        return self._find({}, [("created_at", DESCENDING)])

    def create(self, fields: Dict[str, Any], now: datetime) -> Auction:
        auction = new_auction(str(ObjectId()), fields, now)
        try:
            self.collection.insert_one(_to_document(auction))
        except PyMongoError as e:
            raise StoreUnavailable(str(e)) from e
        return auction

    def save(self, auction: Auction) -> Auction:
        doc = _to_document(auction)
        doc["version"] = auction.version + 1
        oid = doc.pop("_id")
        try:
            result = self.collection.replace_one({"_id": oid, "version": auction.version}, doc)
            if result.matched_count == 0:
                if self.collection.count_documents({"_id": oid}, limit=1) == 0:
                    raise NotFound(auction.id)
                raise WriteConflict(auction.id)
        except PyMongoError as e:
            raise StoreUnavailable(str(e)) from e
        auction.version += 1
        return auction

    def delete(self, auction_id: str) -> Auction:
        oid = _object_id(auction_id)
        try:
            doc = self.collection.find_one_and_delete({"_id": oid})
        except PyMongoError as e:
            raise StoreUnavailable(str(e)) from e
        if not doc:
            raise NotFound(auction_id)
        return _from_document(doc)

    def describe(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {"backend": "mongodb", "database_name": self.db.name}
        try:
            info["collections"] = self.db.list_collection_names()[:10]
            info["connection_status"] = "Connected"
        except PyMongoError as e:
            info["connection_status"] = f"Error: {str(e)[:50]}"
        return info


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryAuctionStore(AuctionStore):
    """Process-local store; one lock guards every read and write."""

    def __init__(self):
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _load(self, doc: Dict[str, Any]) -> Auction:
        return Auction.model_validate(copy.deepcopy(doc))

    def get(self, auction_id: str) -> Auction:
        with self._lock:
            doc = self._docs.get(auction_id)
            if doc is None:
                raise NotFound(auction_id)
            return self._load(doc)

    def _select(self, keep: Callable[[Auction], bool]) -> List[Auction]:
        with self._lock:
            auctions = [self._load(d) for d in self._docs.values()]
        return [a for a in auctions if keep(a)]

    def list_active(self, now: datetime) -> List[Auction]:
        found = self._select(lambda a: a.status == ACTIVE and a.end_date > now)
        return sorted(found, key=lambda a: a.end_date)

    def list_expired(self, now: datetime) -> List[Auction]:
        found = self._select(lambda a: a.status == ACTIVE and a.end_date <= now)
        return sorted(found, key=lambda a: a.end_date)

    def list_all(self) -> List[Auction]:
        return sorted(self._select(lambda a: True), key=lambda a: a.created_at, reverse=True)

    def create(self, fields: Dict[str, Any], now: datetime) -> Auction:
        auction = new_auction(str(ObjectId()), fields, now)
        with self._lock:
            self._docs[auction.id] = auction.model_dump()
        return auction

    def save(self, auction: Auction) -> Auction:
        with self._lock:
            stored = self._docs.get(auction.id)
            if stored is None:
                raise NotFound(auction.id)
            if stored["version"] != auction.version:
                raise WriteConflict(auction.id)
            doc = auction.model_dump()
            doc["version"] = auction.version + 1
            self._docs[auction.id] = doc
        auction.version += 1
        return auction

    def delete(self, auction_id: str) -> Auction:
        with self._lock:
            doc = self._docs.pop(auction_id, None)
        if doc is None:
            raise NotFound(auction_id)
        return self._load(doc)

    def describe(self) -> Dict[str, Any]:
        with self._lock:
            count = len(self._docs)
        return {"backend": "memory", "auctions": count}


def connect(database_url: Optional[str], database_name: str) -> AuctionStore:
    """MongoDB store when a URL is configured, in-memory store otherwise."""
    if not database_url:
        logger.warning("DATABASE_URL is not set, auctions are kept in memory only")
        return InMemoryAuctionStore()
    client: MongoClient = MongoClient(database_url, tz_aware=True)
    store = MongoAuctionStore(client[database_name])
    store.ensure_indexes()
    logger.info("Using MongoDB database %s", database_name)
    return store
