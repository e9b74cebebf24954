from datetime import datetime, timedelta, timezone

import mongomock
import pydantic
import pytest

from database import InMemoryAuctionStore, MongoAuctionStore, mutate
from errors import NotFound, WriteConflict
from schemas import Auction, Bid

NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


def fields(title, hours, start_bid=50.0):
    return {
        "title": title,
        "description": f"{title} description",
        "image_url": "https://img.example.com/x.png",
        "start_bid": start_bid,
        "end_date": NOW + timedelta(hours=hours),
        "creator_id": "100",
        "creator_name": "gm_admin",
    }


@pytest.fixture(params=["memory", "mongo"])
def auction_store(request):
    if request.param == "memory":
        return InMemoryAuctionStore()
    return MongoAuctionStore(mongomock.MongoClient()["auctions_test"])


def test_create_initialises_an_active_auction(auction_store):
    auction = auction_store.create(fields("Lamp", 2, start_bid=75), NOW)

    assert len(auction.id) == 24
    assert auction.status == "active"
    assert auction.current_bid == auction.start_bid == 75
    assert auction.current_bidder_id is None
    assert auction.bid_history == []
    assert auction.created_at == NOW
    assert auction.version == 0
    assert auction_store.get(auction.id).model_dump() == auction.model_dump()


@pytest.mark.parametrize("auction_id", ["65a1b2c3d4e5f60718293a4b", "nope"])
def test_get_missing(auction_store, auction_id):
    with pytest.raises(NotFound):
        auction_store.get(auction_id)


def test_save_is_compare_and_swap(auction_store):
    created = auction_store.create(fields("Lamp", 2), NOW)
    first = auction_store.get(created.id)
    second = auction_store.get(created.id)

    first.current_bid = 60
    auction_store.save(first)
    assert first.version == 1

    second.current_bid = 55
    with pytest.raises(WriteConflict):
        auction_store.save(second)

    stored = auction_store.get(created.id)
    assert stored.current_bid == 60
    assert stored.version == 1


def test_save_round_trips_bid_history(auction_store):
    auction = auction_store.create(fields("Lamp", 2), NOW)
    auction.bid_history.append(Bid(bidder_id="7", bidder_name="alice", amount=60, timestamp=NOW))
    auction.current_bid = 60
    auction.current_bidder_id = "7"
    auction_store.save(auction)

    stored = auction_store.get(auction.id)
    assert stored.bid_history == auction.bid_history
    assert stored.bid_history[0].timestamp.tzinfo is not None


def test_list_active_soonest_first_and_hides_expired(auction_store):
    later = auction_store.create(fields("Later", 5), NOW)
    sooner = auction_store.create(fields("Sooner", 1), NOW)
    ended = auction_store.create(fields("Ended", -1), NOW)
    closed = auction_store.create(fields("Closed", 3), NOW)
    closed.status = "finalized"
    auction_store.save(closed)

    assert [a.title for a in auction_store.list_active(NOW)] == ["Sooner", "Later"]
    assert [a.id for a in auction_store.list_expired(NOW)] == [ended.id]
    assert [a.id for a in auction_store.list_expired(NOW + timedelta(hours=2))] == [ended.id, sooner.id]
    assert later.id not in [a.id for a in auction_store.list_expired(NOW + timedelta(hours=2))]


def test_list_all_newest_first(auction_store):
    auction_store.create(fields("Old", 1), NOW)
    auction_store.create(fields("New", 1), NOW + timedelta(minutes=5))
    assert [a.title for a in auction_store.list_all()] == ["New", "Old"]


def test_delete(auction_store):
    auction = auction_store.create(fields("Lamp", 2), NOW)
    removed = auction_store.delete(auction.id)

    assert removed.id == auction.id
    with pytest.raises(NotFound):
        auction_store.get(auction.id)
    with pytest.raises(NotFound):
        auction_store.delete(auction.id)
    with pytest.raises(NotFound):
        auction_store.save(auction)


def test_mutate_reapplies_on_fresh_state_after_conflict(auction_store):
    auction = auction_store.create(fields("Lamp", 2), NOW)
    seen = []

    def apply(a):
        seen.append(a.current_bid)
        if len(seen) == 1:
            # another writer gets in between our read and our save
            other = auction_store.get(a.id)
            other.current_bid = 90
            auction_store.save(other)
        a.current_bid += 1
        return len(seen)

    updated, attempts = mutate(auction_store, auction.id, apply)

    assert seen == [50, 90]
    assert attempts == 2
    assert updated.current_bid == 91
    assert auction_store.get(auction.id).version == 2


def test_mutate_gives_up_after_bounded_attempts(auction_store):
    auction = auction_store.create(fields("Lamp", 2), NOW)

    def always_conflicting(a):
        other = auction_store.get(a.id)
        auction_store.save(other)

    with pytest.raises(WriteConflict) as excinfo:
        mutate(auction_store, auction.id, always_conflicting, attempts=3)
    assert excinfo.value.context["attempts"] == 3


def test_mutate_writes_nothing_when_apply_rejects(auction_store):
    auction = auction_store.create(fields("Lamp", 2), NOW)

    def reject(a):
        a.current_bid = 1000
        raise ValueError("no")

    with pytest.raises(ValueError):
        mutate(auction_store, auction.id, reject)
    assert auction_store.get(auction.id).model_dump() == auction.model_dump()


def test_current_bid_may_not_sit_below_the_start_bid():
    document = dict(fields("Lamp", 2, start_bid=100), id="65a1b2c3d4e5f60718293a4b", created_at=NOW)

    assert Auction(**document, current_bid=100).current_bid == 100
    with pytest.raises(pydantic.ValidationError, match="below the start bid"):
        Auction(**document, current_bid=99)
