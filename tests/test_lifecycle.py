import pytest

import lifecycle
from errors import AlreadyClosed, AuctionClosed, Forbidden


def test_finalize_without_bids_has_no_winner(service, store, make_auction, admin):
    auction = make_auction()
    closed = service.finalize(admin, auction.id)

    assert closed.status == "finalized"
    assert (closed.winner_id, closed.winner_name, closed.final_price) == (None, None, None)
    assert store.get(auction.id).status == "finalized"


def test_finalize_takes_winner_from_last_accepted_bid(service, make_auction, admin, alice, bob):
    auction = make_auction(start_bid=10)
    service.place_bid(auction.id, alice, 20)
    service.place_bid(auction.id, bob, 35)

    closed = service.finalize(admin, auction.id)

    assert (closed.winner_id, closed.winner_name, closed.final_price) == (bob.id, "bob", 35)


def test_finalizing_twice_is_an_error_and_keeps_the_winner(service, store, make_auction, admin, alice):
    auction = make_auction(start_bid=10)
    service.place_bid(auction.id, alice, 20)
    service.finalize(admin, auction.id)
    version = store.get(auction.id).version

    with pytest.raises(AlreadyClosed) as excinfo:
        service.finalize(admin, auction.id)

    assert excinfo.value.context["status"] == "finalized"
    stored = store.get(auction.id)
    assert (stored.winner_id, stored.final_price, stored.version) == (alice.id, 20, version)


def test_cancel_voids_without_winner(service, store, make_auction, admin, alice):
    auction = make_auction(start_bid=10)
    service.place_bid(auction.id, alice, 20)

    cancelled = service.cancel(admin, auction.id)

    assert cancelled.status == "cancelled"
    assert cancelled.winner_id is None and cancelled.final_price is None
    # the bid history survives cancellation
    assert len(cancelled.bid_history) == 1
    with pytest.raises(AuctionClosed):
        service.place_bid(auction.id, alice, 50)


@pytest.mark.parametrize("first, second", [
    ("cancel", "finalize"),
    ("cancel", "cancel"),
    ("finalize", "cancel"),
])
def test_terminal_states_have_no_way_out(service, make_auction, admin, first, second):
    auction = make_auction()
    getattr(service, first)(admin, auction.id)
    with pytest.raises(AlreadyClosed):
        getattr(service, second)(admin, auction.id)


def test_admin_may_close_before_the_end_date(service, make_auction, admin, clock):
    auction = make_auction(hours=48)
    closed = service.finalize(admin, auction.id)
    assert closed.status == "finalized"
    assert closed.end_date > clock.now


@pytest.mark.parametrize("operation", ["finalize", "cancel", "delete"])
def test_lifecycle_operations_need_admin(service, store, make_auction, alice, operation):
    auction = make_auction()
    with pytest.raises(Forbidden):
        getattr(service, operation)(alice, auction.id)
    assert store.get(auction.id).status == "active"


def test_transitions_emit_events(service, emitter, events, make_auction, admin, alice):
    won = make_auction(title="Won")
    service.place_bid(won.id, alice, 200)
    service.finalize(admin, won.id)
    voided = make_auction(title="Voided")
    service.cancel(admin, voided.id)
    emitter.drain()

    finalized = [e for e in events if e.kind == "finalized"]
    cancelled = [e for e in events if e.kind == "cancelled"]
    assert [(e.auction_id, e.winner_name, e.amount) for e in finalized] == [(won.id, "alice", 200)]
    assert [(e.auction_id, e.actor_name) for e in cancelled] == [(voided.id, "gm_admin")]


def test_finalize_mutates_only_active_auctions(make_auction):
    auction = make_auction()
    lifecycle.finalize(auction)
    with pytest.raises(AlreadyClosed):
        lifecycle.finalize(auction)
    with pytest.raises(AlreadyClosed):
        lifecycle.cancel(auction)
