from datetime import datetime, timedelta, timezone

import pytest

from auth import RolePolicy
from database import InMemoryAuctionStore
from notifications import ListenerChannel, NotificationEmitter
from schemas import CreateAuctionRequest, Principal
from service import AuctionService

ADMIN_ROLE = "1397175186935255091"
DEFAULT_IMAGE = "https://img.example.com/default.png"


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def admin():
    return Principal(id="100000000000000001", username="gm_admin", roles=[ADMIN_ROLE])


@pytest.fixture
def alice():
    return Principal(id="200000000000000002", username="alice", roles=["123"], avatar="abc123")


@pytest.fixture
def bob():
    return Principal(id="300000000000000003", username="bob")


@pytest.fixture
def store():
    return InMemoryAuctionStore()


@pytest.fixture
def events():
    return []


@pytest.fixture
def emitter(events):
    emitter = NotificationEmitter([ListenerChannel(events.append)])
    yield emitter
    emitter.shutdown()


@pytest.fixture
def service(store, emitter, clock):
    return AuctionService(
        store, emitter, RolePolicy([ADMIN_ROLE]), clock=clock, default_image_url=DEFAULT_IMAGE
    )


@pytest.fixture
def make_auction(service, admin, clock):
    def make(start_bid=100, hours=1, title="Signed jersey", **fields):
        request = CreateAuctionRequest(
            title=title,
            description="Match worn, signed by the whole squad",
            start_bid=start_bid,
            end_date=clock.now + timedelta(hours=hours),
            **fields,
        )
        return service.create(admin, request)

    return make
