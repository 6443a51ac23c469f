import pytest

from swapmarket.core.config import Settings
from swapmarket.core.memory_store import MemoryDocumentStore
from swapmarket.core.presence import PresenceRegistry
from swapmarket.services.conversation_service import ConversationService
from swapmarket.services.notification_service import NotificationDispatcher, NotificationInbox
from swapmarket.services.offer_service import OfferService
from swapmarket.services.push_service import GRANTED, PushCapability
from swapmarket.services.user_service import UserDirectory

ALICE = "user-alice"
BOB = "user-bob"
CAROL = "user-carol"


class FakePush(PushCapability):
    def __init__(self, permission=GRANTED, answer=GRANTED):
        self.state = permission
        self.answer = answer
        self.requests = 0
        self.shown = []
        self.fail = False

    async def permission(self, user_id):
        return self.state

    async def request_permission(self, user_id):
        self.requests += 1
        self.state = self.answer
        return self.state

    async def show(self, user_id, title, body, data, timeout_ms):
        if self.fail:
            raise RuntimeError("gateway unavailable")
        self.shown.append({"user_id": user_id, "title": title, "body": body, "data": data, "timeout_ms": timeout_ms})


class FlakyStore(MemoryDocumentStore):
    """Memory store whose writes to chosen tables fail a set number of times."""

    def __init__(self):
        super().__init__()
        self.failures = {}

    def fail(self, table, query_type, times=1):
        self.failures[(table, query_type)] = times

    def _maybe_fail(self, table, query_type):
        remaining = self.failures.get((table, query_type), 0)
        if remaining:
            self.failures[(table, query_type)] = remaining - 1
            raise RuntimeError(f"{query_type} on {table} failed")

    async def _insert(self, table, document):
        self._maybe_fail(table, "insert")
        return await super()._insert(table, document)

    async def _update(self, table, filters, data):
        self._maybe_fail(table, "update")
        return await super()._update(table, filters, data)


def seed(store):
    store.tables["users"] = {
        ALICE: {"id": ALICE, "first_name": "Alice", "last_name": "Smith"},
        BOB: {"id": BOB, "first_name": "Bob", "last_name": "Jones"},
        CAROL: {"id": CAROL, "first_name": "Carol", "last_name": "White"},
    }
    store.tables["items"] = {
        "item-bicycle": {"id": "item-bicycle", "owner_id": ALICE, "title": "Bicycle", "images": ["bike.jpg"], "status": "active"},
        "item-lamp": {"id": "item-lamp", "owner_id": ALICE, "title": "Desk lamp", "images": ["lamp.jpg"], "status": "active"},
        "item-guitar": {"id": "item-guitar", "owner_id": BOB, "title": "Guitar", "images": ["guitar.jpg"], "status": "active"},
        "item-tent": {"id": "item-tent", "owner_id": BOB, "title": "Tent", "images": ["tent.jpg"], "status": "pending"},
        "item-chair": {"id": "item-chair", "owner_id": CAROL, "title": "Chair", "images": ["chair.jpg"], "status": "active"},
    }


@pytest.fixture
def settings():
    return Settings(environment="test", base_url="https://swap.test", supabase_url=None, supabase_key=None)


@pytest.fixture
def store():
    store = FlakyStore()
    seed(store)
    return store


@pytest.fixture
def presence():
    return PresenceRegistry()


@pytest.fixture
def push():
    return FakePush()


@pytest.fixture
def dispatcher(store, presence, push, settings):
    return NotificationDispatcher(store, presence, push=push, settings=settings)


@pytest.fixture
def users(store):
    return UserDirectory(store)


@pytest.fixture
def offers(store, dispatcher, users, settings):
    return OfferService(store, dispatcher, users, settings)


@pytest.fixture
def conversations(store, dispatcher, users, settings):
    return ConversationService(store, dispatcher, users, settings)


@pytest.fixture
def inbox(store):
    return NotificationInbox(store)


def notifications_for(store, user_id, type=None):
    return [
        n for n in store.tables.get("notifications", {}).values()
        if n["user_id"] == user_id and (type is None or n["type"] == type)
    ]
