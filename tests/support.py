from messaging_toolkit.auth.base import Principal
from messaging_toolkit.auth.in_memory import InMemoryAuthProvider
from messaging_toolkit.config import MessagingSettings
from messaging_toolkit.controller import MessagingController
from messaging_toolkit.conversation_database.data_models.profile import Profile
from messaging_toolkit.conversation_database.in_memory import InMemoryStore, build_in_memory_databases
from messaging_toolkit.realtime.in_memory import InMemoryChangeFeed

ALICE = Principal(id="u1", email="alice@example.com", claims={"full_name": "Alice Johnson"})
BOB = Principal(id="u2", email="bob@example.com", claims={"name": "Bob Smith"})


class FakeClock:
    """Millisecond clock that ticks forward by one on every reading."""

    def __init__(self, start_ms: int = 1_000_000) -> None:
        self.now_ms = start_ms

    def advance(self, ms: int = 1) -> None:
        self.now_ms += ms

    def now(self) -> int:
        self.now_ms += 1
        return self.now_ms


def make_store(clock: FakeClock | None = None) -> tuple[InMemoryStore, InMemoryChangeFeed]:
    feed = InMemoryChangeFeed()
    clock = clock or FakeClock()
    return InMemoryStore(feed=feed, now_func=clock.now), feed


def seed_profile(store: InMemoryStore, principal: Principal, phone_number: str | None = "+41790000000") -> Profile:
    profile = Profile(
        id=principal.id,
        display_name=principal.display_name,
        email=principal.email,
        phone_number=phone_number,
    )
    store.profiles[profile.id] = profile
    return profile


def make_controller(
    store: InMemoryStore,
    feed: InMemoryChangeFeed,
    principal: Principal,
    settings: MessagingSettings | None = None,
    notification_relay=None,
) -> MessagingController:
    profile_db, conversation_db, participant_db, message_db = build_in_memory_databases(store)
    return MessagingController(
        profile_db,
        conversation_db,
        participant_db,
        message_db,
        change_feed=feed,
        auth=InMemoryAuthProvider({"google": principal}),
        notification_relay=notification_relay,
        settings=settings or MessagingSettings(presence_interval_seconds=3600),
    )
