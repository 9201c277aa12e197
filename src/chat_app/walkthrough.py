"""
End-to-end walkthrough of the messaging toolkit.

Two clients share one in-memory store and change feed, so every write one of
them makes is delivered live to the other. Each step is an independent
function; loguru logs the intermediate state after every step.

Usage
-----
    python -m chat_app.walkthrough

Settings are read from the environment (see 'MessagingSettings.from_env'),
e.g. to shorten the presence heartbeat:

    PRESENCE_INTERVAL_SECONDS=5 python -m chat_app.walkthrough

Steps at a glance
-----------------
1  step1_build_backend()        - Shared in-memory store and change feed.
2  step2_start_sessions()       - Sign both users in and start their sessions.
3  step3_find_contact()         - A searches B by email.
4  step4_open_conversation()    - A opens (and thereby creates) the conversation.
5  step5_send_message()         - A sends a message.
6  step6_read_on_other_side()   - B opens the conversation and reads it.
"""

import asyncio
from typing import Any

from loguru import logger

from messaging_toolkit.auth.base import Principal
from messaging_toolkit.auth.in_memory import InMemoryAuthProvider
from messaging_toolkit.config import MessagingSettings
from messaging_toolkit.controller import MessagingController
from messaging_toolkit.conversation_database.data_models.message import Message
from messaging_toolkit.conversation_database.data_models.profile import Profile
from messaging_toolkit.conversation_database.in_memory import InMemoryStore, build_in_memory_databases
from messaging_toolkit.realtime.in_memory import InMemoryChangeFeed

IDENTITY_PROVIDER = "google"

ALICE = Principal(id="u1", email="alice@example.com", claims={"full_name": "Alice Johnson"})
BOB = Principal(id="u2", email="bob@example.com", claims={"name": "Bob Smith"})


def step1_build_backend() -> tuple[InMemoryStore, InMemoryChangeFeed]:
    feed = InMemoryChangeFeed()
    store = InMemoryStore(feed=feed)
    logger.info("[Step 1] In-memory store and change feed ready")
    return store, feed


def build_client(
    store: InMemoryStore, feed: InMemoryChangeFeed, principal: Principal, settings: MessagingSettings
) -> MessagingController:
    profile_db, conversation_db, participant_db, message_db = build_in_memory_databases(store)
    auth = InMemoryAuthProvider({IDENTITY_PROVIDER: principal})
    return MessagingController(
        profile_db,
        conversation_db,
        participant_db,
        message_db,
        change_feed=feed,
        auth=auth,
        settings=settings,
    )


async def step2_start_sessions(*clients: MessagingController) -> None:
    for client in clients:
        await client.auth.sign_in(IDENTITY_PROVIDER)
        onboarding = await client.start()
        logger.info(f"[Step 2] {client.user_id} signed in, onboarding needed: {onboarding.needs_onboarding}")


async def step3_find_contact(client: MessagingController, query: str) -> Profile:
    results = await client.search_users(query)
    logger.info(f"[Step 3] Search {query!r} -> {[p.label for p in results]}")
    if not results:
        raise LookupError(f"No user matches {query!r}")
    return results[0]


async def step4_open_conversation(client: MessagingController, contact: Profile) -> str:
    conversation_id = await client.open_conversation(contact)
    if conversation_id is None:
        raise RuntimeError("Conversation selection was superseded")
    logger.info(f"[Step 4] {client.user_id} opened {conversation_id} with {contact.label}")
    return conversation_id


async def step5_send_message(client: MessagingController, text: str) -> Message:
    message = await client.send_message(text)
    logger.info(f"[Step 5] {client.user_id} sent {text!r}; timeline has {len(client.messages)} message(s)")
    return message


async def step6_read_on_other_side(client: MessagingController, conversation_id: str) -> int:
    before = client.index.get(conversation_id) if client.index else None
    unread_before = before.unread_count if before else 0
    await client.open_conversation(before or conversation_id)
    after = client.index.get(conversation_id) if client.index else None
    unread_after = after.unread_count if after else 0
    logger.info(f"[Step 6] {client.user_id} read {conversation_id}: unread {unread_before} -> {unread_after}")
    return unread_before


async def run_walkthrough(settings: MessagingSettings | None = None) -> dict[str, Any]:
    settings = settings or MessagingSettings.from_env()
    logger.info("======= Messaging walkthrough - start =======")

    store, feed = step1_build_backend()
    alice = build_client(store, feed, ALICE, settings)
    bob = build_client(store, feed, BOB, settings)

    await step2_start_sessions(alice, bob)
    try:
        contact = await step3_find_contact(alice, BOB.email or BOB.id)
        conversation_id = await step4_open_conversation(alice, contact)
        message = await step5_send_message(alice, "hi")
        unread_before = await step6_read_on_other_side(bob, conversation_id)

        seen_by_alice = next(m for m in alice.messages if m.id == message.id)
        bob_view = bob.index.get(conversation_id) if bob.index else None
        summary = {
            "conversation_id": conversation_id,
            "participants": sorted(p.user_id for p in store.participants if p.conversation_id == conversation_id),
            "messages_in_alice_timeline": len(alice.messages),
            "unread_for_bob_before": unread_before,
            "unread_for_bob_after": bob_view.unread_count if bob_view else None,
            "read_seen_by_alice": seen_by_alice.read,
        }
    finally:
        await alice.stop()
        await bob.stop()

    logger.info(f"Summary: {summary}")
    logger.info("======= Messaging walkthrough - done =======")
    return summary


if __name__ == "__main__":
    asyncio.run(run_walkthrough())
