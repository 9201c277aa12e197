import asyncio
import unittest

from messaging_toolkit.auth.base import Principal
from messaging_toolkit.config import MessagingSettings
from messaging_toolkit.conversation_database.in_memory import InMemoryMessageDatabase, InMemoryStore
from messaging_toolkit.errors import NotAuthenticatedError, StoreError
from messaging_toolkit.notifications.base import NotificationError, NotificationRelay

from tests.support import ALICE, BOB, make_controller, make_store, seed_profile


class RecordingRelay(NotificationRelay):
    def __init__(self, fail: bool = False) -> None:
        self.sent = []
        self.fail = fail

    async def send(self, notification):
        self.sent.append(notification)
        if self.fail:
            raise NotificationError("relay down")


class SlowMessageDatabase(InMemoryMessageDatabase):
    """Holds every message write until 'release' is set."""

    def __init__(self, store: InMemoryStore) -> None:
        super().__init__(store)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def create_message(self, sender_id, conversation_id, content):
        self.started.set()
        await self.release.wait()
        return await super().create_message(sender_id, conversation_id, content)


class MessagingControllerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.store, self.feed = make_store()
        self.alice = make_controller(self.store, self.feed, ALICE)
        self.bob = make_controller(self.store, self.feed, BOB)

    async def asyncTearDown(self):
        await self.alice.stop()
        await self.bob.stop()

    async def _start(self, *clients):
        for client in clients:
            await client.auth.sign_in("google")
            await client.start()

    async def test_start_requires_session(self):
        with self.assertRaises(NotAuthenticatedError):
            await self.alice.start()
        self.assertFalse(self.alice.started)

    async def test_start_resolves_profile_and_goes_online(self):
        await self.alice.auth.sign_in("google")
        onboarding = await self.alice.start()

        self.assertTrue(onboarding.needs_onboarding)
        self.assertTrue(self.store.profiles["u1"].online)
        self.assertEqual(self.feed.subscriber_count(), 2)

        with self.assertRaises(RuntimeError):
            await self.alice.start()

    async def test_stop_releases_everything(self):
        await self._start(self.alice)
        await self.alice.stop()

        self.assertFalse(self.alice.started)
        self.assertEqual(self.feed.subscriber_count(), 0)
        self.assertFalse(self.store.profiles["u1"].online)
        self.assertEqual(self.alice.conversations, [])
        with self.assertRaises(NotAuthenticatedError):
            await self.alice.send_message("hi")

    async def test_session_context_manager(self):
        await self.alice.auth.sign_in("google")
        async with self.alice.session():
            self.assertTrue(self.alice.started)
        self.assertFalse(self.alice.started)
        self.assertEqual(self.feed.subscriber_count(), 0)

    async def test_sign_out_elsewhere_stops_session(self):
        await self._start(self.alice)
        await self.alice.auth.sign_out()
        self.assertFalse(self.alice.started)
        self.assertEqual(self.feed.subscriber_count(), 0)

    async def test_complete_onboarding(self):
        await self._start(self.alice)
        profile = await self.alice.complete_onboarding("+41 79 123 45 67")
        self.assertEqual(profile.phone_number, "+41791234567")
        self.assertFalse(self.alice.onboarding.needs_onboarding)

    async def test_conversation_round_trip(self):
        await self._start(self.alice, self.bob)

        [contact] = await self.alice.search_users("bob")
        conversation_id = await self.alice.open_conversation(contact)
        sent = await self.alice.send_message("hi")

        self.assertEqual([m.id for m in self.alice.messages], [sent.id])
        self.assertEqual(self.alice.conversations[0].last_message.id, sent.id)
        self.assertEqual(self.bob.conversations[0].id, conversation_id)
        self.assertEqual(self.bob.conversations[0].unread_count, 1)
        self.assertEqual(self.bob.conversations[0].other_user.id, "u1")

        await self.bob.open_conversation(self.bob.conversations[0])

        self.assertEqual(self.bob.conversations[0].unread_count, 0)
        self.assertEqual([m.content for m in self.bob.messages], ["hi"])
        self.assertTrue(self.alice.messages[0].read)

        reply = await self.bob.send_message("hey")
        self.assertEqual([m.id for m in self.alice.messages], [sent.id, reply.id])
        self.assertTrue(self.alice.messages[-1].read)
        self.assertEqual(self.alice.conversations[0].unread_count, 0)

    async def test_read_receipt_delivered_before_own_echo(self):
        await self._start(self.bob, self.alice)
        await self.alice.open_conversation("u2")
        await self.bob.open_conversation("u1")

        sent = await self.alice.send_message("hi")

        self.assertTrue(self.store.messages[sent.id].read)
        self.assertEqual([m.id for m in self.alice.messages], [sent.id])
        self.assertTrue(self.alice.messages[0].read)
        self.assertTrue(self.alice.conversations[0].last_message.read)

    async def test_conversation_list_follows_latest_activity(self):
        carol = seed_profile(self.store, Principal(id="u3", email="carol@example.com"))
        await self._start(self.alice, self.bob)

        await self.alice.open_conversation(carol.id)
        await self.alice.send_message("first")
        await self.alice.open_conversation("u2")
        await self.alice.send_message("second")

        self.assertEqual([c.other_user.id for c in self.alice.conversations], ["u2", "u3"])

    async def test_search_failure_returns_empty(self):
        await self._start(self.alice)

        async def broken(*args):
            raise StoreError("timeout")

        self.alice.profile_db.search_profiles = broken
        self.assertEqual(await self.alice.search_users("bob"), [])

    async def test_push_sent_to_recipient_when_enabled(self):
        relay = RecordingRelay()
        self.alice = make_controller(
            self.store,
            self.feed,
            ALICE,
            settings=MessagingSettings(notifications_enabled=True, presence_interval_seconds=3600),
            notification_relay=relay,
        )
        await self._start(self.alice, self.bob)
        await self.bob.register_push_token("bob-device")

        await self.alice.open_conversation("u2")
        sent = await self.alice.send_message("hi")

        [notification] = relay.sent
        self.assertEqual(notification.token, "bob-device")
        self.assertEqual(notification.title, "Alice Johnson")
        self.assertEqual(notification.body, "hi")
        self.assertEqual(notification.data["message_id"], sent.id)

    async def test_push_goes_to_conversation_of_the_message(self):
        relay = RecordingRelay()
        self.alice = make_controller(
            self.store,
            self.feed,
            ALICE,
            settings=MessagingSettings(notifications_enabled=True, presence_interval_seconds=3600),
            notification_relay=relay,
        )
        slow_writes = SlowMessageDatabase(self.store)
        self.alice.message_db = slow_writes
        carol = seed_profile(self.store, Principal(id="u3", email="carol@example.com"))
        carol.push_token = "carol-device"
        await self._start(self.alice, self.bob)
        await self.bob.register_push_token("bob-device")
        await self.alice.open_conversation("u2")

        sending = asyncio.create_task(self.alice.send_message("for bob"))
        await slow_writes.started.wait()
        await self.alice.open_conversation("u3")
        slow_writes.release.set()
        await sending

        self.assertEqual([n.token for n in relay.sent], ["bob-device"])
        self.assertEqual(relay.sent[0].body, "for bob")

    async def test_push_is_skipped_when_disabled_or_failing(self):
        relay = RecordingRelay(fail=True)
        self.alice = make_controller(self.store, self.feed, ALICE, notification_relay=relay)
        await self._start(self.alice, self.bob)
        await self.bob.register_push_token("bob-device")
        await self.alice.open_conversation("u2")

        await self.alice.send_message("quiet")
        self.assertEqual(relay.sent, [])

        self.alice.settings = MessagingSettings(notifications_enabled=True)
        sent = await self.alice.send_message("loud")
        self.assertEqual(len(relay.sent), 1)
        self.assertEqual(self.alice.messages[-1].id, sent.id)


if __name__ == "__main__":
    unittest.main()
