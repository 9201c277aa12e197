import json
import unittest

import httpx

from messaging_toolkit.config import MessagingSettings
from messaging_toolkit.conversation_database.data_models.participant import Participant
from messaging_toolkit.conversation_database.data_models.profile import Profile
from messaging_toolkit.conversation_database.postgrest import build_postgrest_databases
from messaging_toolkit.errors import ConflictError, StoreError
from messaging_toolkit.utils.time import iso_to_timestamp

SETTINGS = MessagingSettings(store_url="https://chat.example.test/", api_key="anon-key")


class FakeBackend:
    """Records requests and answers them from a queue of canned responses."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: list[httpx.Response] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json=[])

    def reply(self, status: int = 200, body=None) -> None:
        self.responses.append(httpx.Response(status, json=body if body is not None else []))


class PostgRESTDatabaseTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.backend = FakeBackend()
        self.http = httpx.AsyncClient(transport=httpx.MockTransport(self.backend.handler))
        self.profiles, self.conversations, self.participants, self.messages = build_postgrest_databases(
            SETTINGS, access_token="user-jwt", client=self.http
        )

    async def asyncTearDown(self):
        await self.http.aclose()

    def last(self) -> httpx.Request:
        return self.backend.requests[-1]

    async def test_requests_carry_credentials(self):
        await self.profiles.get_profile_by_id("u1")

        request = self.last()
        self.assertEqual(request.url.path, "/rest/v1/profiles")
        self.assertEqual(request.headers["apikey"], "anon-key")
        self.assertEqual(request.headers["Authorization"], "Bearer user-jwt")
        self.assertEqual(request.url.params["id"], "eq.u1")
        self.assertEqual(request.url.params["limit"], "1")

    async def test_profile_rows_map_to_models(self):
        self.backend.reply(
            body=[
                {
                    "id": "u2",
                    "display_name": "Bob",
                    "email": "bob@example.com",
                    "online": True,
                    "last_seen": "2024-05-01T12:00:00+00:00",
                    "fcm_token": "device-token",
                }
            ]
        )

        profile = await self.profiles.get_profile_by_id("u2")

        self.assertEqual(profile.push_token, "device-token")
        self.assertEqual(profile.last_seen, iso_to_timestamp("2024-05-01T12:00:00Z"))
        self.assertTrue(profile.online)

    async def test_create_profile_conflict(self):
        self.backend.reply(409, {"code": "23505", "message": "duplicate key"})
        with self.assertRaises(ConflictError):
            await self.profiles.create_profile(Profile(id="u1"))
        self.assertEqual(self.last().headers["Prefer"], "return=representation")

    async def test_server_and_transport_errors(self):
        self.backend.reply(500, {"message": "boom"})
        with self.assertRaises(StoreError):
            await self.messages.get_message_by_id("m1")

        def broken(request):
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(broken)) as client:
            profiles, *_ = build_postgrest_databases(SETTINGS, client=client)
            with self.assertRaises(StoreError):
                await profiles.get_profile_by_id("u1")

    async def test_search_excludes_self_and_matches_email_or_name(self):
        await self.profiles.search_profiles("bob", "u1", 20)

        params = self.last().url.params
        self.assertEqual(params["id"], "neq.u1")
        self.assertEqual(params["or"], "(email.ilike.*bob*,display_name.ilike.*bob*)")
        self.assertEqual(params["limit"], "20")

    async def test_blank_search_makes_no_request(self):
        self.assertEqual(await self.profiles.search_profiles("  ", "u1", 20), [])
        self.assertEqual(self.backend.requests, [])

    async def test_membership_filters(self):
        self.backend.reply(body=[{"conversation_id": "c2"}])
        shared = await self.participants.filter_conversation_ids_by_user_id("u2", ["c1", "c2"])

        self.assertEqual(shared, ["c2"])
        params = self.last().url.params
        self.assertEqual(params["user_id"], "eq.u2")
        self.assertEqual(params["conversation_id"], 'in.("c1","c2")')

    async def test_add_participants_posts_rows(self):
        self.backend.reply(201, [{"conversation_id": "c1", "user_id": "u1"}, {"conversation_id": "c1", "user_id": "u2"}])
        added = await self.participants.add_participants(
            [Participant(conversation_id="c1", user_id="u1"), Participant(conversation_id="c1", user_id="u2")]
        )
        self.assertEqual(len(added), 2)
        self.assertEqual(self.last().method, "POST")
        self.assertEqual(len(json.loads(self.last().content)), 2)

    async def test_unread_counts_and_latest_messages(self):
        self.backend.reply(body=[{"conversation_id": "c1"}, {"conversation_id": "c1"}, {"conversation_id": "c2"}])
        counts = await self.messages.count_unread("u1", ["c1", "c2"])
        self.assertEqual(counts, {"c1": 2, "c2": 1})
        self.assertEqual(self.last().url.params["read"], "is.false")
        self.assertEqual(self.last().url.params["sender_id"], "neq.u1")

        row = {"sender_id": "u2", "content": "x", "read": False}
        self.backend.reply(
            body=[
                {**row, "id": 3, "conversation_id": "c1", "created_at": "2024-05-01T12:00:03Z"},
                {**row, "id": 2, "conversation_id": "c1", "created_at": "2024-05-01T12:00:02Z"},
                {**row, "id": 1, "conversation_id": "c2", "created_at": "2024-05-01T12:00:01Z"},
            ]
        )
        latest = await self.messages.get_latest_messages(["c1", "c2"])
        self.assertEqual({cid: m.id for cid, m in latest.items()}, {"c1": "3", "c2": "1"})
        self.assertEqual(self.last().url.params["order"], "created_at.desc")

    async def test_mark_conversation_read_patches_incoming_unread(self):
        await self.messages.mark_conversation_read("c1", "u1")

        request = self.last()
        self.assertEqual(request.method, "PATCH")
        self.assertEqual(json.loads(request.content), {"read": True})
        self.assertEqual(request.url.params["sender_id"], "neq.u1")
        self.assertEqual(request.url.params["read"], "is.false")

    async def test_create_conversation_returns_server_timestamps(self):
        self.backend.reply(201, [{"id": "c1", "created_at": "2024-05-01T12:00:00Z"}])
        conversation = await self.conversations.create_conversation()
        self.assertEqual(conversation.create_timestamp, conversation.update_timestamp)

    def test_hosted_store_requires_url(self):
        with self.assertRaises(ValueError):
            build_postgrest_databases(MessagingSettings())


if __name__ == "__main__":
    unittest.main()
