"""
Hosted storage backend speaking the PostgREST dialect over HTTP.

'PostgRESTClient' is a small table-scoped CRUD client built on
'httpx.AsyncClient': 'select' with filter predicates, ordering and limits,
'insert' and 'update' returning the stored rows ('Prefer:
return=representation'), which is how the client gets server-assigned ids and
timestamps back in the same round trip.

The repository classes translate between the rows of the hosted schema and the
toolkit data models. Column names that differ from the model fields
('created_at', 'fcm_token', ...) are mapped here and nowhere else.

Failures surface as 'ConflictError' (HTTP 409, uniqueness violations) or
'StoreError' (anything else, including transport errors), never as raw httpx
exceptions.
"""

from collections.abc import Sequence
from typing import Any

import httpx
from loguru import logger

from messaging_toolkit.config import MessagingSettings
from messaging_toolkit.conversation_database.data_models.conversation import Conversation, ConversationDatabase
from messaging_toolkit.conversation_database.data_models.message import Message, MessageDatabase
from messaging_toolkit.conversation_database.data_models.participant import Participant, ParticipantDatabase
from messaging_toolkit.conversation_database.data_models.profile import Profile, ProfileDatabase
from messaging_toolkit.errors import ConflictError, NotFoundError, StoreError
from messaging_toolkit.utils.time import iso_to_timestamp, timestamp_to_iso

Filter = tuple[str, str, Any]


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _encode_filter(operator: str, value: Any) -> str:
    match operator:
        case "in":
            quoted = ",".join('"{}"'.format(str(v).replace('"', '\\"')) for v in value)
            return f"in.({quoted})"
        case "eq" | "neq" | "ilike" | "is" | "gt" | "gte" | "lt" | "lte":
            return f"{operator}.{_format_value(value)}"
        case _:
            raise ValueError(f"Unsupported filter operator {operator!r}")


class PostgRESTClient:
    """
    Minimal async client for a PostgREST endpoint ('<base_url>/rest/v1/<table>').

    Attributes:
        api_key: Public key sent as 'apikey' on every request.
        access_token: Bearer token of the signed-in user. Falls back to the
            API key when no user is signed in.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def set_access_token(self, access_token: str | None) -> None:
        self.access_token = access_token

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        params: list[tuple[str, str]],
        json: Any = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            response = await self._client.request(method, url, params=params, json=json, headers=self._headers(prefer))
        except httpx.HTTPError as exc:
            raise StoreError(f"{method} {table} failed: {exc}") from exc

        if response.status_code == 409:
            raise ConflictError(f"{method} {table} conflict: {response.text}")
        if response.is_error:
            raise StoreError(f"{method} {table} returned {response.status_code}: {response.text}")
        if not response.content:
            return []
        return response.json()

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
        extra_params: Sequence[tuple[str, str]] = (),
    ) -> list[dict[str, Any]]:
        params = [("select", columns)]
        params += [(column, _encode_filter(operator, value)) for column, operator, value in filters]
        params += list(extra_params)
        if order:
            params.append(("order", order))
        if limit is not None:
            params.append(("limit", str(limit)))
        return await self._request("GET", table, params)

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return await self._request("POST", table, [], json=rows, prefer="return=representation")

    async def update(self, table: str, values: dict[str, Any], filters: Sequence[Filter]) -> list[dict[str, Any]]:
        params = [(column, _encode_filter(operator, value)) for column, operator, value in filters]
        return await self._request("PATCH", table, params, json=values, prefer="return=representation")

    async def aclose(self) -> None:
        await self._client.aclose()


def profile_from_row(row: dict[str, Any]) -> Profile:
    last_seen = row.get("last_seen")
    return Profile(
        id=row["id"],
        display_name=row.get("display_name"),
        email=row.get("email"),
        phone_number=row.get("phone_number"),
        avatar_url=row.get("avatar_url"),
        online=bool(row.get("online")),
        last_seen=iso_to_timestamp(last_seen) if last_seen else None,
        push_token=row.get("fcm_token"),
    )


def profile_to_row(profile: Profile) -> dict[str, Any]:
    return {
        "id": profile.id,
        "display_name": profile.display_name,
        "email": profile.email,
        "phone_number": profile.phone_number,
        "avatar_url": profile.avatar_url,
        "online": profile.online,
        "last_seen": timestamp_to_iso(profile.last_seen) if profile.last_seen is not None else None,
        "fcm_token": profile.push_token,
    }


def conversation_from_row(row: dict[str, Any]) -> Conversation:
    created = iso_to_timestamp(row["created_at"])
    updated = row.get("updated_at")
    return Conversation(
        id=row["id"],
        create_timestamp=created,
        update_timestamp=iso_to_timestamp(updated) if updated else created,
    )


def message_from_row(row: dict[str, Any]) -> Message:
    return Message(
        id=str(row["id"]),
        sender_id=row["sender_id"],
        conversation_id=row["conversation_id"],
        content=row["content"],
        create_timestamp=iso_to_timestamp(row["created_at"]),
        read=bool(row.get("read")),
    )


def _single(rows: list[dict[str, Any]], what: str) -> dict[str, Any]:
    if not rows:
        raise NotFoundError(f"{what} not found")
    return rows[0]


class PostgRESTProfileDatabase(ProfileDatabase):
    table = "profiles"

    def __init__(self, client: PostgRESTClient) -> None:
        self.client = client

    async def create_profile(self, profile: Profile) -> Profile:
        rows = await self.client.insert(self.table, [profile_to_row(profile)])
        return profile_from_row(_single(rows, f"Profile {profile.id}"))

    async def get_profile_by_id(self, user_id: str) -> Profile | None:
        rows = await self.client.select(self.table, [("id", "eq", user_id)], limit=1)
        return profile_from_row(rows[0]) if rows else None

    async def get_profiles_by_ids(self, user_ids: list[str]) -> list[Profile]:
        if not user_ids:
            return []
        rows = await self.client.select(self.table, [("id", "in", user_ids)])
        return [profile_from_row(row) for row in rows]

    async def search_profiles(self, query: str, exclude_user_id: str, limit: int) -> list[Profile]:
        needle = query.strip().replace(",", " ").replace("(", " ").replace(")", " ")
        if not needle:
            return []
        rows = await self.client.select(
            self.table,
            [("id", "neq", exclude_user_id)],
            extra_params=[("or", f"(email.ilike.*{needle}*,display_name.ilike.*{needle}*)")],
            limit=limit,
        )
        return [profile_from_row(row) for row in rows]

    async def update_presence(self, user_id: str, online: bool, last_seen: int) -> None:
        await self.client.update(
            self.table, {"online": online, "last_seen": timestamp_to_iso(last_seen)}, [("id", "eq", user_id)]
        )

    async def update_phone_number(self, user_id: str, phone_number: str) -> Profile:
        rows = await self.client.update(self.table, {"phone_number": phone_number}, [("id", "eq", user_id)])
        return profile_from_row(_single(rows, f"Profile {user_id}"))

    async def update_push_token(self, user_id: str, push_token: str | None) -> None:
        await self.client.update(self.table, {"fcm_token": push_token}, [("id", "eq", user_id)])


class PostgRESTConversationDatabase(ConversationDatabase):
    table = "conversations"

    def __init__(self, client: PostgRESTClient) -> None:
        self.client = client

    async def create_conversation(self) -> Conversation:
        rows = await self.client.insert(self.table, [{}])
        return conversation_from_row(_single(rows, "Created conversation"))

    async def get_conversation_by_id(self, conversation_id: str) -> Conversation | None:
        rows = await self.client.select(self.table, [("id", "eq", conversation_id)], limit=1)
        return conversation_from_row(rows[0]) if rows else None

    async def touch_conversation(self, conversation_id: str, update_timestamp: int) -> None:
        await self.client.update(
            self.table, {"updated_at": timestamp_to_iso(update_timestamp)}, [("id", "eq", conversation_id)]
        )


class PostgRESTParticipantDatabase(ParticipantDatabase):
    table = "conversation_participants"

    def __init__(self, client: PostgRESTClient) -> None:
        self.client = client

    async def add_participants(self, participants: list[Participant]) -> list[Participant]:
        rows = await self.client.insert(self.table, [p.model_dump() for p in participants])
        return [Participant(conversation_id=row["conversation_id"], user_id=row["user_id"]) for row in rows]

    async def get_conversation_ids_by_user_id(self, user_id: str) -> list[str]:
        rows = await self.client.select(self.table, [("user_id", "eq", user_id)], columns="conversation_id")
        return [row["conversation_id"] for row in rows]

    async def filter_conversation_ids_by_user_id(self, user_id: str, conversation_ids: list[str]) -> list[str]:
        if not conversation_ids:
            return []
        rows = await self.client.select(
            self.table,
            [("user_id", "eq", user_id), ("conversation_id", "in", conversation_ids)],
            columns="conversation_id",
        )
        return [row["conversation_id"] for row in rows]

    async def get_counterparts(self, user_id: str, conversation_ids: list[str]) -> list[Participant]:
        if not conversation_ids:
            return []
        rows = await self.client.select(
            self.table,
            [("conversation_id", "in", conversation_ids), ("user_id", "neq", user_id)],
            columns="conversation_id,user_id",
        )
        return [Participant(conversation_id=row["conversation_id"], user_id=row["user_id"]) for row in rows]


class PostgRESTMessageDatabase(MessageDatabase):
    table = "messages"

    def __init__(self, client: PostgRESTClient) -> None:
        self.client = client

    async def create_message(self, sender_id: str, conversation_id: str, content: str) -> Message:
        rows = await self.client.insert(
            self.table, [{"sender_id": sender_id, "conversation_id": conversation_id, "content": content}]
        )
        return message_from_row(_single(rows, "Created message"))

    async def get_messages_by_conversation_id(self, conversation_id: str) -> list[Message]:
        rows = await self.client.select(
            self.table, [("conversation_id", "eq", conversation_id)], order="created_at.asc"
        )
        return [message_from_row(row) for row in rows]

    async def get_message_by_id(self, message_id: str) -> Message | None:
        rows = await self.client.select(self.table, [("id", "eq", message_id)], limit=1)
        return message_from_row(rows[0]) if rows else None

    async def count_unread(self, user_id: str, conversation_ids: list[str]) -> dict[str, int]:
        if not conversation_ids:
            return {}
        rows = await self.client.select(
            self.table,
            [("conversation_id", "in", conversation_ids), ("sender_id", "neq", user_id), ("read", "is", False)],
            columns="conversation_id",
        )
        counts: dict[str, int] = {}
        for row in rows:
            counts[row["conversation_id"]] = counts.get(row["conversation_id"], 0) + 1
        return counts

    async def get_latest_messages(self, conversation_ids: list[str]) -> dict[str, Message]:
        if not conversation_ids:
            return {}
        rows = await self.client.select(
            self.table, [("conversation_id", "in", conversation_ids)], order="created_at.desc"
        )
        latest: dict[str, Message] = {}
        for row in rows:
            if row["conversation_id"] not in latest:
                latest[row["conversation_id"]] = message_from_row(row)
        return latest

    async def mark_conversation_read(self, conversation_id: str, reader_id: str) -> list[Message]:
        rows = await self.client.update(
            self.table,
            {"read": True},
            [("conversation_id", "eq", conversation_id), ("sender_id", "neq", reader_id), ("read", "is", False)],
        )
        return [message_from_row(row) for row in rows]

    async def mark_message_read(self, message_id: str) -> Message | None:
        rows = await self.client.update(self.table, {"read": True}, [("id", "eq", message_id)])
        return message_from_row(rows[0]) if rows else None


def build_postgrest_databases(
    settings: MessagingSettings,
    access_token: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> tuple[PostgRESTProfileDatabase, PostgRESTConversationDatabase, PostgRESTParticipantDatabase, PostgRESTMessageDatabase]:
    """Build the four hosted repositories sharing one HTTP client."""
    if not settings.store_url:
        raise ValueError("store_url must be set to use the hosted store (SUPABASE_URL)")
    rest = PostgRESTClient(
        settings.store_url,
        settings.api_key,
        access_token=access_token,
        timeout=settings.request_timeout_seconds,
        client=client,
    )
    logger.info(f"Hosted store: {rest.base_url}")
    return (
        PostgRESTProfileDatabase(rest),
        PostgRESTConversationDatabase(rest),
        PostgRESTParticipantDatabase(rest),
        PostgRESTMessageDatabase(rest),
    )
