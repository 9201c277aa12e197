"""
Messaging controller (Facade).

'MessagingController' is the single entry point for a signed-in client. It
wires the pluggable collaborators (four storage repositories, a change feed, an
auth provider and an optional push relay) into the synchronization core and
manages its lifecycle:

    'start'   - resolve the session and profile, subscribe to live updates,
                start the presence heartbeat, load the conversation index.
    'stop'    - release everything 'start' acquired, in reverse order.
    'session' - 'async with' wrapper around 'start'/'stop'.

Between the two, the client searches users, opens conversations and sends
messages through the controller. The live update dispatcher and the presence
reporter are held on an 'AsyncExitStack', so exactly one of each exists per
started session and both are released even if a later start step fails.
"""

from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager

from loguru import logger

from messaging_toolkit.auth.base import AuthProvider, Principal, Session
from messaging_toolkit.config import MessagingSettings
from messaging_toolkit.conversation_database.data_models.conversation import ConversationDatabase
from messaging_toolkit.conversation_database.data_models.message import Message, MessageDatabase
from messaging_toolkit.conversation_database.data_models.participant import ParticipantDatabase
from messaging_toolkit.conversation_database.data_models.profile import Profile, ProfileDatabase
from messaging_toolkit.errors import NotAuthenticatedError, ProfileUpdateError, StoreError
from messaging_toolkit.notifications.base import NotificationError, NotificationRelay, PushNotification
from messaging_toolkit.realtime.base import ChangeFeed, Subscription
from messaging_toolkit.sync.conversation_index import ConversationIndex, ConversationView
from messaging_toolkit.sync.dispatcher import LiveUpdateDispatcher
from messaging_toolkit.sync.identity import OnboardingState, ProfileGate
from messaging_toolkit.sync.message_timeline import MessageTimeline
from messaging_toolkit.sync.presence import PresenceReporter


class MessagingController:
    def __init__(
        self,
        profile_db: ProfileDatabase,
        conversation_db: ConversationDatabase,
        participant_db: ParticipantDatabase,
        message_db: MessageDatabase,
        change_feed: ChangeFeed,
        auth: AuthProvider,
        notification_relay: NotificationRelay | None = None,
        settings: MessagingSettings | None = None,
    ):
        self.profile_db = profile_db
        self.conversation_db = conversation_db
        self.participant_db = participant_db
        self.message_db = message_db
        self.change_feed = change_feed
        self.auth = auth
        self.notification_relay = notification_relay
        self.settings = settings or MessagingSettings()
        self.gate = ProfileGate(profile_db)

        self.principal: Principal | None = None
        self.onboarding: OnboardingState | None = None
        self.index: ConversationIndex | None = None
        self.timeline: MessageTimeline | None = None
        self.dispatcher: LiveUpdateDispatcher | None = None
        self.presence: PresenceReporter | None = None
        self._resources: AsyncExitStack | None = None
        self._session_subscription: Subscription | None = None

    @property
    def started(self) -> bool:
        return self._resources is not None

    @property
    def user_id(self) -> str:
        if self.principal is None:
            raise NotAuthenticatedError()
        return self.principal.id

    @property
    def profile(self) -> Profile | None:
        return self.onboarding.profile if self.onboarding else None

    @property
    def conversations(self) -> list[ConversationView]:
        return self.index.conversations if self.index else []

    @property
    def messages(self) -> list[Message]:
        return self.timeline.messages if self.timeline else []

    def _require_started(self) -> tuple[ConversationIndex, MessageTimeline]:
        if self.index is None or self.timeline is None:
            raise NotAuthenticatedError()
        return self.index, self.timeline

    async def start(self) -> OnboardingState:
        if self.started:
            raise RuntimeError("Messaging session already started")
        session = await self.auth.get_session()
        if session is None:
            raise NotAuthenticatedError()

        self.principal = session.principal
        self.onboarding = await self.gate.resolve(session.principal)
        user_id = session.principal.id

        self.index = ConversationIndex(user_id, self.profile_db, self.participant_db, self.message_db)
        self.timeline = MessageTimeline(
            user_id,
            self.profile_db,
            self.conversation_db,
            self.participant_db,
            self.message_db,
            on_message_sent=self._after_send,
        )
        self.dispatcher = LiveUpdateDispatcher(self.change_feed, user_id, self.index, self.timeline, self.message_db)
        self.presence = PresenceReporter(self.profile_db, user_id, self.settings.presence_interval_seconds)

        async with AsyncExitStack() as stack:
            # Subscribe before the first load so no event falls between the two.
            await stack.enter_async_context(self.dispatcher)
            await stack.enter_async_context(self.presence)
            self._session_subscription = await self.auth.on_session_change(self._on_session_change)
            self._resources = stack.pop_all()

        await self.index.load_conversations()
        logger.info(
            f"Session started for {user_id} "
            f"({len(self.index.conversations)} conversations, onboarding={self.onboarding.needs_onboarding})"
        )
        return self.onboarding

    async def stop(self) -> None:
        if self._resources is None:
            return
        resources, self._resources = self._resources, None
        if self._session_subscription is not None:
            await self._session_subscription.unsubscribe()
            self._session_subscription = None
        if self.timeline is not None:
            self.timeline.close()
        await resources.aclose()
        self.index = None
        self.timeline = None
        self.dispatcher = None
        self.presence = None
        logger.info(f"Session stopped for {self.principal.id if self.principal else '?'}")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[OnboardingState]:
        onboarding = await self.start()
        try:
            yield onboarding
        finally:
            await self.stop()

    async def _on_session_change(self, session: Session | None) -> None:
        if session is not None and self.principal is not None and session.principal.id == self.principal.id:
            return
        logger.info("Session ended or switched user, stopping")
        await self.stop()

    async def sign_out(self) -> None:
        await self.stop()
        await self.auth.sign_out()

    async def complete_onboarding(self, phone_number: str) -> Profile:
        profile = await self.gate.complete_onboarding(self.user_id, phone_number)
        self.onboarding = OnboardingState(profile=profile, needs_onboarding=False)
        return profile

    async def register_push_token(self, push_token: str) -> None:
        try:
            await self.profile_db.update_push_token(self.user_id, push_token)
        except StoreError as exc:
            logger.error(f"Saving push token for {self.user_id} failed: {exc}")
            raise ProfileUpdateError("Could not enable notifications. Please try again.") from exc
        if self.onboarding is not None and self.onboarding.profile is not None:
            self.onboarding.profile.push_token = push_token
        logger.info(f"Push notifications enabled for {self.user_id}")

    async def search_users(self, query: str) -> list[Profile]:
        self._require_started()
        try:
            return await self.profile_db.search_profiles(query, self.user_id, self.settings.user_search_limit)
        except StoreError as exc:
            logger.error(f"User search for {query!r} failed: {exc}")
            return []

    async def load_conversations(self) -> list[ConversationView]:
        index, _ = self._require_started()
        return await index.load_conversations()

    async def open_conversation(self, target: ConversationView | Profile | str) -> str | None:
        index, timeline = self._require_started()
        conversation_id = await timeline.open_conversation(target)
        if conversation_id is None:
            return None
        if index.get(conversation_id) is None:
            await index.load_conversations()
        index.mark_read_locally(conversation_id)
        return conversation_id

    async def send_message(self, text: str) -> Message:
        _, timeline = self._require_started()
        return await timeline.send_message(text)

    async def _after_send(self, message: Message) -> None:
        if self.index is not None:
            await self.index.refresh_conversation(message.conversation_id, message)
        await self._push(message)

    async def _push(self, message: Message) -> None:
        if not self.settings.notifications_enabled or self.notification_relay is None:
            return
        # The active conversation may have changed while the write was in flight.
        try:
            counterparts = await self.participant_db.get_counterparts(message.sender_id, [message.conversation_id])
            if not counterparts:
                return
            recipient = await self.profile_db.get_profile_by_id(counterparts[0].user_id)
        except StoreError as exc:
            logger.warning(f"Push skipped, recipient lookup failed: {exc}")
            return
        if recipient is None or not recipient.push_token:
            return

        sender = self.profile.label if self.profile else (self.principal.display_name if self.principal else None)
        notification = PushNotification(
            token=recipient.push_token,
            title=sender or "New message",
            body=message.content,
            data={
                "sender_id": message.sender_id,
                "message_id": message.id,
                "conversation_id": message.conversation_id,
            },
        )
        try:
            await self.notification_relay.send(notification)
        except NotificationError as exc:
            logger.warning(f"Push to {recipient.id} failed: {exc}")
