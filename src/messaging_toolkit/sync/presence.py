"""
Presence reporter.

Announces the local user as online when the session starts, repeats the
announcement on a fixed heartbeat, and announces offline on the way out. Other
clients can infer a crashed client from missing heartbeats; expiring stale
presence is left to them.

Presence is fire-and-forget: a failed report is logged and dropped, it never
interrupts the chat.
"""

import asyncio
from collections.abc import Callable
from types import TracebackType

from loguru import logger

from messaging_toolkit.conversation_database.data_models.profile import ProfileDatabase
from messaging_toolkit.errors import StoreError
from messaging_toolkit.utils.time import get_current_timestamp

DEFAULT_HEARTBEAT_SECONDS = 30.0


class PresenceReporter:
    def __init__(
        self,
        profile_db: ProfileDatabase,
        user_id: str,
        interval_seconds: float = DEFAULT_HEARTBEAT_SECONDS,
        now_func: Callable[[], int] = get_current_timestamp,
    ) -> None:
        self.profile_db = profile_db
        self.user_id = user_id
        self.interval_seconds = interval_seconds
        self._now = now_func
        self._heartbeat_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._heartbeat_task is not None

    async def report(self, online: bool) -> bool:
        try:
            await self.profile_db.update_presence(self.user_id, online, self._now())
        except StoreError as exc:
            logger.debug(f"Presence report for {self.user_id} (online={online}) failed: {exc}")
            return False
        return True

    async def start(self) -> None:
        if self._heartbeat_task is not None:
            return
        await self.report(True)
        self._heartbeat_task = asyncio.create_task(self._heartbeat())
        logger.debug(f"Presence heartbeat every {self.interval_seconds}s for {self.user_id}")

    async def stop(self) -> None:
        if self._heartbeat_task is None:
            return
        self._heartbeat_task.cancel()
        try:
            await self._heartbeat_task
        except asyncio.CancelledError:
            pass
        self._heartbeat_task = None
        await self.report(False)

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.report(True)

    async def __aenter__(self) -> "PresenceReporter":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()
