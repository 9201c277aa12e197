"""
In-process authentication provider for tests and the walkthrough.

Principals are registered up front per identity provider; 'sign_in' picks the
registered principal and notifies session listeners, just as a hosted provider
would after completing its redirect flow.
"""

from loguru import logger

from messaging_toolkit.auth.base import AuthProvider, Principal, Session, SessionCallback
from messaging_toolkit.realtime.base import Subscription
from messaging_toolkit.utils.database import generate_uid


class _SessionSubscription(Subscription):
    def __init__(self, provider: "InMemoryAuthProvider", callback: SessionCallback) -> None:
        self._provider = provider
        self.callback = callback

    async def unsubscribe(self) -> None:
        if self.callback in self._provider._listeners:
            self._provider._listeners.remove(self.callback)


class InMemoryAuthProvider(AuthProvider):
    def __init__(self, principals: dict[str, Principal] | None = None) -> None:
        self.principals = dict(principals or {})
        self._session: Session | None = None
        self._listeners: list[SessionCallback] = []

    async def get_session(self) -> Session | None:
        return self._session

    async def on_session_change(self, callback: SessionCallback) -> Subscription:
        self._listeners.append(callback)
        return _SessionSubscription(self, callback)

    async def sign_in(self, provider: str) -> None:
        principal = self.principals.get(provider)
        if principal is None:
            raise ValueError(f"No principal registered for identity provider {provider!r}")
        self._session = Session(principal=principal, access_token=generate_uid())
        logger.info(f"Signed in {principal.id} via {provider}")
        await self._notify()

    async def sign_out(self) -> None:
        if self._session is None:
            return
        logger.info(f"Signed out {self._session.principal.id}")
        self._session = None
        await self._notify()

    async def _notify(self) -> None:
        for callback in list(self._listeners):
            await callback(self._session)
