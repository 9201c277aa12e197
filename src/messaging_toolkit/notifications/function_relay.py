"""
Push relay backed by a hosted remote function.

'FunctionInvokeRelay' POSTs '{token, title, body, data}' as JSON to
'<store_url>/functions/v1/<function>' using the same credentials as the store.
"""

import httpx
from loguru import logger

from messaging_toolkit.config import MessagingSettings
from messaging_toolkit.notifications.base import NotificationError, NotificationRelay, PushNotification


class FunctionInvokeRelay(NotificationRelay):
    def __init__(
        self,
        base_url: str,
        api_key: str,
        function_name: str = "send-notification",
        access_token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = f"{base_url.rstrip('/')}/functions/v1/{function_name}"
        self.api_key = api_key
        self.access_token = access_token
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(
        cls, settings: MessagingSettings, access_token: str | None = None, client: httpx.AsyncClient | None = None
    ) -> "FunctionInvokeRelay":
        return cls(
            settings.store_url,
            settings.api_key,
            function_name=settings.notification_function,
            access_token=access_token,
            timeout=settings.request_timeout_seconds,
            client=client,
        )

    async def send(self, notification: PushNotification) -> None:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
        }
        try:
            response = await self._client.post(self.url, json=notification.model_dump(), headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"Push relay call failed: {exc}") from exc
        logger.debug(f"Push relayed: {notification.title!r}")

    async def aclose(self) -> None:
        await self._client.aclose()
