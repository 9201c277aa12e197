import json
import unittest

import httpx

from messaging_toolkit.config import MessagingSettings
from messaging_toolkit.notifications import FunctionInvokeRelay, NotificationError, PushNotification

NOTIFICATION = PushNotification(token="device", title="Alice", body="hi", data={"conversation_id": "c1"})


class FunctionInvokeRelayTests(unittest.IsolatedAsyncioTestCase):
    async def test_posts_notification_to_function(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"success": True})

        settings = MessagingSettings(store_url="https://chat.example.test", api_key="anon-key")
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            relay = FunctionInvokeRelay.from_settings(settings, access_token="user-jwt", client=client)
            await relay.send(NOTIFICATION)

        [request] = requests
        self.assertEqual(str(request.url), "https://chat.example.test/functions/v1/send-notification")
        self.assertEqual(request.headers["Authorization"], "Bearer user-jwt")
        self.assertEqual(json.loads(request.content), NOTIFICATION.model_dump())

    async def test_relay_errors_are_wrapped(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(502))) as client:
            relay = FunctionInvokeRelay("https://chat.example.test", "anon-key", client=client)
            with self.assertRaises(NotificationError):
                await relay.send(NOTIFICATION)


if __name__ == "__main__":
    unittest.main()
