"""
Runtime settings for the messaging toolkit.

'MessagingSettings' collects every tunable the library reads. Construct it
directly in code, or call 'MessagingSettings.from_env()' to pick values up from
environment variables:

SUPABASE_URL              base URL of the hosted backend (store, functions)
SUPABASE_ANON_KEY         public API key sent with every request
PRESENCE_INTERVAL_SECONDS heartbeat period of the presence reporter (30)
NOTIFICATIONS_ENABLED     "1"/"true" turns on push notifications after a send (off)
NOTIFICATION_FUNCTION     name of the remote function relaying pushes
USER_SEARCH_LIMIT         maximum number of profiles returned by a user search (20)
REQUEST_TIMEOUT_SECONDS   HTTP timeout for the hosted adapters (10)
"""

import os

from pydantic import BaseModel, Field

_TRUTHY = {"1", "true", "yes", "on"}


class MessagingSettings(BaseModel):
    store_url: str = ""
    api_key: str = ""
    presence_interval_seconds: float = Field(default=30.0, gt=0)
    notifications_enabled: bool = False
    notification_function: str = "send-notification"
    user_search_limit: int = Field(default=20, gt=0)
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    @classmethod
    def from_env(cls) -> "MessagingSettings":
        return cls(
            store_url=os.environ.get("SUPABASE_URL", ""),
            api_key=os.environ.get("SUPABASE_ANON_KEY", ""),
            presence_interval_seconds=float(os.environ.get("PRESENCE_INTERVAL_SECONDS", "30")),
            notifications_enabled=os.environ.get("NOTIFICATIONS_ENABLED", "").strip().lower() in _TRUTHY,
            notification_function=os.environ.get("NOTIFICATION_FUNCTION", "send-notification"),
            user_search_limit=int(os.environ.get("USER_SEARCH_LIMIT", "20")),
            request_timeout_seconds=float(os.environ.get("REQUEST_TIMEOUT_SECONDS", "10")),
        )
