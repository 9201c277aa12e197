from messaging_toolkit.notifications.base import NotificationError, NotificationRelay, PushNotification
from messaging_toolkit.notifications.function_relay import FunctionInvokeRelay

__all__ = [
    "FunctionInvokeRelay",
    "NotificationError",
    "NotificationRelay",
    "PushNotification",
]
