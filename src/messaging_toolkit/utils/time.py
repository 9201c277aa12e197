import time
from datetime import datetime, timezone


def get_current_timestamp() -> int:
    """Milliseconds since the epoch."""
    return int(time.time() * 1000)


def timestamp_to_iso(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).isoformat()


def iso_to_timestamp(value: str) -> int:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)
