import time
import uuid
from datetime import date, datetime, timezone


# Epoch anchor taken once; later readings follow the monotonic clock.
_EPOCH_OFFSET = time.time() - time.monotonic()


def now_ts() -> float:
    return _EPOCH_OFFSET + time.monotonic()


def new_id() -> str:
    return uuid.uuid4().hex


def ts_to_date(ts: float) -> date:
    return datetime.fromtimestamp(ts, tz=timezone.utc).date()


def ts_to_iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
