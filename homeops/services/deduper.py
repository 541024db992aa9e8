import hashlib
import threading
import time
from typing import Callable, Optional

from homeops.schemas.wecom import IncomingMessage
from homeops.services.janitor import Janitor, sweep_interval_for

DEFAULT_DEDUPE_TTL_SECONDS = 10 * 60


class Deduper:
    """In-memory replay filter that absorbs platform retries of the same callback.

    Entries are lost on restart.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_DEDUPE_TTL_SECONDS,
        sweep_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            ttl_seconds = DEFAULT_DEDUPE_TTL_SECONDS
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._data: dict[str, float] = {}

        if sweep_interval is None:
            sweep_interval = sweep_interval_for(ttl_seconds)
        self._janitor = Janitor("deduper", self.prune_expired, sweep_interval)

    def seen_or_mark(self, key: str) -> bool:
        """Return True if `key` was marked within the TTL; otherwise mark it and return False."""
        if not key:
            return False
        now = self._clock()
        with self._lock:
            expires_at = self._data.get(key)
            if expires_at is not None and now < expires_at:
                return True
            self._data[key] = now + self.ttl_seconds
            return False

    def prune_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, expires_at in self._data.items() if now >= expires_at]
            for key in expired:
                del self._data[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def close(self) -> None:
        self._janitor.stop()


def callback_dedupe_key(msg: IncomingMessage, plain: bytes) -> str:
    """Identity of a callback delivery: task id, then message id, then a content hash.

    Task and message ids are stable across retries; timestamp and nonce are not.
    """
    user = msg.from_user_name.strip()
    task_id = msg.task_id.strip()
    if task_id:
        return f"task:{user}:{task_id}"
    msg_id = msg.msg_id.strip()
    if msg_id:
        return f"msg:{user}:{msg_id}"
    if plain:
        return f"sha256:{hashlib.sha256(plain).hexdigest()}"
    return ""
