import copy
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Optional

from homeops.schemas.wecom import TemplateCardButton
from homeops.services.janitor import Janitor, sweep_interval_for

DEFAULT_STATE_TTL_SECONDS = 30 * 60


class Step(str, Enum):
    """Steps the router itself understands. Providers may store their own step strings."""

    NONE = ""
    AWAITING_INPUT = "awaiting_input"
    AWAITING_CONFIRM = "awaiting_confirm"


@dataclass
class ConversationState:
    """Where a user is in a multi-turn dialogue.

    An empty `service_key` means the router owns the record. Otherwise `step`,
    `action` and `payload` belong to that provider and only it interprets them.
    """

    step: str = Step.NONE.value
    service_key: str = ""
    action: str = ""
    payload: Any = None
    pending_buttons: list[TemplateCardButton] = field(default_factory=list)
    expires_at: float = 0.0

    def payload_for(self, service_key: str) -> Any:
        """Provider-scoped scratch data; None when the session belongs to someone else."""
        if not service_key or service_key != self.service_key:
            return None
        return self.payload

    @property
    def awaiting_confirm(self) -> bool:
        return self.step == Step.AWAITING_CONFIRM.value


class StateStore:
    """Per-user conversation state with a sliding TTL, kept in memory only."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_STATE_TTL_SECONDS,
        sweep_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            ttl_seconds = DEFAULT_STATE_TTL_SECONDS
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._data: dict[str, ConversationState] = {}

        if sweep_interval is None:
            sweep_interval = sweep_interval_for(ttl_seconds)
        self._janitor = Janitor("state_store", self.prune_expired, sweep_interval)

    def get(self, user_id: str) -> tuple[ConversationState, bool]:
        with self._lock:
            state = self._data.get(user_id)
            if state is None:
                return ConversationState(), False
            if self._clock() > state.expires_at:
                del self._data[user_id]
                return ConversationState(), False
            return self._copy(state), True

    def set(self, user_id: str, state: ConversationState) -> None:
        stored = replace(self._copy(state), expires_at=self._clock() + self.ttl_seconds)
        with self._lock:
            self._data[user_id] = stored

    def clear(self, user_id: str) -> None:
        with self._lock:
            self._data.pop(user_id, None)

    def prune_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [user_id for user_id, state in self._data.items() if now > state.expires_at]
            for user_id in expired:
                del self._data[user_id]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    @staticmethod
    def _copy(state: ConversationState) -> ConversationState:
        return replace(state, payload=copy.deepcopy(state.payload), pending_buttons=list(state.pending_buttons))

    def close(self) -> None:
        self._janitor.stop()
