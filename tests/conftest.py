import base64

import pytest

from homeops.schemas.wecom import Menu, TemplateCardMessage, TextMessage
from homeops.services.crypto import WeComCrypto
from homeops.services.providers.base import MenuCreator, ServiceProvider, TemplateCardUpdater, WeComSender
from homeops.services.state_store import StateStore

RAW_AES_KEY = b"0123456789abcdef0123456789abcdef"
ENCODING_AES_KEY = base64.b64encode(RAW_AES_KEY).decode("ascii").rstrip("=")
TOKEN = "test-token"
CORP_ID = "ww123"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSender(WeComSender):
    def __init__(self):
        self.texts: list[TextMessage] = []
        self.cards: list[TemplateCardMessage] = []

    def send_text(self, msg: TextMessage) -> None:
        self.texts.append(msg)

    def send_template_card(self, msg: TemplateCardMessage) -> None:
        self.cards.append(msg)


class RecordingUpdaterSender(RecordingSender, TemplateCardUpdater):
    def __init__(self):
        super().__init__()
        self.updates: list[tuple[str, str]] = []

    def update_template_card_button(self, response_code: str, replace_name: str) -> None:
        self.updates.append((response_code, replace_name))


class RecordingMenuSender(RecordingSender, MenuCreator):
    def __init__(self):
        super().__init__()
        self.menus: list[Menu] = []

    def create_menu(self, menu: Menu) -> None:
        self.menus.append(menu)


class FakeProvider(ServiceProvider):
    def __init__(self, key, name, keywords=None, text_handled=False, event_handled=False, confirm_handled=False):
        self._key = key
        self._name = name
        self._keywords = keywords or []
        self.text_handled = text_handled
        self.event_handled = event_handled
        self.confirm_handled = confirm_handled

        self.entered: list[str] = []
        self.texts: list[tuple[str, str]] = []
        self.events: list[str] = []
        self.confirms: list[str] = []

    def key(self) -> str:
        return self._key

    def display_name(self) -> str:
        return self._name

    def entry_keywords(self) -> list[str]:
        return self._keywords

    def on_enter(self, user_id: str) -> None:
        self.entered.append(user_id)

    def handle_text(self, user_id: str, text: str) -> bool:
        self.texts.append((user_id, text))
        return self.text_handled

    def handle_event(self, user_id: str, msg) -> bool:
        self.events.append(msg.event_key)
        return self.event_handled

    def handle_confirm(self, user_id: str) -> bool:
        self.confirms.append(user_id)
        return self.confirm_handled

    @property
    def calls(self) -> int:
        return len(self.entered) + len(self.texts) + len(self.events) + len(self.confirms)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def crypto():
    return WeComCrypto(token=TOKEN, encoding_aes_key=ENCODING_AES_KEY, receiver_id=CORP_ID)


@pytest.fixture
def state_store(clock):
    store = StateStore(ttl_seconds=60, sweep_interval=0, clock=clock)
    yield store
    store.close()


@pytest.fixture
def sender():
    return RecordingSender()
