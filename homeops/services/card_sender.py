from enum import Enum

from homeops.logging_config import get_logger
from homeops.schemas.wecom import TemplateCardButton, TemplateCardMessage, TextMessage
from homeops.services.cards import render_button_interaction_text_menu, truncate_text
from homeops.services.providers.base import WeComSender, sender_capabilities
from homeops.services.state_store import StateStore

logger = get_logger("card_sender")

UNRENDERABLE_CARD_TEXT = "(Cards are switched to text mode, but this card cannot be shown as a text menu.)"


class TemplateCardMode(str, Enum):
    TEMPLATE_CARD = "template_card"
    BOTH = "both"
    TEXT = "text"

    @classmethod
    def parse(cls, value: str) -> "TemplateCardMode":
        normalized = (value or "").strip().lower()
        for mode in cls:
            if mode.value == normalized:
                return mode
        return cls.TEMPLATE_CARD


class TemplateCardSender(WeComSender):
    """Sender wrapper that can degrade template cards into numbered text menus.

    In text modes the flattened buttons are stored as the user's pending buttons
    so that a reply like "2" can be mapped back to the button's event key.
    Any other outbound message clears them.
    """

    def __init__(self, base: WeComSender, state: StateStore, mode: str = TemplateCardMode.TEMPLATE_CARD):
        self.base = base
        self.state = state
        self.mode = TemplateCardMode.parse(mode)
        self.capabilities = sender_capabilities(base)

    def send_text(self, msg: TextMessage) -> None:
        self._clear_pending_buttons(msg.to_user)
        self.base.send_text(TextMessage(to_user=msg.to_user, content=truncate_text(msg.content)))

    def send_template_card(self, msg: TemplateCardMessage) -> None:
        self._clear_pending_buttons(msg.to_user)

        if self.mode == TemplateCardMode.TEMPLATE_CARD:
            self.base.send_template_card(msg)
            return

        text, buttons, ok = render_button_interaction_text_menu(msg.card)
        if ok:
            self._set_pending_buttons(msg.to_user, buttons)

        if self.mode == TemplateCardMode.BOTH:
            self.base.send_template_card(msg)
            if ok:
                self.base.send_text(TextMessage(to_user=msg.to_user, content=truncate_text(text)))
            return

        if not ok:
            logger.warning(
                "Card cannot be rendered as text menu",
                extra={"context": {"user_id": msg.to_user, "card_type": msg.card.get("card_type")}},
            )
        content = truncate_text(text) if ok else UNRENDERABLE_CARD_TEXT
        self.base.send_text(TextMessage(to_user=msg.to_user, content=content))

    def _clear_pending_buttons(self, user_id: str) -> None:
        user_id = (user_id or "").strip()
        if not user_id:
            return
        state, found = self.state.get(user_id)
        if not found or not state.pending_buttons:
            return
        state.pending_buttons = []
        self.state.set(user_id, state)

    def _set_pending_buttons(self, user_id: str, buttons: list[TemplateCardButton]) -> None:
        user_id = (user_id or "").strip()
        if not user_id or not buttons:
            return
        state, _ = self.state.get(user_id)
        state.pending_buttons = list(buttons)
        self.state.set(user_id, state)
