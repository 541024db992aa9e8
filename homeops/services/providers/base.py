from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from homeops.schemas.wecom import IncomingMessage, Menu, TemplateCardMessage, TextMessage


class WeComSender(ABC):
    """Outbound messaging used by the router and by providers."""

    @abstractmethod
    def send_text(self, msg: TextMessage) -> None:
        pass

    @abstractmethod
    def send_template_card(self, msg: TemplateCardMessage) -> None:
        pass


class TemplateCardUpdater(ABC):
    """Optional: replace the label of an already-sent card's button."""

    @abstractmethod
    def update_template_card_button(self, response_code: str, replace_name: str) -> None:
        pass


class MenuCreator(ABC):
    """Optional: create the platform's static command menu."""

    @abstractmethod
    def create_menu(self, menu: Menu) -> None:
        pass


@dataclass(frozen=True)
class SenderCapabilities:
    card_updater: Optional[TemplateCardUpdater] = None
    menu_creator: Optional[MenuCreator] = None


def sender_capabilities(sender: object) -> SenderCapabilities:
    """Resolve the optional capabilities of `sender` once, at construction time.

    Wrappers may expose the capabilities of what they wrap via a `capabilities` attribute.
    """
    wrapped = getattr(sender, "capabilities", None)
    if isinstance(wrapped, SenderCapabilities):
        return wrapped
    return SenderCapabilities(
        card_updater=sender if isinstance(sender, TemplateCardUpdater) else None,
        menu_creator=sender if isinstance(sender, MenuCreator) else None,
    )


class ServiceProvider(ABC):
    """A pluggable backend reachable through the chat router.

    Handlers return True when they consumed the message; False lets the router
    try the next rule. Failures are raised.
    """

    @abstractmethod
    def key(self) -> str:
        """Stable identifier, also the namespace of this provider's event keys."""

    @abstractmethod
    def display_name(self) -> str:
        pass

    def entry_keywords(self) -> list[str]:
        return []

    @abstractmethod
    def on_enter(self, user_id: str) -> None:
        pass

    @abstractmethod
    def handle_text(self, user_id: str, text: str) -> bool:
        pass

    @abstractmethod
    def handle_event(self, user_id: str, msg: IncomingMessage) -> bool:
        pass

    @abstractmethod
    def handle_confirm(self, user_id: str) -> bool:
        pass
