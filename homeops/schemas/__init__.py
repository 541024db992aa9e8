from homeops.schemas.wecom import (
    EncryptedEnvelope,
    IncomingMessage,
    Menu,
    MenuButton,
    TemplateCard,
    TemplateCardButton,
    TemplateCardMessage,
    TextMessage,
)

__all__ = [
    "EncryptedEnvelope",
    "IncomingMessage",
    "Menu",
    "MenuButton",
    "TemplateCard",
    "TemplateCardButton",
    "TemplateCardMessage",
    "TextMessage",
]
