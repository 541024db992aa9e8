from homeops.services.providers.base import (
    MenuCreator,
    SenderCapabilities,
    ServiceProvider,
    TemplateCardUpdater,
    WeComSender,
    sender_capabilities,
)

__all__ = [
    "MenuCreator",
    "SenderCapabilities",
    "ServiceProvider",
    "TemplateCardUpdater",
    "WeComSender",
    "sender_capabilities",
]
