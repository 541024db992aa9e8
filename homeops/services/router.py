"""Routes authenticated callback messages to built-in commands or service providers.

Dispatch order, first match wins:

1. sender must be allow-listed
2. self-test keyword (ping)
3. confirm / cancel of a pending confirmation, always bound to the provider
   recorded in the user's state
4. built-in commands: help, sync menu, menu
5. provider entry keyword
6. namespaced event key ``<provider>.<rest>``
7. the provider owning the active session
8. generic hint
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

from homeops.logging_config import LoggerAdapter, get_logger, message_context
from homeops.schemas.wecom import IncomingMessage, TemplateCardMessage, TextMessage
from homeops.services.cards import (
    EVENT_KEY_CANCEL,
    EVENT_KEY_CONFIRM,
    EVENT_KEY_CORE_HELP,
    EVENT_KEY_CORE_MENU,
    EVENT_KEY_CORE_SELFTEST,
    EVENT_KEY_SERVICE_SELECT_PREFIX,
    build_default_menu,
    build_service_select_card,
    resolve_numbered_reply,
)
from homeops.services.providers.base import ServiceProvider, WeComSender, sender_capabilities
from homeops.services.state_store import ConversationState, StateStore

logger = get_logger("router")

NOT_AUTHORIZED_TEXT = "Not authorized: this account is not on the allow-list."
SESSION_EXPIRED_TEXT = "Session expired, please start over (send menu)."
CANCELLED_TEXT = "Cancelled."
DEFAULT_TEXT = "Type help to list commands, or menu to open the operations menu."
UNSUPPORTED_TYPE_TEXT = "Unsupported message type."
MENU_SYNCED_TEXT = "Command menu synced."
MENU_SYNC_UNSUPPORTED_TEXT = "Menu sync is not supported by the current sender."

SELFTEST_KEYWORDS = {"ping", "selftest", "自检"}
HELP_KEYWORDS = {"help", "?", "帮助"}
MENU_KEYWORDS = {"menu", "菜单"}
SYNC_MENU_KEYWORDS = {"sync menu", "同步菜单"}
CONFIRM_KEYWORDS = {"confirm", "yes", "确认"}
CANCEL_KEYWORDS = {"cancel", "no", "取消"}

EVENT_ENTER_AGENT = "enter_agent"
EVENT_TEMPLATE_CARD = "template_card_event"

CORE_EVENT_NAMESPACE = "core"


def service_unavailable_text(key: str) -> str:
    return f"service unavailable: {key}"


def normalize_keyword(text: str) -> str:
    return (text or "").strip().lower()


class Router:
    def __init__(
        self,
        sender: WeComSender,
        state: StateStore,
        allowed_user_ids: Iterable[str],
        providers: Optional[Iterable[ServiceProvider]] = None,
    ):
        self.sender = sender
        self.state = state
        self.allowed_user_ids = frozenset(uid.strip() for uid in allowed_user_ids if uid and uid.strip())

        capabilities = sender_capabilities(sender)
        self._card_updater = capabilities.card_updater
        self._menu_creator = capabilities.menu_creator

        self._providers: list[ServiceProvider] = []
        self._providers_by_key: dict[str, ServiceProvider] = {}
        self._keyword_index: dict[str, str] = {}
        for provider in providers or []:
            self._register(provider)

    def _register(self, provider: ServiceProvider) -> None:
        key = provider.key().strip()
        if not key:
            raise ValueError("provider key must not be empty")
        if "." in key:
            raise ValueError(f"provider key must not contain '.': {key}")
        if key in self._providers_by_key:
            raise ValueError(f"duplicate provider key: {key}")

        self._providers.append(provider)
        self._providers_by_key[key] = provider
        for keyword in provider.entry_keywords():
            normalized = normalize_keyword(keyword)
            if not normalized:
                continue
            if normalized in self._keyword_index:
                logger.warning(
                    "Entry keyword already registered, ignoring",
                    extra={"context": {"keyword": normalized, "provider": key, "owner": self._keyword_index[normalized]}},
                )
                continue
            self._keyword_index[normalized] = key

    @property
    def providers(self) -> list[ServiceProvider]:
        return list(self._providers)

    def handle_message(self, msg: IncomingMessage) -> None:
        user_id = msg.from_user_name.strip()
        if not user_id:
            return

        log = LoggerAdapter(logger, message_context(msg))
        if user_id not in self.allowed_user_ids:
            log.warning("Sender not in allow-list")
            self._reply(user_id, NOT_AUTHORIZED_TEXT)
            return

        msg_type = msg.msg_type.strip().lower()
        if msg_type == "text":
            self._handle_text(user_id, msg, log)
        elif msg_type == "event":
            self._handle_event(user_id, msg, log)
        else:
            self._reply(user_id, UNSUPPORTED_TYPE_TEXT)

    def _handle_text(self, user_id: str, msg: IncomingMessage, log: LoggerAdapter) -> None:
        content = msg.content.strip()
        if not content:
            return
        command = normalize_keyword(content)

        if command in SELFTEST_KEYWORDS:
            self._reply_selftest(user_id, msg)
            return

        state, found = self.state.get(user_id)

        if found:
            button = resolve_numbered_reply(content, state.pending_buttons)
            if button is not None:
                log.info("Numbered reply resolved", context={"event_key": button.key})
                self._handle_event(
                    user_id,
                    msg.model_copy(
                        update={"msg_type": "event", "event": EVENT_TEMPLATE_CARD, "event_key": button.key, "content": ""}
                    ),
                    log,
                )
                return

        if found and state.awaiting_confirm and state.service_key:
            if command in CONFIRM_KEYWORDS:
                self._confirm(user_id, state, log)
                return
            if command in CANCEL_KEYWORDS:
                self._cancel(user_id)
                return

        if command in HELP_KEYWORDS:
            self._reply(user_id, self.help_text())
            return
        if command in SYNC_MENU_KEYWORDS:
            self._sync_menu(user_id, log)
            return
        if command in MENU_KEYWORDS:
            self.state.clear(user_id)
            self._send_menu(user_id)
            return

        provider_key = self._keyword_index.get(command)
        if provider_key:
            self._enter(user_id, self._providers_by_key[provider_key], log)
            return

        if found and state.service_key:
            provider = self._providers_by_key.get(state.service_key)
            if provider is not None and provider.handle_text(user_id, content):
                return

        self._reply(user_id, DEFAULT_TEXT)

    def _handle_event(self, user_id: str, msg: IncomingMessage, log: LoggerAdapter) -> None:
        event = msg.event.strip().lower()
        key = msg.event_key.strip()

        if event == EVENT_TEMPLATE_CARD and msg.response_code.strip():
            self._update_card_button(msg.response_code.strip(), key, log)

        if event == EVENT_ENTER_AGENT:
            self.state.clear(user_id)
            self._send_menu(user_id)
            return
        if not key:
            return

        state, found = self.state.get(user_id)

        if key == EVENT_KEY_CONFIRM:
            if found and state.awaiting_confirm and state.service_key:
                self._confirm(user_id, state, log)
            else:
                self._reply(user_id, SESSION_EXPIRED_TEXT)
            return
        if key == EVENT_KEY_CANCEL:
            self._cancel(user_id)
            return

        if key == EVENT_KEY_CORE_MENU:
            self.state.clear(user_id)
            self._send_menu(user_id)
            return
        if key == EVENT_KEY_CORE_HELP:
            self._reply(user_id, self.help_text())
            return
        if key == EVENT_KEY_CORE_SELFTEST:
            self._reply_selftest(user_id, msg)
            return

        if key.startswith(EVENT_KEY_SERVICE_SELECT_PREFIX):
            provider_key = key[len(EVENT_KEY_SERVICE_SELECT_PREFIX) :].strip()
            provider = self._providers_by_key.get(provider_key)
            if provider is None:
                self._reply(user_id, service_unavailable_text(provider_key))
                return
            self._enter(user_id, provider, log)
            return

        tried = None
        namespace, sep, _ = key.partition(".")
        if sep and namespace and namespace != CORE_EVENT_NAMESPACE:
            provider = self._providers_by_key.get(namespace)
            if provider is None:
                log.warning("Event for unregistered provider", context={"event_key": key})
                self._reply(user_id, service_unavailable_text(namespace))
                return
            if provider.handle_event(user_id, msg):
                return
            tried = namespace

        if found and state.service_key and state.service_key != tried:
            provider = self._providers_by_key.get(state.service_key)
            if provider is not None and provider.handle_event(user_id, msg):
                return

        self._reply(user_id, DEFAULT_TEXT)

    def _confirm(self, user_id: str, state: ConversationState, log: LoggerAdapter) -> None:
        # Only the provider recorded in state may resolve its own pending action.
        provider = self._providers_by_key.get(state.service_key)
        if provider is None:
            log.warning("Pending confirmation for unknown provider", context={"service_key": state.service_key})
            self.state.clear(user_id)
            self._reply(user_id, SESSION_EXPIRED_TEXT)
            return
        log.info("Confirm dispatched", context={"service_key": state.service_key, "action": state.action})
        if not provider.handle_confirm(user_id):
            self._reply(user_id, SESSION_EXPIRED_TEXT)

    def _cancel(self, user_id: str) -> None:
        self.state.clear(user_id)
        self._reply(user_id, CANCELLED_TEXT)

    def _enter(self, user_id: str, provider: ServiceProvider, log: LoggerAdapter) -> None:
        key = provider.key().strip()
        self.state.clear(user_id)
        self.state.set(user_id, ConversationState(service_key=key))
        log.info("Entered provider", context={"service_key": key})
        provider.on_enter(user_id)

    def _sorted_services(self) -> list[tuple[str, str]]:
        return sorted(((p.key().strip(), p.display_name()) for p in self._providers), key=lambda item: item[0])

    def _send_menu(self, user_id: str) -> None:
        card = build_service_select_card(self._sorted_services())
        self.sender.send_template_card(TemplateCardMessage(to_user=user_id, card=card))

    def _sync_menu(self, user_id: str, log: LoggerAdapter) -> None:
        if self._menu_creator is None:
            self._reply(user_id, MENU_SYNC_UNSUPPORTED_TEXT)
            return
        try:
            self._menu_creator.create_menu(build_default_menu(self._sorted_services()))
        except Exception as e:
            log.error(f"Menu sync failed: {e}", exc_info=True)
            self._reply(user_id, f"Menu sync failed: {e}")
            return
        self._reply(user_id, MENU_SYNCED_TEXT)

    def _update_card_button(self, response_code: str, event_key: str, log: LoggerAdapter) -> None:
        if self._card_updater is None:
            return
        if event_key == EVENT_KEY_CONFIRM:
            replace_name = "Confirmed"
        elif event_key == EVENT_KEY_CANCEL:
            replace_name = "Cancelled"
        else:
            replace_name = "Processed"
        try:
            self._card_updater.update_template_card_button(response_code, replace_name)
        except Exception as e:
            # The click itself is still handled; a stale button label is cosmetic.
            log.warning(f"Card button update failed: {e}", context={"event_key": event_key})

    def _reply_selftest(self, user_id: str, msg: IncomingMessage) -> None:
        lines = [
            "pong",
            f"server_time: {datetime.now(timezone.utc).isoformat(timespec='seconds')}",
            f"from: {user_id}",
            f"msg_type: {msg.msg_type}",
        ]
        if msg.create_time:
            lines.append(f"create_time: {msg.create_time}")
        if msg.msg_id.strip():
            lines.append(f"msg_id: {msg.msg_id.strip()}")
        self._reply(user_id, "\n".join(lines))

    def help_text(self) -> str:
        lines = [
            "Available commands:",
            "- menu: open the operations menu",
            "- help: show this help",
            "- ping: webhook self-test",
            "- sync menu: push the command menu to the app",
            "- confirm / cancel: resolve a pending confirmation",
        ]
        for provider in self._providers:
            keywords = [kw for kw in provider.entry_keywords() if kw.strip()]
            if keywords:
                lines.append(f"- {' / '.join(keywords)}: {provider.display_name()}")
        return "\n".join(lines)

    def _reply(self, user_id: str, text: str) -> None:
        self.sender.send_text(TextMessage(to_user=user_id, content=text))
