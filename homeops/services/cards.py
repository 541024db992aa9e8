from typing import Iterable, Optional

from homeops.schemas.wecom import Menu, MenuButton, TemplateCard, TemplateCardButton

EVENT_KEY_SERVICE_SELECT_PREFIX = "svc.select."

# core.* keys are shared by the platform command menu and the router's built-ins.
EVENT_KEY_CORE_MENU = "core.menu"
EVENT_KEY_CORE_HELP = "core.help"
EVENT_KEY_CORE_SELFTEST = "core.selftest"
EVENT_KEY_CONFIRM = "core.action.confirm"
EVENT_KEY_CANCEL = "core.action.cancel"

CARD_SOURCE_DESC = "homeops"

MAX_MENU_TOP_BUTTONS = 3
MAX_MENU_SUB_BUTTONS = 5

MAX_TEXT_BYTES = 1800
TRUNCATED_SUFFIX = "\n… (truncated)"


def _with_default_source(card: TemplateCard) -> TemplateCard:
    card.setdefault("source", {"desc": CARD_SOURCE_DESC, "desc_color": 1})
    return card


def build_button_card(title: str, desc: str, buttons: Iterable[tuple[str, str, int]]) -> TemplateCard:
    """Build a button_interaction card from (text, event key, style) triples."""
    return _with_default_source(
        {
            "card_type": "button_interaction",
            "main_title": {"title": title, "desc": desc},
            "button_list": [{"text": text, "style": style, "key": key} for text, key, style in buttons],
        }
    )


def build_service_select_card(services: Iterable[tuple[str, str]]) -> TemplateCard:
    """Menu card listing (key, display name) pairs in the given order."""
    buttons = [
        (name, EVENT_KEY_SERVICE_SELECT_PREFIX + key, 1) for key, name in services if key and name
    ]
    return build_button_card("Operations menu", "Choose a service", buttons)


def build_confirm_card(action_display_name: str, target: str) -> TemplateCard:
    return build_button_card(
        "Confirm",
        f"{action_display_name}: {target}",
        [("Confirm", EVENT_KEY_CONFIRM, 2), ("Cancel", EVENT_KEY_CANCEL, 1)],
    )


def build_default_menu(services: Iterable[tuple[str, str]]) -> Menu:
    common = MenuButton(
        name="Common",
        sub_buttons=[
            MenuButton(type="click", name="Menu", key=EVENT_KEY_CORE_MENU),
            MenuButton(type="click", name="Self-test", key=EVENT_KEY_CORE_SELFTEST),
            MenuButton(type="click", name="Help", key=EVENT_KEY_CORE_HELP),
        ],
    )
    service_buttons = [
        MenuButton(type="click", name=name, key=EVENT_KEY_SERVICE_SELECT_PREFIX + key)
        for key, name in services
        if key and name
    ][:MAX_MENU_SUB_BUTTONS]

    buttons = [common]
    if service_buttons:
        buttons.append(MenuButton(name="Services", sub_buttons=service_buttons))
    return Menu(buttons=buttons[:MAX_MENU_TOP_BUTTONS])


def render_button_interaction_text_menu(card: TemplateCard) -> tuple[str, list[TemplateCardButton], bool]:
    """Flatten a button card into a numbered text menu.

    Returns (text, buttons, ok); ok is False when the card has no usable buttons.
    """
    if not card or card.get("card_type") != "button_interaction":
        return "", [], False

    buttons = []
    for raw in card.get("button_list") or []:
        if not isinstance(raw, dict):
            continue
        text = str(raw.get("text") or "").strip()
        key = str(raw.get("key") or "").strip()
        if text and key:
            buttons.append(TemplateCardButton(text=text, key=key))
    if not buttons:
        return "", [], False

    lines = []
    main_title = card.get("main_title") or {}
    title = str(main_title.get("title") or "").strip()
    desc = str(main_title.get("desc") or "").strip()
    if title:
        lines.append(f"【{title}】")
    if desc:
        lines.append(desc)
    for index, button in enumerate(buttons, start=1):
        lines.append(f"{index}. {button.text}")
    lines.append("Reply with a number to choose.")
    return "\n".join(lines), buttons, True


def resolve_numbered_reply(text: str, buttons: list[TemplateCardButton]) -> Optional[TemplateCardButton]:
    value = text.strip()
    if not buttons or not value.isdigit():
        return None
    index = int(value)
    if index < 1 or index > len(buttons):
        return None
    return buttons[index - 1]


def truncate_text(text: str, max_bytes: int = MAX_TEXT_BYTES) -> str:
    """Cut `text` to at most `max_bytes` UTF-8 bytes, marking the cut."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    suffix = TRUNCATED_SUFFIX.encode("utf-8")
    budget = max(max_bytes - len(suffix), 0)
    cut = encoded[:budget].decode("utf-8", errors="ignore")
    return cut + TRUNCATED_SUFFIX
