import xml.etree.ElementTree as ET
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

TemplateCard = dict[str, Any]


def _xml_fields(data: bytes) -> dict[str, str]:
    """Flatten the direct children of an XML document into a tag -> text mapping."""
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise ValueError(f"bad xml: {e}") from e
    return {child.tag: (child.text or "") for child in root}


class EncryptedEnvelope(BaseModel):
    to_user_name: str = Field(default="", alias="ToUserName")
    encrypt: str = Field(default="", alias="Encrypt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_xml(cls, data: bytes) -> "EncryptedEnvelope":
        return cls.model_validate(_xml_fields(data))


class IncomingMessage(BaseModel):
    """Decrypted callback payload. Lives for the duration of one request."""

    to_user_name: str = Field(default="", alias="ToUserName")
    from_user_name: str = Field(default="", alias="FromUserName")
    create_time: int = Field(default=0, alias="CreateTime")
    msg_type: str = Field(default="", alias="MsgType")  # text, event, image, ...
    content: str = Field(default="", alias="Content")
    event: str = Field(default="", alias="Event")  # enter_agent, click, template_card_event
    event_key: str = Field(default="", alias="EventKey")
    msg_id: str = Field(default="", alias="MsgId")
    task_id: str = Field(default="", alias="TaskId")
    card_type: str = Field(default="", alias="CardType")
    response_code: str = Field(default="", alias="ResponseCode")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def from_xml(cls, data: bytes) -> "IncomingMessage":
        fields = _xml_fields(data)
        if not fields.get("CreateTime", "").strip():
            fields.pop("CreateTime", None)
        return cls.model_validate(fields)


class TextMessage(BaseModel):
    to_user: str
    content: str


class TemplateCardMessage(BaseModel):
    to_user: str
    card: TemplateCard


class TemplateCardButton(BaseModel):
    text: str
    key: str

    model_config = ConfigDict(frozen=True)


class MenuButton(BaseModel):
    name: str
    type: Optional[str] = None  # click, view
    key: Optional[str] = None
    url: Optional[str] = None
    sub_buttons: Optional[list["MenuButton"]] = Field(default=None, alias="sub_button")

    model_config = ConfigDict(populate_by_name=True)


class Menu(BaseModel):
    """Platform command menu: at most 3 top-level buttons, each with at most 5 sub-buttons."""

    buttons: list[MenuButton] = Field(default_factory=list, alias="button")

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
