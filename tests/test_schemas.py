import pytest
from pydantic import ValidationError

from homeops.schemas.wecom import EncryptedEnvelope, IncomingMessage


class TestIncomingMessage:
    def test_parse_event_with_cdata(self):
        raw = (
            "<xml>"
            "<ToUserName><![CDATA[ww123]]></ToUserName>"
            "<FromUserName><![CDATA[zhangsan]]></FromUserName>"
            "<CreateTime>1700000000</CreateTime>"
            "<MsgType><![CDATA[event]]></MsgType>"
            "<Event><![CDATA[template_card_event]]></Event>"
            "<EventKey><![CDATA[unraid.view.logs]]></EventKey>"
            "<TaskId><![CDATA[homeops-1]]></TaskId>"
            "<CardType><![CDATA[button_interaction]]></CardType>"
            "<ResponseCode><![CDATA[RC]]></ResponseCode>"
            "</xml>"
        ).encode("utf-8")
        msg = IncomingMessage.from_xml(raw)
        assert msg.from_user_name == "zhangsan"
        assert msg.create_time == 1700000000
        assert msg.event == "template_card_event"
        assert msg.event_key == "unraid.view.logs"
        assert msg.task_id == "homeops-1"
        assert msg.response_code == "RC"
        assert msg.content == ""

    def test_empty_create_time(self):
        msg = IncomingMessage.from_xml(b"<xml><MsgType>text</MsgType><CreateTime></CreateTime></xml>")
        assert msg.create_time == 0

    def test_bad_xml(self):
        with pytest.raises(ValueError, match="bad xml"):
            IncomingMessage.from_xml(b"<xml><MsgType>")

    def test_frozen(self):
        msg = IncomingMessage(msg_type="text", content="menu")
        with pytest.raises(ValidationError):
            msg.content = "help"


class TestEncryptedEnvelope:
    def test_parse(self):
        envelope = EncryptedEnvelope.from_xml(b"<xml><ToUserName>ww123</ToUserName><Encrypt>abc==</Encrypt></xml>")
        assert envelope.to_user_name == "ww123"
        assert envelope.encrypt == "abc=="

    def test_missing_encrypt_is_empty(self):
        assert EncryptedEnvelope.from_xml(b"<xml/>").encrypt == ""
