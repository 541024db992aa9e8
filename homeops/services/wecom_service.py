import threading
import time
from typing import Optional

import httpx

from homeops.logging_config import get_logger
from homeops.schemas.wecom import Menu, TemplateCardMessage, TextMessage
from homeops.services.providers.base import MenuCreator, TemplateCardUpdater, WeComSender

logger = get_logger("wecom_service")

TOKEN_REFRESH_MARGIN_SECONDS = 120
DEFAULT_REPLACE_NAME = "Processed"


class WeComAPIError(Exception):
    def __init__(self, method: str, errcode: int, errmsg: str):
        self.method = method
        self.errcode = errcode
        self.errmsg = errmsg
        super().__init__(f"wecom api error on {method}: {errcode} {errmsg}")


class WeComClient(WeComSender, TemplateCardUpdater, MenuCreator):
    """Client for the WeCom self-built app API (messages, cards, command menu)."""

    BASE_URL = "https://qyapi.weixin.qq.com/cgi-bin"

    def __init__(
        self,
        corp_id: str,
        agent_id: int,
        secret: str,
        base_url: Optional[str] = None,
        timeout: float = 15.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.corp_id = corp_id
        self.agent_id = agent_id
        self.secret = secret
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self._http = http_client or httpx.Client(timeout=timeout)

        self._token_lock = threading.Lock()
        self._access_token = ""
        self._access_token_expires_at = 0.0

    def close(self) -> None:
        self._http.close()

    def _access_token_value(self) -> str:
        # Holding the lock across the fetch collapses concurrent refreshes into one request.
        with self._token_lock:
            now = time.monotonic()
            if self._access_token and now < self._access_token_expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
                return self._access_token

            data = self._request("GET", "gettoken", params={"corpid": self.corp_id, "corpsecret": self.secret})
            token = data.get("access_token") or ""
            if not token:
                raise WeComAPIError("gettoken", -1, "empty access_token")
            self._access_token = token
            self._access_token_expires_at = now + int(data.get("expires_in") or 7200)
            return token

    def _request(self, http_method: str, method: str, params: Optional[dict] = None, json: Optional[dict] = None) -> dict:
        url = f"{self.base_url}/{method}"
        start = time.monotonic()
        try:
            response = self._http.request(http_method, url, params=params, json=json)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"WeCom API request failed: {e}", extra={"context": {"method": method}})
            raise WeComAPIError(method, -1, str(e)) from e

        errcode = int(data.get("errcode") or 0)
        context = {
            "method": method,
            "status_code": response.status_code,
            "errcode": errcode,
            "duration_ms": int((time.monotonic() - start) * 1000),
        }
        if errcode != 0:
            logger.error("WeCom API returned error", extra={"context": {**context, "errmsg": data.get("errmsg")}})
            raise WeComAPIError(method, errcode, str(data.get("errmsg") or ""))
        logger.debug("WeCom API ok", extra={"context": context})
        return data

    def _post(self, method: str, payload: dict, params: Optional[dict] = None) -> dict:
        query = {"access_token": self._access_token_value(), **(params or {})}
        return self._request("POST", method, params=query, json=payload)

    def send_text(self, msg: TextMessage) -> None:
        self._post(
            "message/send",
            {
                "touser": msg.to_user,
                "msgtype": "text",
                "agentid": self.agent_id,
                "text": {"content": msg.content},
            },
        )

    def send_template_card(self, msg: TemplateCardMessage) -> None:
        card = dict(msg.card)
        card.setdefault("task_id", f"homeops-{time.time_ns()}")
        self._post(
            "message/send",
            {
                "touser": msg.to_user,
                "msgtype": "template_card",
                "agentid": self.agent_id,
                "template_card": card,
            },
        )

    def update_template_card_button(self, response_code: str, replace_name: str) -> None:
        if not response_code:
            raise ValueError("response_code is empty")
        self._post(
            "message/update_template_card",
            {
                "agentid": self.agent_id,
                "response_code": response_code,
                "button": {"replace_name": replace_name or DEFAULT_REPLACE_NAME},
            },
        )

    def create_menu(self, menu: Menu) -> None:
        self._post("menu/create", menu.to_payload(), params={"agentid": self.agent_id})
        logger.info("Command menu created", extra={"context": {"top_buttons": len(menu.buttons)}})
