from pathlib import Path
from typing import Optional

import yaml
from pydantic import field_validator
from pydantic_settings import BaseSettings

TEMPLATE_CARD_MODES = ("template_card", "both", "text")


class Settings(BaseSettings):
    wecom_corp_id: str = ""
    wecom_agent_id: int = 0
    wecom_secret: str = ""
    wecom_token: str = ""
    wecom_encoding_aes_key: str = ""
    wecom_api_base_url: str = "https://qyapi.weixin.qq.com/cgi-bin"
    wecom_template_card_mode: str = "template_card"

    allowed_user_ids: str = ""

    state_ttl_seconds: float = 30 * 60
    dedupe_ttl_seconds: float = 10 * 60
    max_body_bytes: int = 1 << 20
    http_client_timeout_seconds: float = 15.0

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("wecom_template_card_mode")
    @classmethod
    def _check_template_card_mode(cls, value: str) -> str:
        mode = (value or "").strip().lower() or "template_card"
        if mode not in TEMPLATE_CARD_MODES:
            raise ValueError(f"template card mode must be one of {', '.join(TEMPLATE_CARD_MODES)}")
        return mode

    @field_validator("wecom_encoding_aes_key")
    @classmethod
    def _check_aes_key(cls, value: str) -> str:
        value = (value or "").strip()
        if value and len(value) != 43:
            raise ValueError("encoding AES key must be 43 characters")
        return value

    @field_validator("wecom_api_base_url")
    @classmethod
    def _strip_base_url(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @property
    def allowed_user_id_set(self) -> set[str]:
        return {item.strip() for item in self.allowed_user_ids.split(",") if item.strip()}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return data if isinstance(data, dict) else {}


def load_settings(path: Optional[str] = None) -> Settings:
    """Build settings from the environment, overridden by a flat YAML mapping if given.

    List values (e.g. allowed_user_ids) may be written as YAML sequences.
    """
    if not path:
        return Settings()

    overrides = {}
    for key, value in _load_yaml(Path(path)).items():
        if isinstance(value, (list, tuple)):
            value = ",".join(str(item) for item in value)
        overrides[str(key)] = value
    return Settings(**overrides)
