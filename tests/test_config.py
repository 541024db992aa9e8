import pytest
from pydantic import ValidationError

from homeops.config import Settings, load_settings
from tests.conftest import ENCODING_AES_KEY


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.wecom_template_card_mode == "template_card"
        assert settings.state_ttl_seconds == 1800
        assert settings.dedupe_ttl_seconds == 600

    def test_allowed_user_id_set(self):
        settings = Settings(allowed_user_ids=" alice, bob ,,alice ")
        assert settings.allowed_user_id_set == {"alice", "bob"}

    def test_mode_is_normalized(self):
        assert Settings(wecom_template_card_mode=" TEXT ").wecom_template_card_mode == "text"

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValidationError):
            Settings(wecom_template_card_mode="fancy")

    def test_aes_key_length(self):
        assert Settings(wecom_encoding_aes_key=ENCODING_AES_KEY).wecom_encoding_aes_key == ENCODING_AES_KEY
        with pytest.raises(ValidationError):
            Settings(wecom_encoding_aes_key="short")

    def test_base_url_trailing_slash(self):
        assert Settings(wecom_api_base_url="https://wecom.test/cgi-bin/").wecom_api_base_url == "https://wecom.test/cgi-bin"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("WECOM_CORP_ID", "ww-env")
        monkeypatch.setenv("STATE_TTL_SECONDS", "90")
        settings = Settings()
        assert settings.wecom_corp_id == "ww-env"
        assert settings.state_ttl_seconds == 90


class TestLoadSettings:
    def test_yaml_file(self, tmp_path):
        path = tmp_path / "homeops.yaml"
        path.write_text(
            "wecom_corp_id: ww-yaml\n"
            "wecom_template_card_mode: both\n"
            "allowed_user_ids:\n"
            "  - alice\n"
            "  - bob\n",
            encoding="utf-8",
        )
        settings = load_settings(str(path))
        assert settings.wecom_corp_id == "ww-yaml"
        assert settings.wecom_template_card_mode == "both"
        assert settings.allowed_user_id_set == {"alice", "bob"}

    def test_missing_file_uses_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WECOM_CORP_ID", "ww-env")
        assert load_settings(str(tmp_path / "absent.yaml")).wecom_corp_id == "ww-env"
