"""Configuration loading tests: defaults, file merge, env overlays, schema errors."""

import json

import pytest

from docvoice.shared.config_validator import ConfigValidationError, DocvoiceConfig


def _write(tmp_path, data):
    path = tmp_path / "docvoice-config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


class TestDocvoiceConfig:

    def test_defaults_without_file(self):
        cfg = DocvoiceConfig(environ={})
        assert cfg.get("reply")["model"] == "gemini-2.5-flash"
        assert cfg.get("reply")["max_output_tokens"] == 500
        assert cfg.get("capture") == {"locale": "en-US", "continuous": True, "interim_results": True}
        assert cfg.get("documents")["max_chars"] == 50000
        assert cfg.get("missing") == {}

    def test_file_merged_over_defaults(self, tmp_path):
        path = _write(tmp_path, {"reply": {"model": "gemini-2.5-pro"}, "playback": {"rate": 1.2}})
        cfg = DocvoiceConfig(config_path=path, environ={})
        assert cfg.get("reply")["model"] == "gemini-2.5-pro"
        assert cfg.get("reply")["temperature"] == 0.7
        assert cfg.get("playback")["rate"] == 1.2
        assert cfg.raw == {"reply": {"model": "gemini-2.5-pro"}, "playback": {"rate": 1.2}}

    def test_config_path_from_environment(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"service": {"port": 9001}})
        monkeypatch.setenv("DOCVOICE_CONFIG", path)
        assert DocvoiceConfig(environ={}).get("service")["port"] == 9001

    def test_env_overlays_coerce_types(self):
        cfg = DocvoiceConfig(environ={
            "DOCVOICE_REPLY__RETRIES": "5",
            "DOCVOICE_REPLY__TEMPERATURE": "0.2",
            "DOCVOICE_TELEMETRY__ENABLED": "false",
            "DOCVOICE_CAPTURE__LOCALE": "en-GB",
            "DOCVOICE_REPLY__UNKNOWN_KEY": "ignored",
            "OTHER_VAR": "x",
        })
        assert cfg.get("reply")["retries"] == 5
        assert cfg.get("reply")["temperature"] == 0.2
        assert cfg.get("telemetry")["enabled"] is False
        assert cfg.get("capture")["locale"] == "en-GB"
        assert "unknown_key" not in cfg.get("reply")

    def test_bad_overlay_value_is_skipped(self):
        cfg = DocvoiceConfig(environ={"DOCVOICE_SERVICE__PORT": "not-a-port"})
        assert cfg.get("service")["port"] == 7080

    def test_schema_violation_from_file(self, tmp_path):
        path = _write(tmp_path, {"playback": {"volume": 3}})
        with pytest.raises(ConfigValidationError, match="playback.volume"):
            DocvoiceConfig(config_path=path, environ={})

    def test_schema_violation_from_overlay(self):
        with pytest.raises(ConfigValidationError, match="reply.retries"):
            DocvoiceConfig(environ={"DOCVOICE_REPLY__RETRIES": "0"})

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigValidationError, match="not found"):
            DocvoiceConfig(config_path=str(tmp_path / "nope.json"), environ={})

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigValidationError, match="not valid JSON"):
            DocvoiceConfig(config_path=str(path), environ={})

    def test_api_key_from_environment_only(self, tmp_path):
        path = _write(tmp_path, {"reply": {"model": "m"}})
        cfg = DocvoiceConfig(config_path=path, environ={"GEMINI_API_KEY": "secret"})
        assert cfg.gemini_api_key == "secret"
        assert DocvoiceConfig(environ={}).gemini_api_key == ""
