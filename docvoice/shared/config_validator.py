"""Configuration loading and validation for DocVoice.

Merges an optional docvoice-config.json over built-in defaults, validates the
result against the embedded JSON Schema, applies environment variable
overlays, and provides typed access to config sections.

Usage:
    from docvoice.shared.config_validator import DocvoiceConfig, ConfigValidationError
    cfg = DocvoiceConfig()
    reply_cfg = cfg.get("reply")

Environment variable overlays:
    DOCVOICE_REPLY__MODEL=gemini-2.5-pro
    DOCVOICE_CAPTURE__LOCALE=en-GB
    DOCVOICE_TELEMETRY__ENABLED=false
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema

logger = logging.getLogger("docvoice.config")

_CONFIG_PATH_ENV = "DOCVOICE_CONFIG"
_ENV_PREFIX = "DOCVOICE_"

DEFAULT_CONFIG: Dict[str, Any] = {
    "service": {
        "host": "127.0.0.1",
        "port": 7080,
        "log_level": "INFO",
    },
    "reply": {
        "base_url": "https://generativelanguage.googleapis.com/v1beta",
        "model": "gemini-2.5-flash",
        "timeout_secs": 30.0,
        "retries": 2,
        "backoff": 1.5,
        "max_output_tokens": 500,
        "temperature": 0.7,
    },
    "capture": {
        "locale": "en-US",
        "continuous": True,
        "interim_results": True,
    },
    "playback": {
        "rate": 1.0,
        "pitch": 1.0,
        "volume": 1.0,
        "language_prefix": "en",
        "max_voices": 12,
    },
    "documents": {
        "max_chars": 50000,
    },
    "telemetry": {
        "enabled": True,
        "log_dir": "logs",
        "log_file": "turns.jsonl",
    },
}

CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "service": {
            "type": "object",
            "properties": {
                "host": {"type": "string"},
                "port": {"type": "integer", "minimum": 1, "maximum": 65535},
                "log_level": {"enum": ["DEBUG", "INFO", "WARNING", "ERROR"]},
            },
        },
        "reply": {
            "type": "object",
            "properties": {
                "base_url": {"type": "string", "minLength": 1},
                "model": {"type": "string", "minLength": 1},
                "timeout_secs": {"type": "number", "exclusiveMinimum": 0},
                "retries": {"type": "integer", "minimum": 1},
                "backoff": {"type": "number", "minimum": 0},
                "max_output_tokens": {"type": "integer", "minimum": 1},
                "temperature": {"type": "number", "minimum": 0, "maximum": 2},
            },
        },
        "capture": {
            "type": "object",
            "properties": {
                "locale": {"type": "string", "minLength": 2},
                "continuous": {"type": "boolean"},
                "interim_results": {"type": "boolean"},
            },
        },
        "playback": {
            "type": "object",
            "properties": {
                "rate": {"type": "number", "minimum": 0.1, "maximum": 10},
                "pitch": {"type": "number", "minimum": 0, "maximum": 2},
                "volume": {"type": "number", "minimum": 0, "maximum": 1},
                "language_prefix": {"type": "string"},
                "max_voices": {"type": "integer", "minimum": 1},
            },
        },
        "documents": {
            "type": "object",
            "properties": {
                "max_chars": {"type": "integer", "minimum": 1},
            },
        },
        "telemetry": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "log_dir": {"type": "string"},
                "log_file": {"type": "string"},
            },
        },
    },
}


class ConfigValidationError(Exception):
    """Raised when config fails schema validation."""
    pass


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge *override* into a copy of *base*."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class DocvoiceConfig:
    """Validated DocVoice configuration with environment variable overlay support."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        path = config_path or os.environ.get(_CONFIG_PATH_ENV)
        self.config_path = Path(path) if path else None
        self._environ = environ if environ is not None else os.environ
        self._raw: Dict[str, Any] = {}
        self._validated: Dict[str, Any] = {}
        self._load_and_validate()

    def _load_and_validate(self) -> None:
        """Load config, validate against schema, apply env overlays."""
        if self.config_path is not None:
            if not self.config_path.exists():
                raise ConfigValidationError(f"Config file not found: {self.config_path}")
            with open(self.config_path, "r", encoding="utf-8") as f:
                try:
                    self._raw = json.load(f)
                except json.JSONDecodeError as e:
                    raise ConfigValidationError(
                        f"Config file {self.config_path} is not valid JSON: {e}"
                    ) from e
        else:
            logger.debug("No config file given, using built-in defaults")

        merged = _merge(DEFAULT_CONFIG, self._raw)
        overlaid = self._apply_env_overlays(merged)

        try:
            jsonschema.validate(instance=overlaid, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "(root)"
            raise ConfigValidationError(
                f"Config validation failed at '{path}': {e.message}"
            ) from e

        self._validated = overlaid

    def _apply_env_overlays(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply DOCVOICE_SECTION__KEY environment variables as overrides.

        Format: DOCVOICE_{SECTION}__{KEY}={VALUE}
        Section and key are case-insensitive, matched to existing config keys.
        Type coercion is based on the existing value's type.
        """
        for env_key, env_val in self._environ.items():
            if not env_key.startswith(_ENV_PREFIX):
                continue
            rest = env_key[len(_ENV_PREFIX):]
            if "__" not in rest:
                continue
            section, key = (part.lower() for part in rest.split("__", 1))

            if not isinstance(config.get(section), dict):
                continue
            if key not in config[section]:
                logger.debug("Env overlay %s: key '%s' not in section '%s', skipping", env_key, key, section)
                continue

            existing = config[section][key]
            try:
                if isinstance(existing, bool):
                    config[section][key] = env_val.lower() in ("1", "true", "yes")
                elif isinstance(existing, int):
                    config[section][key] = int(env_val)
                elif isinstance(existing, float):
                    config[section][key] = float(env_val)
                else:
                    config[section][key] = env_val
                logger.info("Env overlay applied: %s.%s = %r", section, key, config[section][key])
            except (ValueError, TypeError) as e:
                logger.warning("Env overlay %s: type coercion failed: %s", env_key, e)

        return config

    def get(self, section: str) -> Dict[str, Any]:
        """Get a config section dict (post-overlay)."""
        return self._validated.get(section, {})

    @property
    def gemini_api_key(self) -> str:
        return self._environ.get("GEMINI_API_KEY", "")

    @property
    def raw(self) -> Dict[str, Any]:
        return self._raw
