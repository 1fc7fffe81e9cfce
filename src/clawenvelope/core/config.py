"""Configuration: environment settings and the channel/agent config snapshot.

The snapshot mirrors the camelCase JSON written by the channel layer::

    {
      "agents": {"defaults": {"envelopeTimezone": "user",
                              "envelopeElapsed": "off",
                              "userTimezone": "Europe/Berlin",
                              "inboundContext": {"includeSenderInfo": false}}},
      "channels": {"defaults": {"inboundContext": {...}},
                   "telegram": {"enabled": true, "inboundContext": {...}}}
    }

Parsing is lenient on purpose: a layer that is not an object, or a flag
that is not a real boolean, is read as "not set" so resolution falls
through to the next layer instead of failing.
"""
from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger("clawenvelope.config")

# Key under ``channels`` holding channel-level defaults
CHANNEL_DEFAULTS_KEY = "defaults"


class ConfigError(ValueError):
    """Raised when a config snapshot file cannot be read or parsed."""


class _SnapshotModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _non_mapping_is_empty(cls, data: Any) -> Any:
        if isinstance(data, BaseModel):
            return data
        if not isinstance(data, Mapping):
            logger.debug("Ignoring malformed %s layer: %r", cls.__name__, data)
            return {}
        return dict(data)


class InboundContextConfig(_SnapshotModel):
    include_system_envelope: Optional[bool] = None
    include_conversation_info: Optional[bool] = None
    include_sender_info: Optional[bool] = None

    @field_validator("*", mode="before")
    @classmethod
    def _only_real_booleans(cls, value: Any) -> Optional[bool]:
        return value if isinstance(value, bool) else None


class AgentDefaults(_SnapshotModel):
    envelope_timezone: Optional[str] = None
    envelope_timestamp: Optional[str] = None  # "on" | "off"
    envelope_elapsed: Optional[str] = None  # "on" | "off"
    user_timezone: Optional[str] = None
    inbound_context: Optional[InboundContextConfig] = None

    @field_validator(
        "envelope_timezone", "envelope_timestamp", "envelope_elapsed", "user_timezone",
        mode="before",
    )
    @classmethod
    def _only_strings(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) else None


class AgentsConfig(_SnapshotModel):
    defaults: Optional[AgentDefaults] = None


class ChannelConfig(_SnapshotModel):
    enabled: Optional[bool] = None
    inbound_context: Optional[InboundContextConfig] = None

    @field_validator("enabled", mode="before")
    @classmethod
    def _enabled_bool(cls, value: Any) -> Optional[bool]:
        return value if isinstance(value, bool) else None


class ClawConfig(_SnapshotModel):
    agents: Optional[AgentsConfig] = None
    channels: dict[str, ChannelConfig] = Field(default_factory=dict)

    @field_validator("channels", mode="before")
    @classmethod
    def _channels_mapping(cls, value: Any) -> dict[str, Any]:
        if not isinstance(value, Mapping):
            return {}
        return {k: v for k, v in value.items() if isinstance(k, str)}

    @property
    def agent_defaults(self) -> Optional[AgentDefaults]:
        return self.agents.defaults if self.agents else None

    @property
    def channel_defaults(self) -> Optional[ChannelConfig]:
        return self.channels.get(CHANNEL_DEFAULTS_KEY)

    def channel(self, channel_id: Optional[str]) -> Optional[ChannelConfig]:
        """Return the per-channel entry for *channel_id*, if any."""
        if not channel_id:
            return None
        return self.channels.get(channel_id)


def coerce_config(cfg: Any) -> Optional[ClawConfig]:
    """Turn a ``ClawConfig``, a plain mapping, or None into a ``ClawConfig``.

    Anything that cannot be read yields None, which every resolver
    treats as "no configuration".
    """
    if cfg is None or isinstance(cfg, ClawConfig):
        return cfg
    if not isinstance(cfg, Mapping):
        logger.warning("Ignoring config snapshot of type %s", type(cfg).__name__)
        return None
    try:
        return ClawConfig.model_validate(cfg)
    except ValidationError as exc:
        logger.warning("Ignoring unreadable config snapshot: %s", exc)
        return None


def load_config(path: str) -> ClawConfig:
    """Load a JSON config snapshot from *path*."""
    try:
        with open(path, "r", encoding="utf-8") as handle:
            raw = json.load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"config {path} must contain a JSON object")
    config = ClawConfig.model_validate(raw)
    logger.debug("Loaded config from %s (%d channel entries)", path, len(config.channels))
    return config


@dataclass
class Settings:
    log_level: str
    log_dir: str | None
    config_path: str | None
    channel_id: str | None

    @staticmethod
    def from_env() -> "Settings":
        return Settings(
            log_level=os.getenv("clawenvelope_LOG_LEVEL", "info"),
            log_dir=os.getenv("clawenvelope_LOG_DIR") or None,
            config_path=os.getenv("clawenvelope_CONFIG") or None,
            channel_id=os.getenv("clawenvelope_CHANNEL") or None,
        )
