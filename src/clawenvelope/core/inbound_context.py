"""Per-channel resolution of what context is shown to the agent.

Each inbound-context flag is looked up through four layers, highest
priority first:

  1. the channel's own entry (``channels.<channel_id>.inboundContext``)
  2. channel defaults (``channels.defaults.inboundContext``)
  3. agent defaults (``agents.defaults.inboundContext``)
  4. ``True``

A layer that leaves a flag unset defers to the next one; an explicit
``False`` wins. Resolution is recomputed from the snapshot on every call.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from clawenvelope.core.config import ClawConfig, InboundContextConfig, coerce_config
from clawenvelope.core.envelope import EnvelopeFormatOptions

logger = logging.getLogger("clawenvelope.inbound_context")

# Sentinel value of envelopeTimestamp / envelopeElapsed that disables the segment
SEGMENT_OFF = "off"

_FLAGS = ("include_system_envelope", "include_conversation_info", "include_sender_info")


@dataclass(frozen=True)
class InboundContextOptions:
    include_system_envelope: bool = True
    include_conversation_info: bool = True
    include_sender_info: bool = True


def _first_defined(*values: Optional[bool], default: bool = True) -> bool:
    for value in values:
        if value is not None:
            return value
    return default


def _layers(cfg: Optional[ClawConfig], channel_id: Optional[str]) -> list[Optional[InboundContextConfig]]:
    if cfg is None:
        return []
    override = cfg.channel(channel_id)
    channel_defaults = cfg.channel_defaults
    agent_defaults = cfg.agent_defaults
    return [
        override.inbound_context if override else None,
        channel_defaults.inbound_context if channel_defaults else None,
        agent_defaults.inbound_context if agent_defaults else None,
    ]


def resolve_inbound_context_options(
    cfg: Any = None,
    channel_id: Optional[str] = None,
) -> InboundContextOptions:
    """Resolve the inbound-context flags for *channel_id*.

    *cfg* may be a :class:`ClawConfig`, a plain mapping in the config
    file's shape, or None. Never raises; unreadable layers count as unset.
    """
    layers = _layers(coerce_config(cfg), channel_id)
    resolved = {
        flag: _first_defined(*(getattr(layer, flag) if layer else None for layer in layers))
        for flag in _FLAGS
    }
    logger.debug("Inbound context for channel=%s: %s", channel_id or "(none)", resolved)
    return InboundContextOptions(**resolved)


def resolve_envelope_format_options(
    cfg: Any = None,
    channel_id: Optional[str] = None,
) -> EnvelopeFormatOptions:
    """Build envelope options for *channel_id* from the agent defaults."""
    config = coerce_config(cfg)
    defaults = config.agent_defaults if config else None
    inbound = resolve_inbound_context_options(config, channel_id)
    return EnvelopeFormatOptions(
        timezone=defaults.envelope_timezone if defaults else None,
        include_timestamp=(defaults.envelope_timestamp if defaults else None) != SEGMENT_OFF,
        include_elapsed=(defaults.envelope_elapsed if defaults else None) != SEGMENT_OFF,
        user_timezone=defaults.user_timezone if defaults else None,
        include_system_envelope=inbound.include_system_envelope,
    )
