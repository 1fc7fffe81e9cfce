"""Single-line message envelopes for chat-agent transcripts."""
from clawenvelope.core.channels import SenderLabelParams, normalize_chat_type, resolve_sender_label
from clawenvelope.core.config import ClawConfig, ConfigError, load_config
from clawenvelope.core.envelope import (
    EnvelopeFormatOptions,
    format_agent_envelope,
    format_inbound_envelope,
    format_inbound_from_label,
    format_thread_starter_envelope,
    sanitize_envelope_header_part,
)
from clawenvelope.core.inbound_context import (
    InboundContextOptions,
    resolve_envelope_format_options,
    resolve_inbound_context_options,
)

__version__ = "0.1.0"

__all__ = [
    "ClawConfig",
    "ConfigError",
    "EnvelopeFormatOptions",
    "InboundContextOptions",
    "SenderLabelParams",
    "format_agent_envelope",
    "format_inbound_envelope",
    "format_inbound_from_label",
    "format_thread_starter_envelope",
    "load_config",
    "normalize_chat_type",
    "resolve_envelope_format_options",
    "resolve_inbound_context_options",
    "resolve_sender_label",
    "sanitize_envelope_header_part",
]
