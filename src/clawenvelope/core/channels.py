"""Channel-agnostic helpers: chat-type normalization and sender labels."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# Canonical chat types
CHAT_TYPE_DIRECT = "direct"
CHAT_TYPE_GROUP = "group"
CHAT_TYPE_CHANNEL = "channel"

_CHAT_TYPE_ALIASES = {
    "direct": CHAT_TYPE_DIRECT,
    "dm": CHAT_TYPE_DIRECT,
    "group": CHAT_TYPE_GROUP,
    "channel": CHAT_TYPE_CHANNEL,
}


def normalize_chat_type(raw: Optional[str]) -> Optional[str]:
    """Map a channel-specific chat-type tag to ``direct``/``group``/``channel``.

    Unknown or blank tags return None.
    """
    value = (raw or "").strip().lower()
    if not value:
        return None
    return _CHAT_TYPE_ALIASES.get(value)


@dataclass
class SenderLabelParams:
    """Identity fields a channel knows about a message sender."""
    name: Optional[str] = None
    username: Optional[str] = None
    tag: Optional[str] = None
    e164: Optional[str] = None      # phone number, e.g. "+15551234567"
    id: Optional[str] = None


def resolve_sender_label(params: Optional[SenderLabelParams]) -> str:
    """Derive a display label such as ``"Alice (+1555)"`` for a sender.

    The display part prefers name, then username, then tag; the id part
    prefers the phone number over the raw id. Returns "" when nothing
    is known.
    """
    if params is None:
        return ""
    name = (params.name or "").strip()
    username = (params.username or "").strip()
    tag = (params.tag or "").strip()
    e164 = (params.e164 or "").strip()
    raw_id = (params.id or "").strip()

    display = name or username or tag
    id_part = e164 or raw_id
    if display and id_part and display != id_part:
        return f"{display} ({id_part})"
    return display or id_part
