"""Envelope formatting for agent transcripts.

Every message handed to the agent is rendered as a single line::

    [Telegram Alice +5m Mon 2024-01-15 10:30 CET] hello there

i.e. a bracketed header (channel, sender with elapsed time since the
previous message, host, ip, weekday + timestamp) followed by the body.
Header parts are untrusted metadata, so each one is sanitized before it
is placed between the brackets. Nothing in this module raises for bad
input: missing or malformed fields simply drop out of the header.
"""
from __future__ import annotations

import enum
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from clawenvelope.core.channels import (
    CHAT_TYPE_DIRECT,
    SenderLabelParams,
    normalize_chat_type,
    resolve_sender_label,
)
from clawenvelope.core.timefmt import (
    Timestamp,
    format_time_ago,
    format_utc_timestamp,
    format_zoned_timestamp,
    resolve_timezone,
    resolve_user_timezone,
    to_datetime,
    to_epoch_ms,
    weekday_abbrev,
)

logger = logging.getLogger("clawenvelope.envelope")

DEFAULT_CHANNEL_LABEL = "Channel"
DEFAULT_GROUP_LABEL = "Group"

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class EnvelopeFormatOptions:
    """Caller-facing envelope options; None means "use the default"."""
    timezone: Optional[str] = None  # "local" (default) | "utc" | "user" | IANA name
    include_timestamp: Optional[bool] = None
    include_elapsed: Optional[bool] = None
    user_timezone: Optional[str] = None  # only used when timezone="user"
    include_system_envelope: Optional[bool] = None


@dataclass(frozen=True)
class NormalizedEnvelopeOptions:
    timezone: str
    include_timestamp: bool
    include_elapsed: bool
    user_timezone: Optional[str] = None


class TimezoneMode(str, enum.Enum):
    UTC = "utc"
    LOCAL = "local"
    IANA = "iana"


@dataclass(frozen=True)
class ResolvedEnvelopeTimezone:
    mode: TimezoneMode
    time_zone: Optional[str] = None

    def __post_init__(self) -> None:
        if self.mode is TimezoneMode.IANA and not self.time_zone:
            raise ValueError("IANA timezone mode requires a zone name")
        if self.mode is not TimezoneMode.IANA and self.time_zone is not None:
            raise ValueError(f"{self.mode.value} timezone mode takes no zone name")

    @classmethod
    def utc(cls) -> "ResolvedEnvelopeTimezone":
        return cls(TimezoneMode.UTC)

    @classmethod
    def local(cls) -> "ResolvedEnvelopeTimezone":
        return cls(TimezoneMode.LOCAL)

    @classmethod
    def iana(cls, time_zone: str) -> "ResolvedEnvelopeTimezone":
        return cls(TimezoneMode.IANA, time_zone)


def sanitize_envelope_header_part(value: str) -> str:
    """Make *value* safe to place inside the bracketed header.

    Line breaks become spaces, brackets become parentheses, whitespace
    runs collapse to one space and the result is trimmed.
    """
    value = _LINE_BREAK_RE.sub(" ", value)
    value = value.replace("[", "(").replace("]", ")")
    return _WHITESPACE_RE.sub(" ", value).strip()


def normalize_envelope_options(options: Optional[EnvelopeFormatOptions] = None) -> NormalizedEnvelopeOptions:
    if options is None:
        options = EnvelopeFormatOptions()
    return NormalizedEnvelopeOptions(
        timezone=(options.timezone or "").strip() or "local",
        include_timestamp=options.include_timestamp is not False,
        include_elapsed=options.include_elapsed is not False,
        user_timezone=options.user_timezone,
    )


def resolve_envelope_timezone(options: NormalizedEnvelopeOptions) -> ResolvedEnvelopeTimezone:
    """Map the configured timezone string onto a timezone mode.

    Unknown explicit zone names fall back to UTC.
    """
    trimmed = (options.timezone or "").strip()
    if not trimmed:
        return ResolvedEnvelopeTimezone.local()
    lowered = trimmed.lower()
    if lowered in ("utc", "gmt"):
        return ResolvedEnvelopeTimezone.utc()
    if lowered in ("local", "host"):
        return ResolvedEnvelopeTimezone.local()
    if lowered == "user":
        return ResolvedEnvelopeTimezone.iana(resolve_user_timezone(options.user_timezone))
    explicit = resolve_timezone(trimmed)
    if explicit:
        return ResolvedEnvelopeTimezone.iana(explicit)
    logger.debug("Envelope timezone %r not resolvable, using UTC", trimmed)
    return ResolvedEnvelopeTimezone.utc()


def _in_zone(dt: datetime, zone: ResolvedEnvelopeTimezone) -> datetime:
    if zone.mode is TimezoneMode.UTC:
        return dt.astimezone(timezone.utc)
    if zone.mode is TimezoneMode.LOCAL:
        return dt.astimezone()
    return dt.astimezone(ZoneInfo(zone.time_zone))


def _weekday(dt: datetime, zone: ResolvedEnvelopeTimezone) -> Optional[str]:
    try:
        return weekday_abbrev(_in_zone(dt, zone))
    except (OverflowError, OSError, ValueError, KeyError) as exc:
        logger.debug("Weekday unavailable for %s in %s: %s", dt, zone, exc)
        return None


def format_envelope_timestamp(
    ts: Optional[Timestamp],
    options: Optional[NormalizedEnvelopeOptions] = None,
) -> Optional[str]:
    """Render the timestamp segment, e.g. ``"Mon 2024-01-15T10:30Z"``.

    Returns None when timestamps are disabled, *ts* is missing, or it
    is not a valid point in time.
    """
    if not ts:
        return None
    resolved = options or normalize_envelope_options()
    if not resolved.include_timestamp:
        return None
    dt = to_datetime(ts)
    if dt is None:
        logger.debug("Dropping invalid envelope timestamp %r", ts)
        return None
    zone = resolve_envelope_timezone(resolved)
    # Models are unreliable at deriving the day of week from a date
    weekday = _weekday(dt, zone)

    if zone.mode is TimezoneMode.UTC:
        formatted = format_utc_timestamp(dt)
    elif zone.mode is TimezoneMode.LOCAL:
        formatted = format_zoned_timestamp(dt)
    else:
        formatted = format_zoned_timestamp(dt, time_zone=zone.time_zone)

    if not formatted:
        return None
    return f"{weekday} {formatted}" if weekday else formatted


def _elapsed(current: Optional[Timestamp], previous: Optional[Timestamp]) -> Optional[str]:
    current_ms = to_epoch_ms(current)
    previous_ms = to_epoch_ms(previous)
    if current_ms is None or previous_ms is None:
        return None
    elapsed_ms = current_ms - previous_ms
    if not math.isfinite(elapsed_ms) or elapsed_ms < 0:
        logger.debug("Dropping elapsed segment, delta=%s ms", elapsed_ms)
        return None
    return format_time_ago(elapsed_ms, suffix=False)


def format_agent_envelope(
    *,
    channel: str,
    body: str,
    from_: Optional[str] = None,
    timestamp: Optional[Timestamp] = None,
    host: Optional[str] = None,
    ip: Optional[str] = None,
    previous_timestamp: Optional[Timestamp] = None,
    envelope: Optional[EnvelopeFormatOptions] = None,
) -> str:
    """Prefix *body* with the bracketed envelope header.

    With ``envelope.include_system_envelope=False`` the body is returned
    unchanged.
    """
    channel_label = sanitize_envelope_header_part((channel or "").strip() or DEFAULT_CHANNEL_LABEL)
    parts: list[str] = [channel_label]
    resolved = normalize_envelope_options(envelope)
    include_system_envelope = envelope is None or envelope.include_system_envelope is not False

    elapsed: Optional[str] = None
    if resolved.include_elapsed and timestamp and previous_timestamp:
        elapsed = _elapsed(timestamp, previous_timestamp)

    if from_ and from_.strip():
        sender = sanitize_envelope_header_part(from_)
        parts.append(f"{sender} +{elapsed}" if elapsed else sender)
    elif elapsed:
        parts.append(f"+{elapsed}")
    if host and host.strip():
        parts.append(sanitize_envelope_header_part(host))
    if ip and ip.strip():
        parts.append(sanitize_envelope_header_part(ip))
    ts = format_envelope_timestamp(timestamp, resolved)
    if ts:
        parts.append(ts)

    if not include_system_envelope:
        return body

    header = f"[{' '.join(parts)}]"
    return f"{header} {body}"


def format_inbound_envelope(
    *,
    channel: str,
    from_: str,
    body: str,
    timestamp: Optional[Timestamp] = None,
    chat_type: Optional[str] = None,
    sender_label: Optional[str] = None,
    sender: Optional[SenderLabelParams] = None,
    previous_timestamp: Optional[Timestamp] = None,
    envelope: Optional[EnvelopeFormatOptions] = None,
) -> str:
    """Format an inbound message.

    In group and channel conversations the body is prefixed with the
    sender label (``"Alice: hi"``); in direct chats the envelope's from
    field already names the sender.
    """
    normalized = normalize_chat_type(chat_type)
    is_direct = not normalized or normalized == CHAT_TYPE_DIRECT
    sender_raw = (sender_label or "").strip() or resolve_sender_label(sender or SenderLabelParams())
    resolved_sender = sanitize_envelope_header_part(sender_raw) if sender_raw else ""
    if not is_direct and resolved_sender:
        body = f"{resolved_sender}: {body}"
    return format_agent_envelope(
        channel=channel,
        from_=from_,
        timestamp=timestamp,
        previous_timestamp=previous_timestamp,
        envelope=envelope,
        body=body,
    )


def format_inbound_from_label(
    *,
    is_group: bool,
    direct_label: str,
    group_label: Optional[str] = None,
    group_id: Optional[str] = None,
    direct_id: Optional[str] = None,
    group_fallback: Optional[str] = None,
) -> str:
    # Group labels always carry the id; DMs only when it differs from the label
    if is_group:
        label = (group_label or "").strip() or group_fallback or DEFAULT_GROUP_LABEL
        gid = (group_id or "").strip()
        return f"{label} id:{gid}" if gid else label

    label = (direct_label or "").strip()
    did = (direct_id or "").strip()
    if not did or did == label:
        return label
    return f"{label} id:{did}"


def format_thread_starter_envelope(
    *,
    channel: str,
    body: str,
    author: Optional[str] = None,
    timestamp: Optional[Timestamp] = None,
    envelope: Optional[EnvelopeFormatOptions] = None,
) -> str:
    """Format the first message of a thread; no elapsed time is shown."""
    return format_agent_envelope(
        channel=channel,
        from_=author,
        timestamp=timestamp,
        envelope=envelope,
        body=body,
    )
