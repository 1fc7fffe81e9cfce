from __future__ import annotations

import json
from dataclasses import asdict, replace
from datetime import datetime
from typing import Optional

import typer
from dotenv import load_dotenv

from clawenvelope.core.config import ClawConfig, ConfigError, Settings, load_config
from clawenvelope.core.envelope import EnvelopeFormatOptions, format_agent_envelope, format_inbound_envelope
from clawenvelope.core.inbound_context import resolve_envelope_format_options, resolve_inbound_context_options
from clawenvelope.core.timefmt import Timestamp

app = typer.Typer(add_completion=False, help="Format chat messages into agent envelopes.")


def _load_env() -> Settings:
    load_dotenv()
    return Settings.from_env()


def _setup_logging(settings: Settings) -> None:
    """Configure centralized logging (stderr, plus a log file when configured)."""
    from clawenvelope.core.logging_config import setup_logging

    setup_logging(log_dir=settings.log_dir, log_level=settings.log_level)


def _parse_timestamp(value: Optional[str]) -> Optional[Timestamp]:
    """Accept epoch milliseconds or an ISO-8601 string."""
    if value is None or not value.strip():
        return None
    text = value.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise typer.BadParameter(f"not epoch millis or ISO-8601: {value!r}") from None


def _load_snapshot(config_path: Optional[str]) -> Optional[ClawConfig]:
    if not config_path:
        return None
    try:
        return load_config(config_path)
    except ConfigError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def _envelope_options(
    settings: Settings,
    config_path: Optional[str],
    channel_id: Optional[str],
    timezone: Optional[str],
    user_timezone: Optional[str],
    include_timestamp: Optional[bool],
    include_elapsed: Optional[bool],
    include_envelope: Optional[bool],
) -> EnvelopeFormatOptions:
    snapshot = _load_snapshot(config_path or settings.config_path)
    options = resolve_envelope_format_options(snapshot, channel_id or settings.channel_id)
    # Explicit flags override the config snapshot
    overrides = {
        "timezone": timezone,
        "user_timezone": user_timezone,
        "include_timestamp": include_timestamp,
        "include_elapsed": include_elapsed,
        "include_system_envelope": include_envelope,
    }
    return replace(options, **{k: v for k, v in overrides.items() if v is not None})


@app.command("format")
def format_cmd(
    body: str = typer.Option(..., "--body", help="Message body"),
    channel: str = typer.Option("Channel", "--channel", help="Channel label shown in the header"),
    from_: Optional[str] = typer.Option(None, "--from", help="Sender label"),
    timestamp: Optional[str] = typer.Option(None, help="Message time (epoch ms or ISO-8601)"),
    previous_timestamp: Optional[str] = typer.Option(None, help="Previous message time (epoch ms or ISO-8601)"),
    host: Optional[str] = typer.Option(None, help="Host name"),
    ip: Optional[str] = typer.Option(None, help="Sender IP address"),
    timezone: Optional[str] = typer.Option(None, help='"local", "utc", "user" or an IANA zone'),
    user_timezone: Optional[str] = typer.Option(None, help='Zone used when --timezone=user'),
    include_timestamp: Optional[bool] = typer.Option(None, "--with-timestamp/--no-timestamp"),
    include_elapsed: Optional[bool] = typer.Option(None, "--with-elapsed/--no-elapsed"),
    include_envelope: Optional[bool] = typer.Option(None, "--with-envelope/--no-envelope"),
    config: Optional[str] = typer.Option(None, "--config", help="JSON config snapshot"),
    channel_id: Optional[str] = typer.Option(None, "--channel-id", help="Channel id for per-channel overrides"),
) -> None:
    """Format one message as an agent envelope."""
    settings = _load_env()
    _setup_logging(settings)
    options = _envelope_options(
        settings, config, channel_id, timezone, user_timezone,
        include_timestamp, include_elapsed, include_envelope,
    )
    typer.echo(format_agent_envelope(
        channel=channel,
        from_=from_,
        timestamp=_parse_timestamp(timestamp),
        previous_timestamp=_parse_timestamp(previous_timestamp),
        host=host,
        ip=ip,
        body=body,
        envelope=options,
    ))


@app.command()
def inbound(
    body: str = typer.Option(..., "--body", help="Message body"),
    channel: str = typer.Option("Channel", "--channel", help="Channel label shown in the header"),
    from_: str = typer.Option("", "--from", help="Conversation label"),
    chat_type: Optional[str] = typer.Option(None, help='"direct", "group" or "channel"'),
    sender_label: Optional[str] = typer.Option(None, help="Sender shown before the body in group chats"),
    timestamp: Optional[str] = typer.Option(None, help="Message time (epoch ms or ISO-8601)"),
    previous_timestamp: Optional[str] = typer.Option(None, help="Previous message time (epoch ms or ISO-8601)"),
    timezone: Optional[str] = typer.Option(None, help='"local", "utc", "user" or an IANA zone'),
    user_timezone: Optional[str] = typer.Option(None, help='Zone used when --timezone=user'),
    include_timestamp: Optional[bool] = typer.Option(None, "--with-timestamp/--no-timestamp"),
    include_elapsed: Optional[bool] = typer.Option(None, "--with-elapsed/--no-elapsed"),
    include_envelope: Optional[bool] = typer.Option(None, "--with-envelope/--no-envelope"),
    config: Optional[str] = typer.Option(None, "--config", help="JSON config snapshot"),
    channel_id: Optional[str] = typer.Option(None, "--channel-id", help="Channel id for per-channel overrides"),
) -> None:
    """Format an inbound message, prefixing the sender in group chats."""
    settings = _load_env()
    _setup_logging(settings)
    options = _envelope_options(
        settings, config, channel_id, timezone, user_timezone,
        include_timestamp, include_elapsed, include_envelope,
    )
    typer.echo(format_inbound_envelope(
        channel=channel,
        from_=from_,
        body=body,
        chat_type=chat_type,
        sender_label=sender_label,
        timestamp=_parse_timestamp(timestamp),
        previous_timestamp=_parse_timestamp(previous_timestamp),
        envelope=options,
    ))


@app.command()
def context(
    config: Optional[str] = typer.Option(None, "--config", help="JSON config snapshot"),
    channel_id: Optional[str] = typer.Option(None, "--channel-id", help="Channel id for per-channel overrides"),
) -> None:
    """Print the resolved inbound-context flags as JSON."""
    settings = _load_env()
    _setup_logging(settings)
    snapshot = _load_snapshot(config or settings.config_path)
    options = resolve_inbound_context_options(snapshot, channel_id or settings.channel_id)
    typer.echo(json.dumps(asdict(options), indent=2))


@app.command()
def version() -> None:
    from clawenvelope import __version__

    typer.echo(__version__)


if __name__ == "__main__":
    app()
