from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _parse_chat_id(name: str, raw: str) -> str:
    value = raw.strip()
    # Telegram allows numeric IDs; groups/supergroups can be negative.
    try:
        int(value)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {value!r}. Expected integer chat id.") from e
    if value == "0":
        raise RuntimeError(f"Invalid {name} value: '0' is not a valid chat id")
    return value


def _parse_csv(raw: str) -> tuple[str, ...]:
    parts = [p.strip() for p in raw.split(",")]
    return tuple(p for p in parts if p)


@dataclass(frozen=True)
class Settings:
    booking_api_base_url: str
    telegram_bot_token: str
    telegram_admin_chat_id: str | None = None

    sweep_interval_seconds: float = 5.0
    offer_timeout_seconds: float = 60.0
    max_waitlist_size: int = 10

    # After a 429 the event is neither probed nor booked for this long.
    rate_limit_cooldown_seconds: float = 45.0

    # Offer the same head-of-queue user again after their offer expired.
    reoffer_after_timeout: bool = True

    sweep_max_workers: int = 4

    http_connect_timeout_seconds: float = 10.0
    http_read_timeout_seconds: float = 20.0
    probe_retry_attempts: int = 2

    # Event ids or event URLs whose sweeps are suspended at startup
    hold_events: tuple[str, ...] = ()

    state_file: str = "waitlist.json"
    credentials_file: str | None = None
    # JSON {event_id: title} shown in notifications instead of the raw id
    event_titles_file: str | None = None


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _float(name: str, default: str, *, minimum: float, strict: bool = False) -> float:
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from e
    if value < minimum or (strict and value == minimum):
        op = ">" if strict else ">="
        raise RuntimeError(f"{name} must be {op} {minimum:g}")
    return value


def _int(name: str, default: str, *, minimum: int) -> int:
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}")
    return value


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() not in {"0", "false", "no"}


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    admin_raw = os.getenv("TELEGRAM_ADMIN_CHAT_ID", "").strip()
    admin_chat_id = _parse_chat_id("TELEGRAM_ADMIN_CHAT_ID", admin_raw) if admin_raw else None

    return Settings(
        booking_api_base_url=_require("BOOKING_API_BASE_URL"),
        telegram_bot_token=_require("TELEGRAM_BOT_TOKEN"),
        telegram_admin_chat_id=admin_chat_id,
        sweep_interval_seconds=_float("SWEEP_INTERVAL_SECONDS", "5", minimum=0, strict=True),
        offer_timeout_seconds=_float("OFFER_TIMEOUT_SECONDS", "60", minimum=0, strict=True),
        max_waitlist_size=_int("MAX_WAITLIST_SIZE", "10", minimum=1),
        rate_limit_cooldown_seconds=_float("RATE_LIMIT_COOLDOWN_SECONDS", "45", minimum=0),
        reoffer_after_timeout=_flag("REOFFER_AFTER_TIMEOUT", "1"),
        sweep_max_workers=_int("SWEEP_MAX_WORKERS", "4", minimum=1),
        http_connect_timeout_seconds=_float("HTTP_CONNECT_TIMEOUT_SECONDS", "10", minimum=0, strict=True),
        http_read_timeout_seconds=_float("HTTP_READ_TIMEOUT_SECONDS", "20", minimum=0, strict=True),
        probe_retry_attempts=_int("PROBE_RETRY_ATTEMPTS", "2", minimum=1),
        hold_events=_parse_csv(os.getenv("HOLD_EVENTS", "")),
        state_file=os.getenv("STATE_FILE", "waitlist.json"),
        credentials_file=os.getenv("CREDENTIALS_FILE") or None,
        event_titles_file=os.getenv("EVENT_TITLES_FILE") or None,
    )
