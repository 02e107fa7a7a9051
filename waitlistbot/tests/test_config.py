from __future__ import annotations

import pytest

from waitlistbot.config import load_settings

_OPTIONAL = (
    "TELEGRAM_ADMIN_CHAT_ID",
    "SWEEP_INTERVAL_SECONDS",
    "OFFER_TIMEOUT_SECONDS",
    "MAX_WAITLIST_SIZE",
    "RATE_LIMIT_COOLDOWN_SECONDS",
    "REOFFER_AFTER_TIMEOUT",
    "SWEEP_MAX_WORKERS",
    "HTTP_CONNECT_TIMEOUT_SECONDS",
    "HTTP_READ_TIMEOUT_SECONDS",
    "PROBE_RETRY_ATTEMPTS",
    "HOLD_EVENTS",
    "STATE_FILE",
    "CREDENTIALS_FILE",
    "EVENT_TITLES_FILE",
)


@pytest.fixture(autouse=True)
def _required_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BOOKING_API_BASE_URL", "https://events.example.org/back")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")


def test_load_settings_defaults() -> None:
    settings = load_settings(dotenv_path=None)

    assert settings.booking_api_base_url == "https://events.example.org/back"
    assert settings.telegram_admin_chat_id is None
    assert settings.sweep_interval_seconds == 5
    assert settings.offer_timeout_seconds == 60
    assert settings.max_waitlist_size == 10
    assert settings.rate_limit_cooldown_seconds == 45
    assert settings.reoffer_after_timeout is True
    assert settings.sweep_max_workers == 4
    assert settings.http_connect_timeout_seconds == 10
    assert settings.http_read_timeout_seconds == 20
    assert settings.hold_events == ()
    assert settings.state_file == "waitlist.json"
    assert settings.credentials_file is None
    assert settings.event_titles_file is None


def test_load_settings_reads_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TELEGRAM_ADMIN_CHAT_ID", "-1003")
    monkeypatch.setenv("OFFER_TIMEOUT_SECONDS", "90")
    monkeypatch.setenv("REOFFER_AFTER_TIMEOUT", "false")
    monkeypatch.setenv("HOLD_EVENTS", "E1, ,https://events.example.org/events/E2?city=1")
    monkeypatch.setenv("CREDENTIALS_FILE", "creds.json")
    monkeypatch.setenv("EVENT_TITLES_FILE", "titles.json")

    settings = load_settings(dotenv_path=None)

    assert settings.telegram_admin_chat_id == "-1003"
    assert settings.offer_timeout_seconds == 90
    assert settings.reoffer_after_timeout is False
    assert settings.hold_events == ("E1", "https://events.example.org/events/E2?city=1")
    assert settings.credentials_file == "creds.json"
    assert settings.event_titles_file == "titles.json"


def test_load_settings_requires_booking_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BOOKING_API_BASE_URL")

    with pytest.raises(RuntimeError, match=r"Missing required environment variable: BOOKING_API_BASE_URL"):
        load_settings(dotenv_path=None)


def test_load_settings_rejects_non_integer_admin_chat_id(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TELEGRAM_ADMIN_CHAT_ID", "abc")

    with pytest.raises(RuntimeError, match=r"Invalid TELEGRAM_ADMIN_CHAT_ID"):
        load_settings(dotenv_path=None)


def test_load_settings_rejects_zero_admin_chat_id(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TELEGRAM_ADMIN_CHAT_ID", "0")

    with pytest.raises(RuntimeError, match=r"not a valid chat id"):
        load_settings(dotenv_path=None)


@pytest.mark.parametrize(
    "name, value, message",
    [
        ("SWEEP_INTERVAL_SECONDS", "0", r"SWEEP_INTERVAL_SECONDS must be > 0"),
        ("OFFER_TIMEOUT_SECONDS", "soon", r"OFFER_TIMEOUT_SECONDS must be a number"),
        ("MAX_WAITLIST_SIZE", "0", r"MAX_WAITLIST_SIZE must be >= 1"),
        ("RATE_LIMIT_COOLDOWN_SECONDS", "-1", r"RATE_LIMIT_COOLDOWN_SECONDS must be >= 0"),
        ("SWEEP_MAX_WORKERS", "two", r"SWEEP_MAX_WORKERS must be an integer"),
        ("PROBE_RETRY_ATTEMPTS", "0", r"PROBE_RETRY_ATTEMPTS must be >= 1"),
    ],
)
def test_load_settings_validates_numbers(monkeypatch: pytest.MonkeyPatch, name: str, value: str, message: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(RuntimeError, match=message):
        load_settings(dotenv_path=None)


def test_load_settings_does_not_override_existing_env_with_dotenv(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    # load_dotenv(override=False) must not overwrite already-set env vars.
    dotenv = tmp_path / ".env"
    dotenv.write_text("TELEGRAM_BOT_TOKEN=from-file\nMAX_WAITLIST_SIZE=3\n")

    settings = load_settings(dotenv_path=str(dotenv))

    assert settings.telegram_bot_token == "t"
    assert settings.max_waitlist_size == 3
