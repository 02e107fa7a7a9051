from __future__ import annotations

import json

import pytest

from waitlistbot.credentials import CredentialStore, load_credentials, load_event_titles
from waitlistbot.holds import EventHolds, extract_event_id


@pytest.mark.parametrize(
    "link, expected",
    [
        ("b27b9fb8-895a", "b27b9fb8-895a"),
        ("  E1  ", "E1"),
        ("https://events.example.org/?city=1&eventId=E1", "E1"),
        ("https://events.example.org/?eventId=E1#details", "E1"),
        ("https://events.example.org/events/E2?city=1", "E2"),
        ("https://events.example.org/events/E3/", "E3"),
        ("https://events.example.org/about", None),
        ("", None),
    ],
)
def test_extract_event_id(link: str, expected: str | None) -> None:
    assert extract_event_id(link) == expected


def test_event_holds_lifecycle() -> None:
    holds = EventHolds(["E1", "https://events.example.org/events/E2", "https://events.example.org/about"])

    assert holds.held() == {"E1", "E2"}
    assert holds.is_held("E1")

    holds.hold("E3")
    assert holds.release("E1") is True
    assert holds.release("E1") is False
    assert holds.held() == {"E2", "E3"}

    assert holds.release_all() == 2
    assert not holds.is_held("E2")


def test_credential_store_ignores_empty_values() -> None:
    store = CredentialStore()
    store.set("A", "  session=abc  ")
    store.set("B", "   ")

    assert store.get("A") == "session=abc"
    assert store.get("B") is None
    assert "A" in store

    store.remove("A")
    assert store.get("A") is None


def test_load_credentials_from_file(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    path.write_text(json.dumps({"1001": "session=abc", "1002": ""}), encoding="utf-8")

    store = load_credentials(str(path))

    assert store.get("1001") == "session=abc"
    assert store.get("1002") is None


def test_load_credentials_missing_file_is_empty(tmp_path) -> None:
    assert load_credentials(str(tmp_path / "nope.json")).get("1") is None
    assert load_credentials(None).get("1") is None


def test_load_credentials_rejects_non_object(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(RuntimeError, match="must contain a JSON object"):
        load_credentials(str(path))


def test_load_event_titles_from_file(tmp_path) -> None:
    path = tmp_path / "titles.json"
    path.write_text(json.dumps({"E1": " Йога в парке ", "E2": ""}, ensure_ascii=False), encoding="utf-8")

    titles = load_event_titles(str(path))

    assert titles == {"E1": "Йога в парке"}
    assert load_event_titles(None) == {}
    assert load_event_titles(str(tmp_path / "nope.json")) == {}
