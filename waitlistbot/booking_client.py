from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from waitlistbot.domain import BookingResult, BookingStatus, GatewayError, RateLimitedError

logger = logging.getLogger(__name__)

_NO_SLOT_STATUSES = {404, 409, 410}


def extract_first_slot_id(payload: Any) -> str | None:
    """First slot id from a timeslots response.

    The service answers either with a bare array of slots or with an object that
    wraps the array in ``result``, ``timeSlots`` or ``timeslots``.
    """

    slots: Any = None
    if isinstance(payload, list):
        slots = payload
    elif isinstance(payload, dict):
        for key in ("result", "timeSlots", "timeslots"):
            if isinstance(payload.get(key), list):
                slots = payload[key]
                break

    if not slots:
        return None

    first = slots[0]
    if not isinstance(first, dict):
        return None
    slot_id = first.get("id")
    if slot_id is None or slot_id == "" or slot_id == 0:
        return None
    return str(slot_id)


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    logger.info(
        "Probe attempt %s failed (%s), retrying in %.1fs",
        retry_state.attempt_number,
        _short_exc(retry_state),
        sleep_seconds or 0.0,
    )


class BookingClient:
    """httpx client for the external booking service.

    Only the capability the waitlist needs: find a free slot and book it.
    """

    def __init__(
        self,
        base_url: str,
        *,
        connect_timeout_seconds: float = 10.0,
        read_timeout_seconds: float = 20.0,
        probe_retry_attempts: int = 2,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.probe_retry_attempts = probe_retry_attempts
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(read_timeout_seconds, connect=connect_timeout_seconds),
            headers={"Accept": "application/json"},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> BookingClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _get_timeslots(self, event_id: str, credential: str) -> httpx.Response:
        return self._client.get(f"/events/{event_id}/timeslots", headers={"Cookie": credential})

    def probe_slot(self, event_id: str, credential: str) -> str | None:
        fetch = retry(
            stop=stop_after_attempt(self.probe_retry_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=2),
            retry=retry_if_exception_type(httpx.TransportError),
            before_sleep=_log_before_sleep,
            reraise=True,
        )(self._get_timeslots)

        try:
            r = fetch(event_id, credential)
        except httpx.TransportError as e:
            raise GatewayError(f"Timeslots request failed for event {event_id}: {type(e).__name__}") from e

        logger.debug("Timeslots response status for event %s: %s", event_id, r.status_code)

        if r.status_code == 429:
            raise RateLimitedError(f"Timeslots API rate limited (429) for event {event_id}")
        if r.status_code in _NO_SLOT_STATUSES:
            return None
        if r.is_error:
            raise GatewayError(f"Timeslots API returned HTTP {r.status_code} for event {event_id}")

        try:
            payload = r.json()
        except ValueError as e:
            raise GatewayError(f"Timeslots API returned non-JSON body for event {event_id}") from e

        return extract_first_slot_id(payload)

    def book(self, credential: str, slot_id: str) -> BookingResult:
        # Not retried: a lost response may still have created the booking.
        payload = {"timeSlot": _slot_value(slot_id), "extraAdults": 0, "extraChildren": 0}
        try:
            r = self._client.post("/booking", json=payload, headers={"Cookie": credential})
        except httpx.TransportError as e:
            logger.warning("Booking request for slot %s failed (%s: %s)", slot_id, type(e).__name__, e)
            return BookingResult(BookingStatus.TRANSPORT_ERROR, reason=type(e).__name__)

        logger.info("Booking response status for slot %s: %s", slot_id, r.status_code)

        if r.status_code == 429:
            return BookingResult(BookingStatus.RATE_LIMITED, reason="HTTP 429")

        try:
            data = r.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if r.status_code in _NO_SLOT_STATUSES:
            return BookingResult(BookingStatus.NO_SLOT, details=data, reason=data.get("message"))

        if r.is_success and data.get("startDatetime"):
            return BookingResult(BookingStatus.SUCCESS, details=data)

        reason = data.get("message") or f"HTTP {r.status_code}"
        return BookingResult(BookingStatus.REJECTED, details=data, reason=str(reason))


def _slot_value(slot_id: str) -> int | str:
    try:
        return int(slot_id)
    except ValueError:
        return slot_id
