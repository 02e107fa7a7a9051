from __future__ import annotations

import functools
import logging
import time
from typing import Callable, Iterable, Protocol

from waitlistbot.credentials import CredentialStore
from waitlistbot.domain import (
    BookingResult,
    BookingStatus,
    GatewayError,
    Offer,
    OfferOutcome,
    PositionChange,
    RateLimitedError,
    ResolveResult,
    WaitlistEntry,
)
from waitlistbot.holds import EventHolds
from waitlistbot.queue import QueueEngine

logger = logging.getLogger(__name__)

OFFER_TIMEOUT_SECONDS = 60.0
RATE_LIMIT_COOLDOWN_SECONDS = 45.0


class BookingGateway(Protocol):
    def probe_slot(self, event_id: str, credential: str) -> str | None: ...

    def book(self, credential: str, slot_id: str) -> BookingResult: ...


class NotificationRouter(Protocol):
    def notify_offer(self, chat_id: str, user_id: str, event_id: str, event_title: str) -> None: ...

    def notify_outcome(self, chat_id: str, event_id: str, outcome: OfferOutcome) -> None: ...

    def notify_position_change(self, chat_id: str, old_position: int, new_position: int) -> None: ...


Delivery = Callable[[], None]


def deliver(deliveries: Iterable[Delivery]) -> None:
    """Run notification callables, logging failures. State is never rolled back."""
    for send in deliveries:
        try:
            send()
        except Exception as e:
            # Best-effort: one failed chat must not stop the rest.
            logger.warning("Failed to deliver notification (%s: %s)", type(e).__name__, e)


def position_change_deliveries(router: NotificationRouter, changes: Iterable[PositionChange]) -> list[Delivery]:
    return [
        functools.partial(router.notify_position_change, c.chat_id, c.old_position, c.new_position)
        for c in changes
    ]


class OfferCoordinator:
    """Per-event negotiation: Idle -> Offered(candidate, deadline) -> Idle.

    Shares the queue's KeyedLocks, so a tick, a confirm/reject and a join/leave on
    the same event never interleave. Notifications are collected while the lock
    is held and sent after it is released.
    """

    def __init__(
        self,
        queue: QueueEngine,
        gateway: BookingGateway,
        router: NotificationRouter,
        credentials: CredentialStore,
        *,
        holds: EventHolds | None = None,
        titles: Callable[[str], str | None] | None = None,
        offer_timeout_seconds: float = OFFER_TIMEOUT_SECONDS,
        rate_limit_cooldown_seconds: float = RATE_LIMIT_COOLDOWN_SECONDS,
        reoffer_after_timeout: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.queue = queue
        self.locks = queue.locks
        self.gateway = gateway
        self.router = router
        self.credentials = credentials
        self.holds = holds
        self.offer_timeout_seconds = offer_timeout_seconds
        self.rate_limit_cooldown_seconds = rate_limit_cooldown_seconds
        self.reoffer_after_timeout = reoffer_after_timeout
        self._titles = titles
        self._clock = clock

        self._offers: dict[str, Offer] = {}
        self._cooldown_until: dict[str, float] = {}
        # user ids whose offer expired, skipped when reoffer_after_timeout is off
        self._passed_over: dict[str, set[str]] = {}

        queue.add_leave_listener(self.cancel_offer_for)
        queue.add_leave_listener(self._forget_if_idle)

    # --- introspection ---

    def offer_for(self, event_id: str) -> Offer | None:
        return self._offers.get(event_id)

    def live_event_ids(self) -> list[str]:
        return list(self._offers)

    def in_cooldown(self, event_id: str) -> bool:
        until = self._cooldown_until.get(event_id)
        return until is not None and self._clock() < until

    # --- sweep ---

    def tick(self, event_id: str) -> Offer | None:
        """One sweep for one event. Returns the offer issued by this tick, if any."""
        deliveries: list[Delivery] = []
        with self.locks.hold(event_id):
            offer = self._tick_locked(event_id, deliveries)
        deliver(deliveries)
        return offer

    def _tick_locked(self, event_id: str, deliveries: list[Delivery]) -> Offer | None:
        now = self._clock()

        live = self._offers.get(event_id)
        if live is not None:
            if live.expired(now):
                self._expire_locked(live, deliveries)
            else:
                logger.debug("Event %s already has a pending offer, skipping", event_id)
            return None

        if self.holds is not None and self.holds.is_held(event_id):
            logger.debug("Event %s is held, skipping availability check", event_id)
            return None

        if self._cooldown_active(event_id, now):
            logger.debug("Event %s is in rate-limit cool-down, skipping", event_id)
            return None

        candidate = self._select_candidate(event_id)
        if candidate is None:
            return None

        credential = self.credentials.get(candidate.user_id)
        if not credential:
            logger.debug("User %s has no credential, skipping event %s", candidate.user_id, event_id)
            return None

        try:
            slot_id = self.gateway.probe_slot(event_id, credential)
        except RateLimitedError as e:
            self._start_cooldown(event_id, e)
            return None
        except GatewayError as e:
            logger.warning("Availability check for event %s failed (%s)", event_id, e)
            return None

        if slot_id is None:
            return None

        issued_at = self._clock()
        offer = Offer(
            event_id=event_id,
            user_id=candidate.user_id,
            chat_id=candidate.chat_id,
            issued_at=issued_at,
            deadline=issued_at + self.offer_timeout_seconds,
        )
        self._offers[event_id] = offer
        logger.info(
            "Offered slot %s for event %s to user %s (position %d)",
            slot_id,
            event_id,
            candidate.user_id,
            candidate.position,
        )
        deliveries.append(
            functools.partial(
                self.router.notify_offer, candidate.chat_id, candidate.user_id, event_id, self._title(event_id)
            )
        )
        return offer

    def _select_candidate(self, event_id: str) -> WaitlistEntry | None:
        entries = self.queue.entries(event_id)
        if not entries:
            return None
        if self.reoffer_after_timeout:
            return entries[0]

        queued = {e.user_id for e in entries}
        passed = self._passed_over.get(event_id, set()) & queued
        for entry in entries:
            if entry.user_id not in passed:
                self._passed_over[event_id] = passed
                return entry

        # Everyone had a chance this cycle: start over from the head.
        self._passed_over.pop(event_id, None)
        return entries[0]

    def _expire_locked(self, offer: Offer, deliveries: list[Delivery]) -> None:
        self._offers.pop(offer.event_id, None)
        if not self.reoffer_after_timeout:
            self._passed_over.setdefault(offer.event_id, set()).add(offer.user_id)
        logger.info("Offer for event %s to user %s expired, clearing", offer.event_id, offer.user_id)
        deliveries.append(
            functools.partial(self.router.notify_outcome, offer.chat_id, offer.event_id, OfferOutcome.EXPIRED)
        )

    # --- resolution ---

    def confirm(self, event_id: str, user_id: str) -> ResolveResult:
        deliveries: list[Delivery] = []
        with self.locks.hold(event_id):
            result = self._confirm_locked(event_id, user_id, deliveries)
        deliver(deliveries)
        return result

    def _confirm_locked(self, event_id: str, user_id: str, deliveries: list[Delivery]) -> ResolveResult:
        offer = self._take_offer(event_id, user_id, "confirm", deliveries)
        if offer is None:
            return ResolveResult(OfferOutcome.STALE_OFFER)

        reason = None
        credential = self.credentials.get(user_id)
        if not credential:
            logger.warning("User %s has no credential for booking event %s", user_id, event_id)
            outcome = OfferOutcome.NO_CREDENTIAL
        elif self._cooldown_active(event_id, self._clock()):
            outcome = OfferOutcome.RATE_LIMITED
        else:
            outcome, reason = self._book_locked(event_id, user_id, credential, deliveries)

        deliveries.append(functools.partial(self.router.notify_outcome, offer.chat_id, event_id, outcome))
        return ResolveResult(outcome, offer, reason)

    def _book_locked(
        self, event_id: str, user_id: str, credential: str, deliveries: list[Delivery]
    ) -> tuple[OfferOutcome, str | None]:
        try:
            slot_id = self.gateway.probe_slot(event_id, credential)
        except RateLimitedError as e:
            self._start_cooldown(event_id, e)
            return OfferOutcome.RATE_LIMITED, str(e)
        except GatewayError as e:
            logger.warning("Slot lookup at confirmation failed for event %s (%s)", event_id, e)
            return OfferOutcome.BOOKING_FAILED, str(e)

        if slot_id is None:
            logger.warning("No available slots for event %s at confirmation time", event_id)
            return OfferOutcome.NO_SLOT, None

        booking = self.gateway.book(credential, slot_id)

        if booking.status is BookingStatus.SUCCESS:
            leave = self.queue.leave(event_id, user_id)
            deliveries.extend(position_change_deliveries(self.router, leave.position_changes))
            logger.info("User %s successfully booked event %s", user_id, event_id)
            return OfferOutcome.BOOKED, None

        if booking.status is BookingStatus.NO_SLOT:
            logger.warning("Slot %s for event %s disappeared before booking", slot_id, event_id)
            return OfferOutcome.NO_SLOT, booking.reason

        if booking.status is BookingStatus.RATE_LIMITED:
            self._start_cooldown(event_id, booking.reason)
            return OfferOutcome.RATE_LIMITED, booking.reason

        logger.warning(
            "Booking failed for user %s on event %s (%s: %s)",
            user_id,
            event_id,
            booking.status.value,
            booking.reason,
        )
        return OfferOutcome.BOOKING_FAILED, booking.reason

    def reject(self, event_id: str, user_id: str) -> ResolveResult:
        deliveries: list[Delivery] = []
        with self.locks.hold(event_id):
            offer = self._take_offer(event_id, user_id, "reject", deliveries)
            if offer is None:
                result = ResolveResult(OfferOutcome.STALE_OFFER)
            else:
                leave = self.queue.leave(event_id, user_id)
                deliveries.extend(position_change_deliveries(self.router, leave.position_changes))
                deliveries.append(
                    functools.partial(self.router.notify_outcome, offer.chat_id, event_id, OfferOutcome.REJECTED)
                )
                logger.info("User %s rejected slot offer for event %s", user_id, event_id)
                result = ResolveResult(OfferOutcome.REJECTED, offer)
        deliver(deliveries)
        return result

    def cancel_offer_for(self, event_id: str, user_id: str) -> ResolveResult | None:
        """Leave listener: drop a live offer held by a user who left the queue."""
        with self.locks.hold(event_id):
            offer = self._offers.get(event_id)
            if offer is None or offer.user_id != user_id:
                return None
            del self._offers[event_id]
        logger.info("Offer for event %s cancelled: user %s left the waitlist", event_id, user_id)
        return ResolveResult(OfferOutcome.CANCELLED, offer)

    def _forget_if_idle(self, event_id: str, user_id: str) -> None:
        # Leave listener: an empty queue without an offer needs no per-event state.
        with self.locks.hold(event_id):
            if event_id in self._offers or self.queue.size(event_id):
                return
            self._cooldown_until.pop(event_id, None)
            self._passed_over.pop(event_id, None)

    def _take_offer(
        self, event_id: str, user_id: str, action: str, deliveries: list[Delivery]
    ) -> Offer | None:
        offer = self._offers.get(event_id)
        if offer is None or offer.user_id != user_id:
            logger.warning(
                "User %s tried to %s offer for event %s, but offer is for %s",
                user_id,
                action,
                event_id,
                offer.user_id if offer else None,
            )
            return None
        if offer.expired(self._clock()):
            self._expire_locked(offer, deliveries)
            logger.warning("User %s tried to %s an expired offer for event %s", user_id, action, event_id)
            return None
        del self._offers[event_id]
        return offer

    # --- rate limiting ---

    def _cooldown_active(self, event_id: str, now: float) -> bool:
        until = self._cooldown_until.get(event_id)
        if until is None:
            return False
        if now < until:
            return True
        del self._cooldown_until[event_id]
        return False

    def _start_cooldown(self, event_id: str, reason: object) -> None:
        self._cooldown_until[event_id] = self._clock() + self.rate_limit_cooldown_seconds
        logger.warning(
            "Booking service rate limited event %s (%s), pausing for %.0fs",
            event_id,
            reason,
            self.rate_limit_cooldown_seconds,
        )

    def _title(self, event_id: str) -> str:
        if self._titles is not None:
            try:
                title = self._titles(event_id)
            except Exception as e:
                logger.warning("Could not resolve title for event %s (%s: %s)", event_id, type(e).__name__, e)
                title = None
            if title:
                return title
        return event_id
