from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class WaitlistEntry:
    """One candidate waiting for one event.

    Positions are 1-based and, for a given event, always form 1..N in join order.
    """

    event_id: str
    user_id: str
    chat_id: str
    position: int
    joined_at: dt.datetime


@dataclass(frozen=True)
class PositionChange:
    user_id: str
    chat_id: str
    old_position: int
    new_position: int


@dataclass(frozen=True)
class Offer:
    """A time-boxed proposal to the head of the queue to claim a free slot."""

    event_id: str
    user_id: str
    chat_id: str
    issued_at: float
    deadline: float

    def expired(self, now: float) -> bool:
        return now >= self.deadline


class JoinStatus(str, Enum):
    JOINED = "joined"
    ALREADY_JOINED = "already_joined"
    FULL = "full"


@dataclass(frozen=True)
class JoinResult:
    status: JoinStatus
    position: int | None = None

    @property
    def people_ahead(self) -> int | None:
        if self.position is None:
            return None
        return self.position - 1


class LeaveStatus(str, Enum):
    REMOVED = "removed"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class LeaveResult:
    status: LeaveStatus
    position_changes: tuple[PositionChange, ...] = ()

    @property
    def removed(self) -> bool:
        return self.status is LeaveStatus.REMOVED


class BookingStatus(str, Enum):
    SUCCESS = "success"
    NO_SLOT = "no_slot"
    REJECTED = "rejected"
    RATE_LIMITED = "rate_limited"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class BookingResult:
    status: BookingStatus
    details: dict = field(default_factory=dict)
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is BookingStatus.SUCCESS


class OfferOutcome(str, Enum):
    BOOKED = "booked"
    NO_SLOT = "no_slot"
    BOOKING_FAILED = "booking_failed"
    RATE_LIMITED = "rate_limited"
    NO_CREDENTIAL = "no_credential"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    STALE_OFFER = "stale_offer"


@dataclass(frozen=True)
class ResolveResult:
    outcome: OfferOutcome
    offer: Offer | None = None
    reason: str | None = None

    @property
    def stale(self) -> bool:
        return self.outcome is OfferOutcome.STALE_OFFER


class RateLimitedError(RuntimeError):
    """Booking service answered 429.

    Not a failure of the waitlist itself: the event is put into cool-down and
    retried later.
    """


class GatewayError(RuntimeError):
    """Booking service could not be reached or returned an unusable response."""
