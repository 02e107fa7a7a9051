from __future__ import annotations

from waitlistbot.domain import JoinResult, LeaveResult, ResolveResult
from waitlistbot.offers import NotificationRouter, OfferCoordinator, deliver, position_change_deliveries
from waitlistbot.queue import QueueEngine


class WaitlistService:
    """Operations exposed to the conversational layer."""

    def __init__(self, queue: QueueEngine, coordinator: OfferCoordinator, router: NotificationRouter) -> None:
        self.queue = queue
        self.coordinator = coordinator
        self.router = router

    def join(self, event_id: str, user_id: str, chat_id: str) -> JoinResult:
        return self.queue.join(event_id, user_id, chat_id)

    def leave(self, event_id: str, user_id: str) -> LeaveResult:
        # A live offer held by the user is cancelled by the queue's leave listener.
        result = self.queue.leave(event_id, user_id)
        deliver(position_change_deliveries(self.router, result.position_changes))
        return result

    def confirm(self, event_id: str, user_id: str) -> ResolveResult:
        return self.coordinator.confirm(event_id, user_id)

    def reject(self, event_id: str, user_id: str) -> ResolveResult:
        return self.coordinator.reject(event_id, user_id)

    def position_of(self, event_id: str, user_id: str) -> int | None:
        return self.queue.position_of(event_id, user_id)

    def size_of(self, event_id: str) -> int:
        return self.queue.size(event_id)

    def tracked_event_ids(self) -> list[str]:
        """Events a sweep has to visit: non-empty queues plus events with a live offer."""
        seen = dict.fromkeys(self.queue.event_ids())
        seen.update(dict.fromkeys(self.coordinator.live_event_ids()))
        return list(seen)
