from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait

from waitlistbot.booking_client import BookingClient
from waitlistbot.config import Settings
from waitlistbot.credentials import load_credentials, load_event_titles
from waitlistbot.holds import EventHolds
from waitlistbot.locks import KeyedLocks
from waitlistbot.offers import BookingGateway, NotificationRouter, OfferCoordinator
from waitlistbot.queue import QueueEngine
from waitlistbot.service import WaitlistService
from waitlistbot.state_file import QueueStore
from waitlistbot.telegram_notifier import TelegramNotificationRouter, send_telegram_message

logger = logging.getLogger(__name__)


class SweepScheduler:
    """Cancellable periodic sweep.

    Every interval each tracked event gets its own tick on a bounded thread pool.
    An event whose previous tick is still running (slow probe, slow booking) is
    skipped for this round instead of piling up.
    """

    def __init__(self, service: WaitlistService, *, interval_seconds: float = 5.0, max_workers: int = 4) -> None:
        self.service = service
        self.interval_seconds = interval_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sweep")
        self._inflight: dict[str, Future] = {}
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _tick(self, event_id: str) -> None:
        try:
            self.service.coordinator.tick(event_id)
        except Exception:
            logger.exception("Sweep failed for event %s", event_id)

    def sweep_once(self) -> list[Future]:
        event_ids = self.service.tracked_event_ids()
        submitted: list[Future] = []

        for event_id in event_ids:
            previous = self._inflight.get(event_id)
            if previous is not None and not previous.done():
                logger.debug("Previous sweep for event %s still running, skipping", event_id)
                continue
            future = self._executor.submit(self._tick, event_id)
            self._inflight[event_id] = future
            submitted.append(future)

        tracked = set(event_ids)
        for event_id, future in list(self._inflight.items()):
            if future.done() and event_id not in tracked:
                del self._inflight[event_id]

        return submitted

    def run(self) -> None:
        logger.info("Sweep started. Interval=%ss", self.interval_seconds)
        while not self._stop.is_set():
            try:
                self.sweep_once()
            except Exception as e:
                logger.error("Sweep round failed (%s: %s)", type(e).__name__, e)
            self._stop.wait(self.interval_seconds)
        logger.info("Sweep stopped")

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self.run, name="waitlist-sweep", daemon=True)
        self._thread.start()

    def stop(self, *, wait_for_ticks: bool = True) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self._executor.shutdown(wait=wait_for_ticks)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def __enter__(self) -> SweepScheduler:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


def build_service(
    settings: Settings,
    *,
    gateway: BookingGateway | None = None,
    router: NotificationRouter | None = None,
) -> WaitlistService:
    titles = load_event_titles(settings.event_titles_file).get
    queue = QueueEngine(
        QueueStore(settings.state_file),
        KeyedLocks(),
        max_size=settings.max_waitlist_size,
    )
    if gateway is None:
        gateway = BookingClient(
            settings.booking_api_base_url,
            connect_timeout_seconds=settings.http_connect_timeout_seconds,
            read_timeout_seconds=settings.http_read_timeout_seconds,
            probe_retry_attempts=settings.probe_retry_attempts,
        )
    if router is None:
        router = TelegramNotificationRouter(
            bot_token=settings.telegram_bot_token,
            titles=titles,
            timeout_seconds=settings.http_read_timeout_seconds,
        )

    coordinator = OfferCoordinator(
        queue,
        gateway,
        router,
        load_credentials(settings.credentials_file),
        holds=EventHolds(settings.hold_events),
        titles=titles,
        offer_timeout_seconds=settings.offer_timeout_seconds,
        rate_limit_cooldown_seconds=settings.rate_limit_cooldown_seconds,
        reoffer_after_timeout=settings.reoffer_after_timeout,
    )
    return WaitlistService(queue, coordinator, router)


def _send_status_message(settings: Settings, text: str) -> None:
    # Статусные сообщения уходят только в админский чат, если он задан.
    if not settings.telegram_admin_chat_id:
        return
    send_telegram_message(
        bot_token=settings.telegram_bot_token,
        chat_id=settings.telegram_admin_chat_id,
        text=text,
    )


def run_sweep_once(settings: Settings, service: WaitlistService | None = None) -> None:
    service = service or build_service(settings)
    scheduler = SweepScheduler(service, max_workers=settings.sweep_max_workers)
    try:
        futures = scheduler.sweep_once()
        wait(futures)
        logger.info("Sweep done: %d events checked", len(futures))
    finally:
        scheduler.stop()


def run_forever(settings: Settings, service: WaitlistService | None = None) -> None:
    service = service or build_service(settings)
    scheduler = SweepScheduler(
        service,
        interval_seconds=settings.sweep_interval_seconds,
        max_workers=settings.sweep_max_workers,
    )
    try:
        scheduler.run()
    finally:
        scheduler.stop()
