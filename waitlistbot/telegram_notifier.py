from __future__ import annotations

import logging
from typing import Callable

import httpx

from waitlistbot.domain import OfferOutcome

logger = logging.getLogger(__name__)


def send_telegram_message(*, bot_token: str, chat_id: str, text: str, timeout_seconds: float = 20.0) -> None:
    url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
    payload = {
        "chat_id": chat_id,
        "text": text,
        "disable_web_page_preview": True,
    }

    with httpx.Client(timeout=timeout_seconds) as client:
        r = client.post(url, json=payload)
        r.raise_for_status()
        data = r.json()
        if not data.get("ok", False):
            raise RuntimeError(f"Telegram API error: {data}")


_OUTCOME_TEXT = {
    OfferOutcome.BOOKED: "✅ Вы успешно записаны на событие «{title}».",
    OfferOutcome.NO_SLOT: "❌ К сожалению, слот на «{title}» больше не доступен. Вы остаётесь в листе ожидания.",
    OfferOutcome.BOOKING_FAILED: "❌ Не удалось выполнить регистрацию на «{title}». Вы остаётесь в листе ожидания.",
    OfferOutcome.RATE_LIMITED: "⏳ Сервис записи перегружен. Вы остаётесь в листе ожидания на «{title}».",
    OfferOutcome.NO_CREDENTIAL: "❌ Кука не найдена. Пожалуйста, используйте /start для настройки.",
    OfferOutcome.REJECTED: "✅ Вы отказались от предложения и вышли из листа ожидания на «{title}».",
    OfferOutcome.EXPIRED: "⌛ Время на ответ по «{title}» истекло. Вы остаётесь в листе ожидания.",
}


def format_outcome(outcome: OfferOutcome, event_title: str) -> str | None:
    template = _OUTCOME_TEXT.get(outcome)
    if template is None:
        return None
    return template.format(title=event_title)


class TelegramNotificationRouter:
    """Delivers waitlist notifications as plain Telegram messages.

    Raises on delivery failure; OfferCoordinator and WaitlistService log and move on.
    """

    def __init__(
        self,
        *,
        bot_token: str,
        titles: Callable[[str], str | None] | None = None,
        timeout_seconds: float = 20.0,
    ) -> None:
        self.bot_token = bot_token
        self.timeout_seconds = timeout_seconds
        self._titles = titles

    def _title(self, event_id: str) -> str:
        if self._titles is not None:
            title = self._titles(event_id)
            if title:
                return title
        return event_id

    def _send(self, chat_id: str, text: str) -> None:
        send_telegram_message(
            bot_token=self.bot_token,
            chat_id=chat_id,
            text=text,
            timeout_seconds=self.timeout_seconds,
        )

    def notify_offer(self, chat_id: str, user_id: str, event_id: str, event_title: str) -> None:
        self._send(
            chat_id,
            "🎯 Доступен слот на событие!\n\n"
            f"Событие: {event_title}\n\n"
            "Слот предложен вам. Хотите записаться на это событие?\n"
            f"Подтвердить: /confirm {event_id}\n"
            f"Отказаться: /reject {event_id}",
        )

    def notify_outcome(self, chat_id: str, event_id: str, outcome: OfferOutcome) -> None:
        text = format_outcome(outcome, self._title(event_id))
        if text is None:
            logger.debug("No message for outcome %s on event %s", outcome.value, event_id)
            return
        self._send(chat_id, text)

    def notify_position_change(self, chat_id: str, old_position: int, new_position: int) -> None:
        self._send(
            chat_id,
            f"📢 Ваша позиция в листе ожидания изменилась: {old_position} → {new_position}.\n"
            f"Перед вами: {new_position - 1} чел.",
        )
