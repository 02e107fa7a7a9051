import argparse
import logging

from waitlistbot.config import Settings, load_settings
from waitlistbot.worker import _send_status_message, build_service, run_forever, run_sweep_once

logger = logging.getLogger("waitlistbot")


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _notify_admin(settings: Settings, stage: str, text: str) -> None:
    # Статусные сообщения не должны мешать работе процесса.
    try:
        _send_status_message(settings, text=text)
    except Exception:
        logger.warning("Failed to send %s status message to admin chat", stage, exc_info=True)


def main() -> int:
    parser = argparse.ArgumentParser(description="WaitlistBot: waitlist slot offers")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    args = parser.parse_args()

    _setup_logging()
    settings = load_settings()

    mode = "once" if args.once else "forever"
    _notify_admin(
        settings,
        "startup",
        f"WaitlistBot запущен ({mode}).\n"
        f"Опрос каждые {settings.sweep_interval_seconds:g} с, на ответ {settings.offer_timeout_seconds:g} с, "
        f"мест в листе ожидания: {settings.max_waitlist_size}",
    )

    try:
        service = build_service(settings)
        if args.once:
            run_sweep_once(settings, service)
        else:
            run_forever(settings, service)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except Exception as e:
        _notify_admin(settings, "crash", f"WaitlistBot завершился с ошибкой: {type(e).__name__}: {e}")
        raise
    finally:
        _notify_admin(settings, "shutdown", "WaitlistBot остановлен.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
