from __future__ import annotations

import logging
from typing import Protocol

from distpipe.core import events as ev

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "distpipe"
ERROR_TITLE = "distpipe build error"


class Notifier(Protocol):
    def notify(self, message: str, error: BaseException | None = None) -> None: ...


class NullNotifier:
    def notify(self, message: str, error: BaseException | None = None) -> None:
        return None


class EventNotifier:
    """Deliver notifications as ``Notification`` events on the event stream."""

    def __init__(self, emit: ev.Emit, *, command: str = ""):
        self.emit = emit
        self.command = command

    def notify(self, message: str, error: BaseException | None = None) -> None:
        self.emit(
            ev.Notification(
                command=self.command,
                level="ERROR" if error else "INFO",
                title=ERROR_TITLE if error else DEFAULT_TITLE,
                message=message,
                error=str(error) if error else None,
            )
        )


def notify(notifier: Notifier, message: str, error: BaseException | None = None) -> None:
    """Fire-and-forget delivery; a failing sink is logged and never raises."""
    try:
        notifier.notify(message, error)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Notification failed: %s", exc)
