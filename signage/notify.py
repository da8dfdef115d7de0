import logging
from typing import Optional

from signage.loop import Dispatcher, TimerHandle
from signage.status import StatusState


class Notifier:
    def __init__(self, dispatcher: Dispatcher, surface, status: StatusState, ttl_sec: float = 3.0) -> None:
        self._dispatcher = dispatcher
        self._surface = surface
        self._status = status
        self._ttl_sec = float(ttl_sec)
        self._timer: Optional[TimerHandle] = None
        self.message: Optional[str] = None

    def notify(self, message: str) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self.message = message
        self._status.update(notification=message)
        logging.info("Notification: %s", message)
        self._surface.show_text(message, int(self._ttl_sec * 1000))
        self._timer = self._dispatcher.call_later(self._ttl_sec, self._dismiss)

    def _dismiss(self) -> None:
        self._timer = None
        self.message = None
        self._status.update(notification=None)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
