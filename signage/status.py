import threading
import time
from typing import Dict, Optional

from signage import APP_VERSION


def iso_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class StatusState:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: Dict[str, Optional[object]] = {
            "started_at": iso_now(),
            "version": APP_VERSION,
            "kiosk_id": None,
            "loading": False,
            "playlist": [],
            "playlist_size": 0,
            "current_index": None,
            "current_item": None,
            "muted": True,
            "fullscreen": False,
            "ui_visible": True,
            "notification": None,
            "last_refresh_success": None,
            "last_refresh_error": None,
            "last_version_check": None,
            "remote_version": None,
        }

    def update(self, **kwargs: object) -> None:
        with self._lock:
            self._data.update(kwargs)

    def get(self, key: str) -> Optional[object]:
        with self._lock:
            return self._data.get(key)

    def snapshot(self) -> Dict[str, Optional[object]]:
        with self._lock:
            return dict(self._data)
