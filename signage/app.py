import argparse
import logging
import os
import signal
import sys
import threading
import time
from typing import Any, Dict, Optional

from signage import APP_VERSION
from signage.admin import AdminServer
from signage.config import load_config, resolve_kiosk_id, setup_logging
from signage.gateway import MutationGateway
from signage.loop import Dispatcher
from signage.notify import Notifier
from signage.playback import PlaybackStateMachine
from signage.scheduler import PollScheduler
from signage.session import SessionController
from signage.status import StatusState
from signage.storage import FirebaseStorageClient
from signage.surface import FULLSCREEN_CHANGED, MEDIA_ENDED, MediaEnded, MPVSurface
from signage.version_gate import VersionGate


class KioskApp:
    def __init__(
        self,
        cfg: Dict,
        kiosk_id: str,
        storage,
        surface,
        dispatcher: Optional[Dispatcher] = None,
    ) -> None:
        self.cfg = cfg
        self.kiosk_id = kiosk_id
        self.storage = storage
        self.surface = surface
        self.dispatcher = dispatcher or Dispatcher()
        self.status = StatusState()
        self.reload_requested = False

        self.playback = PlaybackStateMachine(
            self.dispatcher,
            surface,
            self.status,
            kiosk_id,
            image_dwell_ms=int(cfg.get("image_dwell_ms") or 5000),
        )
        self.version_gate = VersionGate(storage, APP_VERSION, self.request_reload)
        self.scheduler = PollScheduler(
            self.dispatcher,
            storage,
            self.status,
            version_gate=self.version_gate,
            refresh_interval_sec=int(cfg.get("refresh_interval_sec") or 120),
            version_check_interval_sec=int(cfg.get("version_check_interval_sec") or 120),
            sort_listing=bool(cfg.get("sort_listing")),
        )
        self.session = SessionController(
            surface,
            self.playback,
            self.status,
            kiosk_id,
            refresh_interval_sec=int(cfg.get("refresh_interval_sec") or 120),
        )
        self.notifier = Notifier(self.dispatcher, surface, self.status, float(cfg.get("notification_ttl_sec") or 3))
        self.gateway = MutationGateway(
            self.dispatcher,
            storage,
            self.notifier,
            kiosk_id=lambda: self.scheduler.kiosk_id or self.kiosk_id,
            refresh=self.scheduler.refresh,
        )
        self.admin = AdminServer(cfg, self.dispatcher, self.status, self.session, self.gateway, self.scheduler)

        self.scheduler.add_listener(self._on_playlist)
        self.scheduler.add_loading_listener(self.playback.set_loading)
        if hasattr(surface, "set_event_handler"):
            surface.set_event_handler(self.on_surface_event)

    def _on_playlist(self, playlist) -> None:
        self.session.set_kiosk_id(playlist.kiosk_id)
        self.playback.set_playlist(playlist)
        self.session.render_overlay()

    def on_surface_event(self, kind: str, value: Any) -> None:
        # Called from the surface reader thread.
        if kind == MEDIA_ENDED and isinstance(value, MediaEnded):
            self.dispatcher.post(self.playback.on_media_ended, value.reason, value.load_id)
        elif kind == FULLSCREEN_CHANGED:
            self.dispatcher.post(self.session.on_fullscreen_changed, value)

    def request_reload(self) -> None:
        self.reload_requested = True
        self.dispatcher.stop()

    def start(self) -> None:
        if self.admin.start():
            self.session.set_admin_url(self.admin.url)
        self.session.render_overlay()
        self.scheduler.start(self.kiosk_id)

    def shutdown(self) -> None:
        self.scheduler.stop()
        self.playback.stop()
        self.notifier.cancel()
        self.dispatcher.cancel_all()
        self.admin.stop()
        self.surface.stop()
        self.storage.close()


def reexec() -> None:
    logging.info("Restarting %s", " ".join(sys.argv))
    os.execv(sys.executable, [sys.executable, "-m", "signage"] + sys.argv[1:])


def main() -> int:
    parser = argparse.ArgumentParser(description="Signage kiosk player")
    parser.add_argument("--config", default="config.json", help="Path to config.json")
    parser.add_argument("--url", default="", help="Launch URL; its ?id= parameter selects the kiosk")
    parser.add_argument("--id", dest="kiosk_id", default="", help="Kiosk id (overridden by --url ?id=)")
    args = parser.parse_args()

    try:
        cfg = load_config(os.path.abspath(args.config))
    except FileNotFoundError as exc:
        print(exc, file=sys.stderr)
        return 2
    setup_logging(cfg)
    kiosk_id = resolve_kiosk_id(args.url, args.kiosk_id, cfg)

    try:
        storage = FirebaseStorageClient(cfg)
    except ValueError as exc:
        logging.error("Storage not configured: %s", exc)
        return 2

    surface = MPVSurface(cfg)
    app = KioskApp(cfg, kiosk_id, storage, surface)
    stop_event = threading.Event()

    def _force_exit_after_delay() -> None:
        time.sleep(5)
        try:
            surface.stop()
        finally:
            os._exit(1)

    def _handle(sig, _frame):
        logging.info("Signal %s received, stopping...", sig)
        if stop_event.is_set():
            threading.Thread(target=_force_exit_after_delay, daemon=True).start()
            return
        stop_event.set()
        app.dispatcher.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)

    logging.info("Starting kiosk %s (version %s)", kiosk_id, APP_VERSION)
    surface.start()
    app.start()
    try:
        app.dispatcher.run(stop_event)
    finally:
        app.shutdown()

    if app.reload_requested and not stop_event.is_set():
        reexec()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
