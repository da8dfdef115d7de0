import logging
from typing import Optional

from signage import APP_VERSION
from signage.playback import PlaybackStateMachine
from signage.status import StatusState


class SessionController:
    def __init__(
        self,
        surface,
        playback: PlaybackStateMachine,
        status: StatusState,
        kiosk_id: str,
        admin_url: Optional[str] = None,
        refresh_interval_sec: int = 120,
    ) -> None:
        self._surface = surface
        self._playback = playback
        self._status = status
        self.kiosk_id = kiosk_id
        self._admin_url = admin_url
        self._refresh_interval_sec = refresh_interval_sec
        self.muted = True
        self.fullscreen = False
        self.ui_visible = True
        self._status.update(muted=self.muted, fullscreen=self.fullscreen, ui_visible=self.ui_visible)

    def set_admin_url(self, admin_url: Optional[str]) -> None:
        self._admin_url = admin_url

    def set_kiosk_id(self, kiosk_id: str) -> None:
        self.kiosk_id = kiosk_id
        self._status.update(kiosk_id=kiosk_id)

    def toggle_mute(self) -> None:
        self.muted = not self.muted
        self._status.update(muted=self.muted)
        logging.info("Sound %s", "muted" if self.muted else "unmuted")
        self._playback.set_muted(self.muted)
        self.render_overlay()

    def enter_fullscreen_and_hide(self) -> None:
        if not self.fullscreen:
            if not self._surface.set_fullscreen(True):
                logging.warning("Fullscreen request was not delivered to the display surface")
        self.hide_ui()

    def on_fullscreen_changed(self, fullscreen: bool) -> None:
        self.fullscreen = bool(fullscreen)
        self._status.update(fullscreen=self.fullscreen)

    def show_ui(self) -> None:
        self.ui_visible = True
        self._status.update(ui_visible=True)
        self.render_overlay()

    def hide_ui(self) -> None:
        self.ui_visible = False
        self._status.update(ui_visible=False)
        self._surface.hide_overlay()

    def overlay_text(self) -> str:
        refresh_min = max(int(self._refresh_interval_sec) // 60, 1)
        lines = [
            f"Management: {self.kiosk_id}",
            f"Current Playlist ({len(self._playback.playlist)})",
            "Sound: off" if self.muted else "Sound: on",
        ]
        if self._admin_url:
            lines.append(f"Admin: {self._admin_url}")
        lines.append(f"Ver: {APP_VERSION} | Auto-refresh: {refresh_min}m")
        return "\n".join(lines)

    def render_overlay(self) -> None:
        if self.ui_visible:
            self._surface.show_overlay(self.overlay_text())
