import logging
from typing import Optional

from signage.loop import Dispatcher, TimerHandle
from signage.media import MediaItem, MediaKind, Playlist
from signage.reconcile import clamp_index
from signage.status import StatusState


DEFAULT_IMAGE_DWELL_MS = 5000


def empty_message(kiosk_id: str) -> str:
    return f'No content in "{kiosk_id}".\nUse the menu to upload.'


class PlaybackStateMachine:
    def __init__(
        self,
        dispatcher: Dispatcher,
        surface,
        status: StatusState,
        kiosk_id: str,
        image_dwell_ms: int = DEFAULT_IMAGE_DWELL_MS,
    ) -> None:
        self._dispatcher = dispatcher
        self._surface = surface
        self._status = status
        self._dwell_sec = max(int(image_dwell_ms), 1) / 1000.0
        self._timer: Optional[TimerHandle] = None
        # Bumped on every state entry; callbacks armed for an older entry are stale.
        self._entry = 0
        # Surface load id of the video started by the current entry.
        self._video_load: Optional[int] = None
        self.playlist = Playlist(kiosk_id)
        self.index = 0
        self.muted = True
        self.loading = False

    @property
    def current(self) -> Optional[MediaItem]:
        if not self.playlist:
            return None
        return self.playlist[self.index]

    def set_playlist(self, playlist: Playlist) -> None:
        if playlist is self.playlist:
            return
        self.playlist = playlist
        clamped = clamp_index(self.index, len(playlist))
        if clamped != self.index:
            logging.info("Playlist shrank to %d items; restarting at index 0", len(playlist))
        self.index = clamped
        self._enter()

    def set_loading(self, loading: bool) -> None:
        loading = bool(loading)
        if loading == self.loading:
            return
        self.loading = loading
        if self.current is None:
            self._enter()

    def set_muted(self, muted: bool) -> None:
        self.muted = bool(muted)
        self._surface.set_muted(self.muted)
        item = self.current
        if item is not None and item.kind is MediaKind.IMAGE:
            self._enter()

    def advance(self) -> None:
        if not self.playlist:
            return
        self.index = (self.index + 1) % len(self.playlist)
        self._enter()

    def on_media_ended(self, reason: str = "eof", load_id: Optional[int] = None) -> None:
        item = self.current
        if item is None or item.kind is not MediaKind.VIDEO:
            return
        if load_id is not None and load_id != self._video_load:
            logging.debug("Ignoring end of load %s; current load is %s", load_id, self._video_load)
            return
        logging.debug("Video %s ended (%s)", item.display_name, reason)
        self.advance()

    def stop(self) -> None:
        self._entry += 1
        self._video_load = None
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_dwell_elapsed(self, entry: int) -> None:
        if entry != self._entry:
            return
        self._timer = None
        self.advance()

    def _enter(self) -> None:
        self._entry += 1
        self._video_load = None
        self._cancel_timer()
        item = self.current
        if item is None:
            self._status.update(current_index=None, current_item=None)
            if self.loading:
                self._surface.clear()
            else:
                self._surface.show_empty(empty_message(self.playlist.kiosk_id))
            return

        self._status.update(current_index=self.index, current_item=item.to_dict())
        if item.kind is MediaKind.IMAGE:
            self._surface.show_image(item.url)
            self._timer = self._dispatcher.call_later(self._dwell_sec, self._on_dwell_elapsed, self._entry)
            return

        self._video_load = self._surface.play_video(item.url, self.muted)
        if self._video_load is None:
            logging.info("Playback of %s waiting for the display surface", item.display_name)
