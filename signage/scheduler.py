import logging
from typing import Callable, List, Optional

from signage.loop import Dispatcher, TimerHandle
from signage.media import Playlist
from signage.reconcile import reconcile
from signage.status import StatusState, iso_now
from signage.storage import list_playlist
from signage.version_gate import VersionGate


class PollScheduler:
    def __init__(
        self,
        dispatcher: Dispatcher,
        storage,
        status: StatusState,
        version_gate: Optional[VersionGate] = None,
        refresh_interval_sec: float = 120,
        version_check_interval_sec: float = 120,
        sort_listing: bool = False,
    ) -> None:
        self._dispatcher = dispatcher
        self._storage = storage
        self._status = status
        self._version_gate = version_gate
        self._refresh_interval_sec = refresh_interval_sec
        self._version_check_interval_sec = version_check_interval_sec
        self._sort_listing = sort_listing
        self._listeners: List[Callable[[Playlist], None]] = []
        self._loading_listeners: List[Callable[[bool], None]] = []
        self._timers: List[TimerHandle] = []
        self._generation = 0
        self._has_listed = False
        self._loading = False
        self.kiosk_id: Optional[str] = None
        self.playlist: Optional[Playlist] = None

    def add_listener(self, listener: Callable[[Playlist], None]) -> None:
        self._listeners.append(listener)

    def add_loading_listener(self, listener: Callable[[bool], None]) -> None:
        self._loading_listeners.append(listener)

    def start(self, kiosk_id: str) -> None:
        self.set_kiosk_id(kiosk_id)

    def set_kiosk_id(self, kiosk_id: str) -> None:
        if kiosk_id == self.kiosk_id and self._timers:
            return
        self._cancel_timers()
        self.kiosk_id = kiosk_id
        self._has_listed = False
        self._status.update(kiosk_id=kiosk_id)
        self._set_loading(True)
        self._publish(Playlist(kiosk_id))
        self._timers.append(self._dispatcher.call_every(self._refresh_interval_sec, self.refresh, True))
        if self._version_gate is not None:
            self._timers.append(self._dispatcher.call_every(self._version_check_interval_sec, self.check_version))
        logging.info("Polling kiosk %s every %ss", kiosk_id, self._refresh_interval_sec)
        self.refresh(background=False)

    def stop(self) -> None:
        self._cancel_timers()
        # Late completions from before teardown are discarded.
        self._generation += 1

    def _cancel_timers(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers = []

    def refresh(self, background: bool = True) -> int:
        if self.kiosk_id is None:
            return self._generation
        self._generation += 1
        generation = self._generation
        kiosk_id = self.kiosk_id
        if not background and not self._has_listed and not self.playlist:
            self._set_loading(True)

        self._dispatcher.run_in_background(
            lambda: list_playlist(self._storage, kiosk_id, sort=self._sort_listing),
            on_done=lambda playlist: self._on_listing(generation, kiosk_id, playlist),
            on_error=lambda exc: self._on_listing_failed(generation, kiosk_id, exc),
        )
        return generation

    def _is_current(self, generation: int, kiosk_id: str) -> bool:
        return generation == self._generation and kiosk_id == self.kiosk_id

    def _on_listing(self, generation: int, kiosk_id: str, listed: Playlist) -> None:
        if not self._is_current(generation, kiosk_id):
            logging.debug("Discarding stale listing (generation %d, latest %d)", generation, self._generation)
            return
        self._has_listed = True
        self._status.update(last_refresh_success=iso_now(), last_refresh_error=None)
        held = self.playlist if self.playlist is not None else Playlist(kiosk_id)
        reconciled = reconcile(held, listed)
        if reconciled is not held:
            logging.info("Playlist updated: %d items", len(reconciled))
            self._publish(reconciled)
        # Cleared after publishing so the empty state is never shown ahead of new items.
        self._set_loading(False)

    def _on_listing_failed(self, generation: int, kiosk_id: str, exc: Exception) -> None:
        logging.warning("Content refresh for %s failed: %s", kiosk_id, exc)
        if not self._is_current(generation, kiosk_id):
            return
        self._status.update(last_refresh_error=f"{iso_now()} {exc}")
        self._set_loading(False)

    def _set_loading(self, loading: bool) -> None:
        if loading == self._loading:
            return
        self._loading = loading
        self._status.update(loading=loading)
        for listener in self._loading_listeners:
            listener(loading)

    def _publish(self, playlist: Playlist) -> None:
        self.playlist = playlist
        self._status.update(
            playlist=[item.to_dict() for item in playlist],
            playlist_size=len(playlist),
        )
        for listener in self._listeners:
            listener(playlist)

    def check_version(self) -> None:
        gate = self._version_gate
        if gate is None:
            return
        self._status.update(last_version_check=iso_now())
        self._dispatcher.run_in_background(gate.fetch_remote_version, on_done=self._on_remote_version)

    def _on_remote_version(self, remote_version: Optional[str]) -> None:
        self._status.update(remote_version=remote_version)
        if self._version_gate is not None:
            self._version_gate.apply(remote_version)
