import json
import unittest

from fakes import FakeClock, FakeStorage, advance, inline_dispatcher

from signage.loop import Dispatcher
from signage.media import MediaKind
from signage.scheduler import PollScheduler
from signage.status import StatusState
from signage.storage import StorageError
from signage.version_gate import VersionGate


def lobby_storage() -> FakeStorage:
    return FakeStorage(
        {
            "images/lobby/a.jpg": b"a",
            "images/lobby/b.jpg": b"b",
            "images/lobby/c.jpg": b"c",
            "images/hall/x.jpg": b"x",
            "images/common/version.json": json.dumps({"version": "1.1"}).encode("utf-8"),
        }
    )


class ManualSpawnDispatcher(Dispatcher):
    """Holds background work until the test releases it, to reorder completions."""

    def __init__(self, clock) -> None:
        super().__init__(clock=clock, spawn=self._hold)
        self.held = []

    def _hold(self, target) -> None:
        self.held.append(target)


class PollSchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.dispatcher = inline_dispatcher(self.clock)
        self.storage = lobby_storage()
        self.status = StatusState()
        self.published = []
        self.scheduler = PollScheduler(
            self.dispatcher,
            self.storage,
            self.status,
            refresh_interval_sec=120,
        )
        self.scheduler.add_listener(self.published.append)

    def test_cold_start_lists_kiosk_folder(self) -> None:
        self.scheduler.start("lobby")
        self.assertTrue(self.status.get("loading"))
        self.dispatcher.run_pending()
        self.assertFalse(self.status.get("loading"))
        playlist = self.scheduler.playlist
        self.assertEqual([item.display_name for item in playlist], ["a.jpg", "b.jpg", "c.jpg"])
        self.assertEqual(playlist.kiosk_id, "lobby")
        self.assertEqual(self.status.get("playlist_size"), 3)

    def test_loading_listeners_hear_clear_after_items_are_published(self) -> None:
        events = []
        self.scheduler.add_listener(lambda playlist: events.append(("playlist", len(playlist))))
        self.scheduler.add_loading_listener(lambda loading: events.append(("loading", loading)))
        self.scheduler.start("lobby")
        self.dispatcher.run_pending()
        self.assertEqual(events, [("loading", True), ("playlist", 0), ("playlist", 3), ("loading", False)])

    def test_failed_cold_start_stops_loading(self) -> None:
        states = []
        self.scheduler.add_loading_listener(states.append)
        self.storage.fail_list = StorageError("offline")
        with self.assertLogs(level="WARNING"):
            self.scheduler.start("lobby")
            self.dispatcher.run_pending()
        self.assertEqual(states, [True, False])
        self.assertFalse(self.status.get("loading"))

    def test_unchanged_listing_keeps_playlist_identity(self) -> None:
        self.scheduler.start("lobby")
        self.dispatcher.run_pending()
        held = self.scheduler.playlist
        published = len(self.published)
        advance(self.dispatcher, self.clock, 120)
        self.assertEqual(self.storage.list_calls, 2)
        self.assertIs(self.scheduler.playlist, held)
        self.assertEqual(len(self.published), published)

    def test_background_refresh_never_shows_loading(self) -> None:
        self.scheduler.start("lobby")
        self.dispatcher.run_pending()
        self.storage.files.clear()
        advance(self.dispatcher, self.clock, 120)
        self.assertEqual(len(self.scheduler.playlist), 0)
        self.status.update(loading=False)
        self.scheduler.refresh(background=True)
        self.assertFalse(self.status.get("loading"))

    def test_upload_then_poll_adds_video_item(self) -> None:
        self.scheduler.start("lobby")
        self.dispatcher.run_pending()
        self.storage.upload("images/lobby/promo.mp4", b"v", "video/mp4")
        advance(self.dispatcher, self.clock, 120)
        playlist = self.scheduler.playlist
        self.assertEqual(len(playlist), 4)
        promo = [item for item in playlist if item.display_name == "promo.mp4"]
        self.assertEqual(len(promo), 1)
        self.assertIs(promo[0].kind, MediaKind.VIDEO)
        self.assertEqual(promo[0].id, "images/lobby/promo.mp4")

    def test_listing_failure_keeps_previous_playlist(self) -> None:
        self.scheduler.start("lobby")
        self.dispatcher.run_pending()
        held = self.scheduler.playlist
        self.storage.fail_list = StorageError("network down")
        with self.assertLogs(level="WARNING"):
            advance(self.dispatcher, self.clock, 120)
        self.assertIs(self.scheduler.playlist, held)
        self.assertIn("network down", self.status.get("last_refresh_error"))

    def test_changing_kiosk_rearms_timers_and_resets_playlist(self) -> None:
        self.scheduler.start("lobby")
        self.dispatcher.run_pending()
        advance(self.dispatcher, self.clock, 60)
        self.scheduler.set_kiosk_id("hall")
        self.dispatcher.run_pending()
        self.assertEqual([item.display_name for item in self.scheduler.playlist], ["x.jpg"])
        calls = self.storage.list_calls
        advance(self.dispatcher, self.clock, 60)
        self.assertEqual(self.storage.list_calls, calls)
        advance(self.dispatcher, self.clock, 60)
        self.assertEqual(self.storage.list_calls, calls + 1)

    def test_stop_cancels_polling(self) -> None:
        self.scheduler.start("lobby")
        self.dispatcher.run_pending()
        self.scheduler.stop()
        advance(self.dispatcher, self.clock, 600)
        self.assertEqual(self.storage.list_calls, 1)

    def test_delete_then_reconcile_drops_identity(self) -> None:
        self.scheduler.start("lobby")
        self.dispatcher.run_pending()
        self.storage.delete("images/lobby/b.jpg")
        self.scheduler.refresh(background=True)
        self.dispatcher.run_pending()
        self.assertNotIn("images/lobby/b.jpg", self.scheduler.playlist.ids())
        self.assertEqual(len(self.scheduler.playlist), 2)


class StaleRefreshTests(unittest.TestCase):
    def test_earlier_request_completing_late_is_discarded(self) -> None:
        clock = FakeClock()
        dispatcher = ManualSpawnDispatcher(clock)
        storage = lobby_storage()
        scheduler = PollScheduler(dispatcher, storage, StatusState())
        scheduler.start("lobby")
        first = dispatcher.held.pop()
        dispatcher.run_pending()

        storage.upload("images/lobby/promo.mp4", b"v", "video/mp4")
        scheduler.refresh(background=True)
        second = dispatcher.held.pop()

        second()
        dispatcher.run_pending()
        self.assertEqual(len(scheduler.playlist), 4)

        storage.delete("images/lobby/promo.mp4")
        first()
        dispatcher.run_pending()
        self.assertEqual(len(scheduler.playlist), 4)


class VersionPollingTests(unittest.TestCase):
    def test_version_timer_reloads_on_mismatch_only(self) -> None:
        clock = FakeClock()
        dispatcher = inline_dispatcher(clock)
        storage = lobby_storage()
        reloads = []
        gate = VersionGate(storage, "1.1", lambda: reloads.append(1))
        scheduler = PollScheduler(
            dispatcher,
            storage,
            StatusState(),
            version_gate=gate,
            refresh_interval_sec=120,
            version_check_interval_sec=60,
        )
        scheduler.start("lobby")
        dispatcher.run_pending()
        advance(dispatcher, clock, 60)
        self.assertEqual(reloads, [])

        storage.files["images/common/version.json"] = b'{"version": "1.2"}'
        advance(dispatcher, clock, 60)
        self.assertEqual(reloads, [1])


if __name__ == "__main__":
    unittest.main()
