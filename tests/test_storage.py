import unittest
from typing import Any, Dict, List, Optional

import requests

from signage.media import MediaKind
from signage.storage import FirebaseStorageClient, StorageError, kiosk_object_path, list_playlist


class FakeResponse:
    def __init__(self, payload: Any = None, content: bytes = b"", error: Optional[Exception] = None) -> None:
        self._payload = payload
        self.content = content
        self._error = error

    def raise_for_status(self) -> None:
        if self._error is not None:
            raise self._error

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, responses: List[Any]) -> None:
        self._responses = list(responses)
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def request(self, method: str, url: str, timeout: int, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, "timeout": timeout, **kwargs})
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


def sample_cfg() -> Dict[str, Any]:
    return {
        "storage_api_url": "https://firebasestorage.googleapis.com/v0",
        "storage_bucket": "kiosk-demo.appspot.com",
        "api_key": "k-123",
        "auth_token": "",
        "request_timeout_sec": 7,
    }


BASE = "https://firebasestorage.googleapis.com/v0/b/kiosk-demo.appspot.com/o"


class FirebaseStorageClientTests(unittest.TestCase):
    def test_list_follows_pages_and_skips_nested_objects(self) -> None:
        session = FakeSession(
            [
                FakeResponse(
                    {
                        "items": [{"name": "images/lobby/a.jpg"}, {"name": "images/lobby/sub/deep.jpg"}],
                        "nextPageToken": "p2",
                    }
                ),
                FakeResponse({"items": [{"name": "images/lobby/b.mp4"}]}),
            ]
        )
        client = FirebaseStorageClient(sample_cfg(), session=session)

        objects = client.list("images/lobby/")

        self.assertEqual([obj.name for obj in objects], ["a.jpg", "b.mp4"])
        self.assertEqual(objects[0].full_path, "images/lobby/a.jpg")
        self.assertEqual(session.calls[0]["url"], BASE)
        self.assertEqual(session.calls[0]["params"], {"prefix": "images/lobby/", "delimiter": "/", "key": "k-123"})
        self.assertEqual(session.calls[1]["params"]["pageToken"], "p2")
        self.assertEqual(session.calls[0]["timeout"], 7)

    def test_download_url_uses_first_token(self) -> None:
        session = FakeSession([FakeResponse({"name": "images/lobby/a b.jpg", "downloadTokens": "t1,t2"})])
        client = FirebaseStorageClient(sample_cfg(), session=session)

        url = client.download_url("images/lobby/a b.jpg")

        self.assertEqual(url, f"{BASE}/images%2Flobby%2Fa%20b.jpg?alt=media&token=t1")

    def test_upload_and_delete_requests(self) -> None:
        session = FakeSession([FakeResponse({}), FakeResponse({})])
        client = FirebaseStorageClient(dict(sample_cfg(), auth_token="tok"), session=session)

        client.upload("images/lobby/promo.mp4", b"data", "video/mp4")
        client.delete("images/lobby/promo.mp4")

        upload, delete = session.calls
        self.assertEqual(upload["method"], "POST")
        self.assertEqual(upload["params"]["name"], "images/lobby/promo.mp4")
        self.assertEqual(upload["params"]["uploadType"], "media")
        self.assertEqual(upload["headers"]["Content-Type"], "video/mp4")
        self.assertEqual(upload["headers"]["Authorization"], "Firebase tok")
        self.assertEqual(upload["data"], b"data")
        self.assertEqual(delete["method"], "DELETE")
        self.assertEqual(delete["url"], f"{BASE}/images%2Flobby%2Fpromo.mp4")

    def test_read_bytes_requests_media(self) -> None:
        session = FakeSession([FakeResponse(content=b'{"version": "1.1"}')])
        client = FirebaseStorageClient(sample_cfg(), session=session)
        self.assertEqual(client.read_bytes("images/common/version.json"), b'{"version": "1.1"}')
        self.assertEqual(session.calls[0]["params"]["alt"], "media")

    def test_transport_and_http_errors_become_storage_errors(self) -> None:
        session = FakeSession(
            [
                requests.ConnectionError("connection dropped"),
                FakeResponse(error=requests.HTTPError("500 Server Error")),
                FakeResponse(None),
            ]
        )
        client = FirebaseStorageClient(sample_cfg(), session=session)
        with self.assertRaises(StorageError):
            client.list("images/lobby/")
        with self.assertRaises(StorageError):
            client.delete("images/lobby/a.jpg")
        with self.assertRaises(StorageError):
            client.list("images/lobby/")

    def test_bucket_is_required(self) -> None:
        with self.assertRaises(ValueError):
            FirebaseStorageClient(dict(sample_cfg(), storage_bucket=""), session=FakeSession([]))

    def test_close_closes_session(self) -> None:
        session = FakeSession([])
        FirebaseStorageClient(sample_cfg(), session=session).close()
        self.assertTrue(session.closed)


class ListPlaylistTests(unittest.TestCase):
    def test_builds_classified_items_for_kiosk(self) -> None:
        session = FakeSession(
            [
                FakeResponse({"items": [{"name": "images/lobby/z.jpg"}, {"name": "images/lobby/promo.MOV"}]}),
                FakeResponse({"downloadTokens": "a"}),
                FakeResponse({"downloadTokens": "b"}),
            ]
        )
        client = FirebaseStorageClient(sample_cfg(), session=session)

        playlist = list_playlist(client, "lobby")

        self.assertEqual(playlist.kiosk_id, "lobby")
        self.assertEqual([item.display_name for item in playlist], ["z.jpg", "promo.MOV"])
        self.assertEqual([item.kind for item in playlist], [MediaKind.IMAGE, MediaKind.VIDEO])
        self.assertTrue(playlist[1].url.endswith("images%2Flobby%2Fpromo.MOV?alt=media&token=b"))

    def test_sorted_listing_orders_by_path(self) -> None:
        session = FakeSession(
            [
                FakeResponse({"items": [{"name": "images/lobby/z.jpg"}, {"name": "images/lobby/a.jpg"}]}),
                FakeResponse({}),
                FakeResponse({}),
            ]
        )
        client = FirebaseStorageClient(sample_cfg(), session=session)
        playlist = list_playlist(client, "lobby", sort=True)
        self.assertEqual(playlist.ids(), ("images/lobby/a.jpg", "images/lobby/z.jpg"))
        self.assertEqual(kiosk_object_path("lobby", "a.jpg"), "images/lobby/a.jpg")


if __name__ == "__main__":
    unittest.main()
