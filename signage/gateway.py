import logging
import os
from typing import Callable

from signage.loop import Dispatcher
from signage.notify import Notifier
from signage.storage import kiosk_object_path


ALLOWED_MIME_PREFIXES = ("image/", "video/")


class UploadRejected(ValueError):
    pass


def is_allowed_content_type(content_type: str) -> bool:
    value = (content_type or "").split(";", 1)[0].strip().lower()
    return value.startswith(ALLOWED_MIME_PREFIXES)


def safe_filename(filename: str) -> str:
    name = os.path.basename((filename or "").replace("\\", "/")).strip()
    if not name or name in {".", ".."}:
        raise UploadRejected(f"Invalid file name: {filename!r}")
    return name


class MutationGateway:
    def __init__(
        self,
        dispatcher: Dispatcher,
        storage,
        notifier: Notifier,
        kiosk_id: Callable[[], str],
        refresh: Callable[[], object],
    ) -> None:
        self._dispatcher = dispatcher
        self._storage = storage
        self._notifier = notifier
        self._kiosk_id = kiosk_id
        self._refresh = refresh

    def upload(self, filename: str, data: bytes, content_type: str) -> None:
        if not is_allowed_content_type(content_type):
            raise UploadRejected(f"Unsupported media type: {content_type!r}")
        path = kiosk_object_path(self._kiosk_id(), safe_filename(filename))
        self._notifier.notify("Uploading...")
        self._dispatcher.run_in_background(
            lambda: self._storage.upload(path, data, content_type),
            on_done=lambda _result: self._succeeded("Success!"),
            on_error=lambda exc: self._failed("Error uploading.", path, exc),
        )

    def delete(self, item_id: str, confirmed: bool) -> bool:
        if not confirmed:
            logging.info("Delete of %s not confirmed; ignoring", item_id)
            return False
        self._notifier.notify("Deleting...")
        self._dispatcher.run_in_background(
            lambda: self._storage.delete(item_id),
            on_done=lambda _result: self._succeeded("Deleted!"),
            on_error=lambda exc: self._failed("Error deleting.", item_id, exc),
        )
        return True

    def _succeeded(self, message: str) -> None:
        self._notifier.notify(message)
        self._refresh()

    def _failed(self, message: str, path: str, exc: Exception) -> None:
        logging.warning("Mutation of %s failed: %s", path, exc)
        self._notifier.notify(message)
