import json
import logging
from typing import Callable, Optional

from signage.storage import MEDIA_ROOT


VERSION_DESCRIPTOR_PATH = f"{MEDIA_ROOT}/common/version.json"


def parse_version_descriptor(raw: bytes) -> Optional[str]:
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    version = data.get("version")
    if not isinstance(version, str):
        return None
    return version


class VersionGate:
    def __init__(
        self,
        storage,
        running_version: str,
        reload: Callable[[], None],
        descriptor_path: str = VERSION_DESCRIPTOR_PATH,
    ) -> None:
        self._storage = storage
        self.running_version = running_version
        self._reload = reload
        self._descriptor_path = descriptor_path

    def fetch_remote_version(self) -> Optional[str]:
        try:
            raw = self._storage.read_bytes(self._descriptor_path)
        except Exception as exc:
            logging.debug("Version check skipped: %s", exc)
            return None
        version = parse_version_descriptor(raw)
        if version is None:
            logging.debug("Version descriptor at %s is malformed", self._descriptor_path)
        return version

    def apply(self, remote_version: Optional[str]) -> bool:
        if remote_version is None or remote_version == self.running_version:
            return False
        logging.info("New version detected (%s -> %s). Reloading...", self.running_version, remote_version)
        self._reload()
        return True

    def check(self) -> bool:
        return self.apply(self.fetch_remote_version())
