import enum
import os
from dataclasses import dataclass
from typing import Iterator, Tuple
from urllib.parse import unquote, urlparse


VIDEO_EXTENSIONS = {".mp4", ".webm", ".ogg", ".mov"}


class MediaKind(enum.Enum):
    IMAGE = "image"
    VIDEO = "video"


def media_suffix(name_or_url: str) -> str:
    raw = name_or_url or ""
    if "://" in raw:
        raw = unquote(urlparse(raw).path)
    else:
        raw = raw.split("?", 1)[0].split("#", 1)[0]
    return os.path.splitext(raw.lower())[1]


def classify_media(name_or_url: str) -> MediaKind:
    if media_suffix(name_or_url) in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    return MediaKind.IMAGE


@dataclass(frozen=True)
class MediaItem:
    id: str
    display_name: str
    url: str
    kind: MediaKind

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.display_name,
            "url": self.url,
            "kind": self.kind.value,
        }


class Playlist:
    """Ordered media for one kiosk.

    Reconciliation compares playlists by object identity, so instances are
    never mutated after construction.
    """

    __slots__ = ("kiosk_id", "items")

    def __init__(self, kiosk_id: str, items: Tuple[MediaItem, ...] = ()) -> None:
        self.kiosk_id = kiosk_id
        self.items = tuple(items)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[MediaItem]:
        return iter(self.items)

    def __getitem__(self, index: int) -> MediaItem:
        return self.items[index]

    def __repr__(self) -> str:
        return f"Playlist(kiosk_id={self.kiosk_id!r}, items={len(self.items)})"

    def ids(self) -> Tuple[str, ...]:
        return tuple(item.id for item in self.items)
