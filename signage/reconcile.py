from signage.media import Playlist


def reconcile(previous: Playlist, incoming: Playlist) -> Playlist:
    # Positional diff on resolved URL; unchanged content keeps the held object.
    if len(previous) != len(incoming):
        return incoming
    for old, new in zip(previous, incoming):
        if old.url != new.url:
            return incoming
    return previous


def clamp_index(index: int, length: int) -> int:
    if length <= 0 or index < 0 or index >= length:
        return 0
    return index
