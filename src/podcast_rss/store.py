import csv
import logging
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager
from pathlib import Path
from types import TracebackType

from podcast_rss.utils import Ciphertext, EncryptionKey, decrypt, encrypt

logger = logging.getLogger("store")

_FEEDS_FILENAME = "feeds.csv"
_POSITIONS_FILENAME = "positions.csv"
_PLAYED_FILENAME = "played.csv"
_PREFERENCES_FILENAME = "preferences.csv"


class Store(AbstractContextManager["Store"]):
    """
    Persisted user state: subscribed feed URLs (in subscription order), saved
    playback positions, played episodes and preference scalars.

    Each record is a CSV file under path. Loaded on enter and written back on
    a clean exit. With an encryption key, feed URLs are stored encrypted since
    private feeds embed access tokens in their URLs.
    """

    path: Path
    _encryption_key: EncryptionKey | None
    _feeds: list[str]
    _positions: dict[str, int]
    _played: set[str]
    _preferences: dict[str, str]
    _lock: threading.RLock

    def __init__(self, path: Path, encryption_key: EncryptionKey | None = None) -> None:
        self.path = path
        self._encryption_key = encryption_key
        self._feeds = []
        self._positions = {}
        self._played = set()
        self._preferences = {}
        self._lock = threading.RLock()

    def __enter__(self) -> "Store":
        self.load()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.save()
        else:
            logger.error("not saving store due to exception")

    def load(self) -> None:
        logger.debug("loading store: %s", self.path)
        with self._lock:
            self._feeds = [
                self._decode_feed_url(row)
                for row in _read_rows(self.path / _FEEDS_FILENAME)
            ]
            self._positions = {}
            for row in _read_rows(self.path / _POSITIONS_FILENAME):
                try:
                    self._positions[row["episode_id"]] = max(int(row["position"]), 0)
                except (KeyError, TypeError, ValueError):
                    logger.warning("skipping unreadable position row: %s", row)
            self._played = {
                row["episode_id"] for row in _read_rows(self.path / _PLAYED_FILENAME)
            }
            self._preferences = {
                row["name"]: row["value"]
                for row in _read_rows(self.path / _PREFERENCES_FILENAME)
            }

    def save(self) -> None:
        logger.debug("saving store: %s", self.path)
        self.path.mkdir(parents=True, exist_ok=True)

        with self._lock:
            assert len(set(self._feeds)) == len(self._feeds), "Duplicate feed URLs"

            url_field = "encrypted_url" if self._encryption_key else "url"
            _write_rows(
                self.path / _FEEDS_FILENAME,
                fieldnames=[url_field],
                rows=({url_field: self._encode_feed_url(u)} for u in self._feeds),
            )
            _write_rows(
                self.path / _POSITIONS_FILENAME,
                fieldnames=["episode_id", "position"],
                rows=(
                    {"episode_id": episode_id, "position": str(position)}
                    for episode_id, position in sorted(self._positions.items())
                ),
            )
            _write_rows(
                self.path / _PLAYED_FILENAME,
                fieldnames=["episode_id"],
                rows=({"episode_id": episode_id} for episode_id in sorted(self._played)),
            )
            _write_rows(
                self.path / _PREFERENCES_FILENAME,
                fieldnames=["name", "value"],
                rows=(
                    {"name": name, "value": value}
                    for name, value in sorted(self._preferences.items())
                ),
            )

    @property
    def feeds(self) -> list[str]:
        with self._lock:
            return list(self._feeds)

    def add_feed(self, feed_url: str) -> bool:
        with self._lock:
            if feed_url in self._feeds:
                return False
            self._feeds.append(feed_url)
            return True

    def remove_feed(self, feed_url: str) -> bool:
        with self._lock:
            if feed_url not in self._feeds:
                return False
            self._feeds.remove(feed_url)
            return True

    def position(self, episode_id: str) -> int:
        with self._lock:
            return self._positions.get(episode_id, 0)

    def set_position(self, episode_id: str, position: int) -> None:
        if position < 0:
            logger.warning("Clamping negative position %i for %s", position, episode_id)
            position = 0
        with self._lock:
            self._positions[episode_id] = position

    def played(self, episode_id: str) -> bool:
        with self._lock:
            return episode_id in self._played

    def mark_played(self, episode_id: str) -> None:
        with self._lock:
            self._played.add(episode_id)

    def mark_unplayed(self, episode_id: str) -> None:
        with self._lock:
            self._played.discard(episode_id)

    def preference(self, name: str, default: str | None = None) -> str | None:
        with self._lock:
            return self._preferences.get(name, default)

    def set_preference(self, name: str, value: str) -> None:
        with self._lock:
            self._preferences[name] = value

    def _encode_feed_url(self, feed_url: str) -> str:
        if self._encryption_key is None:
            return feed_url
        return encrypt(self._encryption_key, feed_url)

    def _decode_feed_url(self, row: dict[str, str]) -> str:
        if encrypted_url := row.get("encrypted_url"):
            assert self._encryption_key, "feeds are encrypted but no key is set"
            return decrypt(self._encryption_key, Ciphertext(encrypted_url))
        return row["url"]


def _read_rows(filename: Path) -> Iterator[dict[str, str]]:
    if not filename.exists():
        logger.debug("store file not found: %s", filename)
        return
    with filename.open("r", newline="") as csvfile:
        yield from csv.DictReader(csvfile)


def _write_rows(
    filename: Path,
    fieldnames: list[str],
    rows: Iterator[dict[str, str]],
) -> None:
    with filename.open("w", newline="") as csvfile:
        writer = csv.DictWriter(
            csvfile,
            fieldnames=fieldnames,
            quoting=csv.QUOTE_MINIMAL,
        )
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
