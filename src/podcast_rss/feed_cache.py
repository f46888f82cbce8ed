import logging
import pickle
import threading
from collections import OrderedDict
from collections.abc import Iterator
from pathlib import Path

from podcast_rss.models import Podcast

_logger = logging.getLogger("feed_cache")


class FeedCache:
    """
    Most recently merged Podcast per feed URL.

    Entries are only ever replaced whole. Reads and writes of the mapping go
    through one lock; lock_for() hands out a per-feed lock that callers hold
    across a fetch so refreshes of the same feed don't interleave.
    """

    path: Path | None
    _data: OrderedDict[str, Podcast]
    _lock: threading.Lock
    _feed_locks: dict[str, threading.Lock]
    _did_change: bool = False

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self._data = OrderedDict()
        self._lock = threading.Lock()
        self._feed_locks = {}
        self._load()

    def _load(self) -> None:
        if self.path is None:
            return

        if not self.path.exists():
            _logger.debug("persisted cache not found: %s", self.path)
            return

        try:
            with self.path.open("rb") as f:
                data = pickle.load(f)
        except (pickle.UnpicklingError, EOFError, AttributeError) as e:
            _logger.warning("ignoring unreadable cache %s: %s", self.path, e)
            return

        self._data.update(data)
        self._did_change = False

    def save(self) -> None:
        if not self.path:
            _logger.error("failed to save feed cache: no path provided")
            return

        if self._did_change is False:
            _logger.info("no changes to save")
            return

        _logger.debug("saving cache: %s", self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            data = OrderedDict(self._data)
        with self.path.open("wb") as f:
            pickle.dump(data, f, pickle.HIGHEST_PROTOCOL)
        self._did_change = False

    def lock_for(self, feed_url: str) -> threading.Lock:
        with self._lock:
            if feed_url not in self._feed_locks:
                self._feed_locks[feed_url] = threading.Lock()
            return self._feed_locks[feed_url]

    def __getitem__(self, feed_url: str) -> Podcast | None:
        with self._lock:
            podcast = self._data.get(feed_url)
        if podcast is None:
            _logger.debug("miss key=%s", feed_url)
        else:
            _logger.debug("hit key=%s", feed_url)
        return podcast

    def __setitem__(self, feed_url: str, podcast: Podcast) -> None:
        assert podcast.feed_url == feed_url, f"{podcast.feed_url} != {feed_url}"
        _logger.debug("set key=%s", feed_url)
        with self._lock:
            self._did_change = True
            self._data[feed_url] = podcast
            self._data.move_to_end(feed_url, last=True)

    def __delitem__(self, feed_url: str) -> None:
        self.remove(feed_url)

    def remove(self, feed_url: str) -> bool:
        with self._lock:
            if feed_url not in self._data:
                return False
            _logger.debug("remove key=%s", feed_url)
            self._did_change = True
            del self._data[feed_url]
            return True

    def __contains__(self, feed_url: str) -> bool:
        with self._lock:
            return feed_url in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            keys = list(self._data.keys())
        yield from keys
