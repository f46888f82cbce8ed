import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from podcast_rss.directory import ITunesDirectory
from podcast_rss.feed_cache import FeedCache
from podcast_rss.feed_parser import MalformedDocumentError, parse_feed
from podcast_rss.models import Episode, Podcast
from podcast_rss.playback import PlaybackState, merge_playback_state, playback_state
from podcast_rss.session import HTTPClient, TransportError
from podcast_rss.store import Store
from podcast_rss.utils import HTTPURL

logger = logging.getLogger("repository")

_FEED_ACCEPT = "application/rss+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"

FeedParser = Callable[[str, str], Podcast]


@dataclass(frozen=True)
class FetchResult:
    feed_url: str
    podcast: Podcast | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.podcast is not None

    def unwrap(self) -> Podcast:
        if self.error is not None:
            raise self.error
        assert self.podcast is not None, f"empty result for {self.feed_url}"
        return self.podcast


class PodcastRepository:
    """
    Fetches, parses and caches subscribed feeds, with the persisted playback
    state merged in.

    A failure to fetch or parse one feed is returned as a failed FetchResult
    for that feed and leaves its previous cache entry in place.
    """

    http: HTTPClient
    store: Store
    cache: FeedCache
    directory: ITunesDirectory
    max_workers: int

    def __init__(
        self,
        http: HTTPClient,
        store: Store,
        cache: FeedCache | None = None,
        parse: FeedParser = parse_feed,
        directory: ITunesDirectory | None = None,
        max_workers: int = 1,
    ) -> None:
        self.http = http
        self.store = store
        self.cache = cache if cache is not None else FeedCache()
        self._parse = parse
        self.directory = directory or ITunesDirectory(http)
        self.max_workers = max_workers

    def fetch_podcast(self, feed_url: str, force_refresh: bool = False) -> FetchResult:
        with self.cache.lock_for(feed_url):
            if not force_refresh:
                if (podcast := self.cache[feed_url]) is not None:
                    return FetchResult(feed_url=feed_url, podcast=podcast)

            try:
                podcast = self._fetch(feed_url)
            except (TransportError, MalformedDocumentError) as e:
                logger.error("Failed to fetch feed %s: %s", feed_url, e)
                return FetchResult(feed_url=feed_url, error=e)
            except Exception as e:
                logger.exception("Unexpected error fetching feed %s", feed_url)
                return FetchResult(feed_url=feed_url, error=e)

            self.cache[feed_url] = podcast
            return FetchResult(feed_url=feed_url, podcast=podcast)

    def _fetch(self, feed_url: str) -> Podcast:
        r = self.http.get(feed_url, accept=_FEED_ACCEPT)
        if not r.ok:
            raise TransportError(f"Failed to fetch feed: HTTP {r.status_code}")
        if not r.text or not r.text.strip():
            raise TransportError("Empty response")

        podcast = self._parse(feed_url, r.text)
        return merge_playback_state(podcast, self.store)

    def fetch_all_podcasts(
        self,
        force_refresh: bool = False,
        feed_urls: Iterable[str] | None = None,
    ) -> list[FetchResult]:
        urls = list(feed_urls) if feed_urls is not None else self.store.feeds

        def fetch(feed_url: str) -> FetchResult:
            return self.fetch_podcast(feed_url, force_refresh=force_refresh)

        if self.max_workers > 1 and len(urls) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                results = list(executor.map(fetch, urls))
        else:
            results = [fetch(feed_url) for feed_url in urls]

        failed = [r for r in results if not r.ok]
        if failed:
            logger.warning("%i of %i feeds failed", len(failed), len(results))
        return results

    def get_all_episodes(self, force_refresh: bool = False) -> list[tuple[Episode, Podcast]]:
        all_episodes: list[tuple[Episode, Podcast]] = []
        for result in self.fetch_all_podcasts(force_refresh=force_refresh):
            if not result.ok or result.podcast is None:
                continue
            for episode in result.podcast.episodes:
                all_episodes.append((episode, result.podcast))

        all_episodes.sort(key=lambda pair: pair[0].publish_date, reverse=True)
        return all_episodes

    def remove_feed(self, feed_url: str) -> None:
        if self.cache.remove(feed_url):
            logger.info("Evicted %s from cache", feed_url)

    def subscribed_feeds(self) -> list[str]:
        return self.store.feeds

    def subscribe_feed(self, feed_url: str) -> FetchResult:
        """
        Fetch feed_url and add it to the subscriptions only if it parses as a
        feed. The failed result is returned otherwise.
        """
        result = self.fetch_podcast(feed_url)
        if not result.ok:
            logger.error("Not subscribing to invalid feed %s", feed_url)
            return result

        if self.store.add_feed(feed_url):
            logger.info("Subscribed to %s", feed_url)
        else:
            logger.warning("Already subscribed to %s", feed_url)
        return result

    def unsubscribe_feed(self, feed_url: str) -> bool:
        removed = self.store.remove_feed(feed_url)
        self.remove_feed(feed_url)
        if removed:
            logger.info("Unsubscribed from %s", feed_url)
        return removed

    def save_playback_position(self, episode_id: str, position: int) -> None:
        self.store.set_position(episode_id, position)
        self._remerge_cached(episode_id)

    def playback_position(self, episode_id: str) -> int:
        return self.store.position(episode_id)

    def mark_as_played(self, episode_id: str) -> None:
        self.store.mark_played(episode_id)
        self._remerge_cached(episode_id)

    def is_played(self, episode_id: str) -> bool:
        return self.store.played(episode_id)

    def playback_state(self, episode_id: str) -> PlaybackState:
        return playback_state(self.store, episode_id)

    def search_podcasts(self, query: str) -> list[tuple[HTTPURL, str]]:
        return self.directory.search(query)

    def _remerge_cached(self, episode_id: str) -> None:
        # Cached entries carry a playback state snapshot, keep the ones that
        # hold this episode in step with the store.
        for feed_url in self.cache:
            with self.cache.lock_for(feed_url):
                podcast = self.cache[feed_url]
                if podcast is None or podcast.episode(episode_id) is None:
                    continue
                self.cache[feed_url] = merge_playback_state(podcast, self.store)
