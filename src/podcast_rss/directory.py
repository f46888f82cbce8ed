import json
import logging
from urllib.parse import urlencode

from podcast_rss.session import HTTPClient, TransportError
from podcast_rss.utils import HTTPURL

logger = logging.getLogger("directory")

_ITUNES_SEARCH_URL = "https://itunes.apple.com/search"

SAMPLE_FEEDS: list[tuple[HTTPURL, str]] = [
    (HTTPURL("https://feeds.simplecast.com/54nAGcIl"), "The Daily"),
    (HTTPURL("https://feeds.npr.org/510289/podcast.xml"), "Planet Money"),
    (HTTPURL("https://feeds.megaphone.fm/sciencevs"), "Science Vs"),
    (HTTPURL("https://rss.art19.com/smartless"), "SmartLess"),
    (HTTPURL("https://feeds.simplecast.com/qm_9xx0g"), "Crime Junkie"),
]


class ITunesDirectory:
    """Forwards podcast searches to the iTunes Search API."""

    def __init__(self, http: HTTPClient, limit: int = 20) -> None:
        self.http = http
        self.limit = limit

    def search(self, query: str) -> list[tuple[HTTPURL, str]]:
        query = query.strip()
        if not query:
            return []

        params = urlencode({"term": query, "media": "podcast", "limit": self.limit})
        try:
            r = self.http.get(f"{_ITUNES_SEARCH_URL}?{params}", accept="application/json")
        except TransportError as e:
            logger.error("Search failed for '%s': %s", query, e)
            return []

        if not r.ok or not r.text:
            logger.error("Search failed for '%s': HTTP %i", query, r.status_code)
            return []

        try:
            results = json.loads(r.text).get("results", [])
        except (json.JSONDecodeError, AttributeError) as e:
            logger.error("Invalid search response for '%s': %s", query, e)
            return []

        if not isinstance(results, list):
            logger.error("Invalid search results for '%s': %r", query, results)
            return []

        candidates: list[tuple[HTTPURL, str]] = []
        for result in results:
            if not isinstance(result, dict):
                logger.warning("Skipping search result: %r", result)
                continue
            feed_url = result.get("feedUrl", "")
            name = result.get("collectionName", "")
            if feed_url and name:
                candidates.append((HTTPURL(feed_url), name))

        logger.debug("Found %d results for '%s'", len(candidates), query)
        return candidates
