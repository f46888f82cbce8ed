import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

import requests

logger = logging.getLogger("session")

USER_AGENT = "PodcastRSS/1.0"

# (connect, read) in seconds
DEFAULT_TIMEOUT: tuple[float, float] = (30, 30)


class TransportError(Exception):
    pass


class OfflineError(TransportError):
    pass


@dataclass
class Response:
    status_code: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class HTTPClient(Protocol):
    def get(self, url: str, accept: str | None = None) -> Response: ...


class Session:
    _session: requests.Session
    _timeout: tuple[float, float]
    _min_time_between_requests: timedelta
    _last_request_at: datetime = datetime.min
    _offline: bool

    def __init__(
        self,
        headers: dict[str, str] = {},
        timeout: tuple[float, float] = DEFAULT_TIMEOUT,
        min_time_between_requests: timedelta = timedelta(seconds=0),
        offline: bool = False,
    ) -> None:
        self._session = requests.Session()
        self._session.headers["User-Agent"] = USER_AGENT
        self._session.headers.update(headers)
        self._timeout = timeout
        self._min_time_between_requests = min_time_between_requests
        self._offline = offline

    @property
    def offline(self) -> bool:
        return self._offline

    def get(self, url: str, accept: str | None = None) -> Response:
        if self._offline is True:
            logger.error("Offline mode, not fetching %s", url)
            raise OfflineError(f"Offline, can't fetch {url}")

        headers: dict[str, str] = {}
        if accept:
            headers["Accept"] = accept

        self._throttle()
        logger.info("GET %s", url)
        try:
            r = self._session.get(
                url,
                headers=headers,
                timeout=self._timeout,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            raise TransportError(f"Request failed: {url}: {e}") from e

        if r.history:
            logger.debug("Redirected %s -> %s", url, r.url)

        return Response(status_code=r.status_code, text=r.text)

    def _throttle(self) -> None:
        seconds_to_wait = (
            self._last_request_at + self._min_time_between_requests - datetime.now()
        ).total_seconds()
        if seconds_to_wait > 0:
            logger.warning("Waiting %s seconds...", seconds_to_wait)
            time.sleep(seconds_to_wait)
        self._last_request_at = datetime.now()
