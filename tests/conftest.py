from pathlib import Path

import pytest

from podcast_rss.session import Response, TransportError
from podcast_rss.store import Store


class FakeHTTP:
    """Canned responses by URL; records every request made."""

    def __init__(self) -> None:
        self.responses: dict[str, Response | Exception] = {}
        self.requests: list[str] = []

    def serve(self, url: str, text: str, status_code: int = 200) -> None:
        self.responses[url] = Response(status_code=status_code, text=text)

    def fail(self, url: str, error: Exception) -> None:
        self.responses[url] = error

    def get(self, url: str, accept: str | None = None) -> Response:
        self.requests.append(url)
        response = self.responses.get(url)
        if response is None:
            return Response(status_code=404, text="Not Found")
        if isinstance(response, Exception):
            raise response
        return response

    def count(self, url: str) -> int:
        return self.requests.count(url)


def rss_feed(title: str, items: list[tuple[str, str, str]]) -> str:
    """Build a feed from (guid, pubDate, audio url) triples."""
    item_xml = "".join(
        f"""
    <item>
      <title>{title} {guid}</title>
      <guid>{guid}</guid>
      <pubDate>{pub_date}</pubDate>
      <enclosure url="{audio_url}" length="1000" type="audio/mpeg"/>
    </item>"""
        for guid, pub_date, audio_url in items
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">
  <channel>
    <title>{title}</title>
    <description>{title} description</description>{item_xml}
  </channel>
</rss>"""


@pytest.fixture
def http() -> FakeHTTP:
    return FakeHTTP()


@pytest.fixture
def store(tmp_path: Path) -> Store:
    return Store(path=tmp_path / "data")


@pytest.fixture
def transport_error() -> TransportError:
    return TransportError("connection refused")
