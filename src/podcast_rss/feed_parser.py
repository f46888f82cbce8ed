import logging
from collections.abc import Callable

from bs4 import BeautifulSoup, Tag

from podcast_rss.models import Episode, Podcast, sort_episodes
from podcast_rss.timeparse import parse_datetime, parse_duration
from podcast_rss.utils import clean_html

logger = logging.getLogger("feed_parser")

_AUDIO_LINK_EXTNAMES = (".mp3", ".m4a")


class MalformedDocumentError(Exception):
    pass


def _qualified_name(tag: Tag) -> str:
    if tag.prefix:
        return f"{tag.prefix}:{tag.name}"
    return tag.name


class _Children:
    """
    Direct child elements of a channel or item, grouped by qualified name
    ("itunes:image" and "image" are different keys).
    """

    _tags: dict[str, list[Tag]]

    def __init__(self, parent: Tag) -> None:
        self._tags = {}
        for child in parent.find_all(recursive=False):
            self._tags.setdefault(_qualified_name(child), []).append(child)

    def all(self, name: str) -> list[Tag]:
        return self._tags.get(name, [])

    def text(self, name: str) -> str | None:
        for tag in self.all(name):
            if text := tag.get_text().strip():
                return text
        return None

    def attr(self, name: str, attr: str) -> str | None:
        for tag in self.all(name):
            value = tag.attrs.get(attr)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None

    def nested_text(self, name: str, child_name: str) -> str | None:
        for tag in self.all(name):
            if text := _Children(tag).text(child_name):
                return text
        return None


_Rule = Callable[[_Children], str | None]


def _first_non_empty(children: _Children, rules: list[_Rule]) -> str | None:
    for rule in rules:
        if value := rule(children):
            return value
    return None


def _cleaned_text(name: str) -> _Rule:
    def rule(children: _Children) -> str | None:
        if text := children.text(name):
            return clean_html(text) or None
        return None

    return rule


# Feeds that use itunes: elements without declaring the namespace come out of
# the parser with the prefix dropped, so each itunes: name is followed by its
# local name.

_CHANNEL_AUTHOR_RULES: list[_Rule] = [
    lambda c: c.text("itunes:author"),
    lambda c: c.text("author"),
]

_CHANNEL_IMAGE_RULES: list[_Rule] = [
    lambda c: c.attr("itunes:image", "href"),
    lambda c: c.attr("image", "href"),
    lambda c: c.nested_text("image", "url"),
]

_CHANNEL_DESCRIPTION_RULES: list[_Rule] = [
    _cleaned_text("description"),
    _cleaned_text("itunes:summary"),
    _cleaned_text("summary"),
]

_ITEM_DESCRIPTION_RULES: list[_Rule] = [
    _cleaned_text("description"),
    _cleaned_text("itunes:summary"),
    _cleaned_text("summary"),
]

_ITEM_IMAGE_RULES: list[_Rule] = [
    lambda c: c.attr("itunes:image", "href"),
    lambda c: c.attr("image", "href"),
]

_ITEM_DURATION_RULES: list[_Rule] = [
    lambda c: c.text("itunes:duration"),
    lambda c: c.text("duration"),
]


def parse_feed(feed_url: str, document: str | bytes) -> Podcast:
    """
    Parse an RSS 2.0 podcast feed, including the iTunes extensions.

    Raises MalformedDocumentError when there is no channel element to read.
    Missing or unparsable fields fall back to defaults and items without a
    resolvable audio URL are skipped.
    """
    soup = BeautifulSoup(document, "xml")

    channel = soup.find("channel")
    if not isinstance(channel, Tag):
        raise MalformedDocumentError(f"No channel element in feed: {feed_url}")

    children = _Children(channel)

    episodes: list[Episode] = []
    items = children.all("item")
    for item in items:
        if episode := _parse_episode(item):
            episodes.append(episode)

    podcast = Podcast(
        feed_url=feed_url,
        title=children.text("title") or "",
        description=_first_non_empty(children, _CHANNEL_DESCRIPTION_RULES) or "",
        image_url=_first_non_empty(children, _CHANNEL_IMAGE_RULES),
        author=_first_non_empty(children, _CHANNEL_AUTHOR_RULES),
        link=children.text("link"),
        language=children.text("language"),
        episodes=sort_episodes(episodes),
    )
    podcast._validate()

    skipped = len(items) - len(episodes)
    logger.info(
        "Parsed '%s' with %d episodes (%d skipped)",
        podcast.title,
        len(episodes),
        skipped,
    )
    return podcast


def _parse_episode(item: Tag) -> Episode | None:
    children = _Children(item)
    title = children.text("title") or ""

    audio = _resolve_audio(children)
    if audio is None:
        logger.debug("Skipping item without audio: %s", title)
        return None
    audio_url, file_size = audio

    duration_text = _first_non_empty(children, _ITEM_DURATION_RULES)
    pub_date_text = children.text("pubDate")

    return Episode(
        title=title,
        description=_first_non_empty(children, _ITEM_DESCRIPTION_RULES) or "",
        audio_url=audio_url,
        image_url=_first_non_empty(children, _ITEM_IMAGE_RULES),
        duration=parse_duration(duration_text),
        duration_text=duration_text,
        published_at=parse_datetime(pub_date_text),
        file_size=file_size,
        guid=children.text("guid"),
    )


def _resolve_audio(children: _Children) -> tuple[str, int] | None:
    # The last qualifying enclosure wins.
    audio: tuple[str, int] | None = None
    for enclosure in children.all("enclosure"):
        mime_type = enclosure.attrs.get("type", "").strip()
        if mime_type and not mime_type.startswith("audio/"):
            continue
        url = enclosure.attrs.get("url", "").strip()
        if not url:
            continue
        audio = url, _parse_length(enclosure.attrs.get("length", ""))
    if audio is not None:
        return audio

    for link in children.all("link"):
        text = link.get_text().strip()
        if text.lower().endswith(_AUDIO_LINK_EXTNAMES):
            return text, 0

    return None


def _parse_length(text: str) -> int:
    try:
        return max(int(text.strip()), 0)
    except ValueError:
        return 0
