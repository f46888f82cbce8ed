import logging
import sys
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from podcast_rss.timeparse import format_display_date, format_duration

logger = logging.getLogger("models")

_RAISE_VALIDATION_ERRORS = "pytest" in sys.modules


@dataclass(frozen=True)
class Episode:
    title: str
    description: str
    audio_url: str
    image_url: str | None = None
    duration: int = 0
    duration_text: str | None = None
    published_at: datetime | None = None
    file_size: int = 0
    is_played: bool = False
    playback_position: int = 0
    guid: str | None = None

    def __post_init__(self) -> None:
        if not self.audio_url:
            raise ValueError(f"Episode without audio URL: {self.title!r}")

    @property
    def id(self) -> str:
        """
        Effective identifier: the feed's GUID, or the audio URL when the feed
        doesn't provide one. Playback state is keyed by this value.
        """
        return self.guid or self.audio_url

    @property
    def publish_date(self) -> int:
        if self.published_at is None:
            return 0
        return int(self.published_at.timestamp())

    @property
    def publish_date_text(self) -> str:
        return format_display_date(self.publish_date)

    @property
    def formatted_duration(self) -> str:
        if self.duration_text:
            return self.duration_text
        return format_duration(self.duration)

    @property
    def formatted_file_size(self) -> str:
        if self.file_size <= 0:
            return ""
        kb = self.file_size / 1024
        mb = kb / 1024
        if mb >= 1:
            return f"{mb:.1f} MB"
        else:
            return f"{kb:.0f} KB"

    @property
    def is_in_progress(self) -> bool:
        return self.playback_position > 0 and not self.is_played


def sort_episodes(episodes: Iterable[Episode]) -> tuple[Episode, ...]:
    # sorted() is stable, so episodes sharing a date (including the unknown
    # date sentinel) keep their feed order.
    return tuple(sorted(episodes, key=lambda e: e.publish_date, reverse=True))


@dataclass(frozen=True)
class Podcast:
    feed_url: str
    title: str
    description: str
    image_url: str | None = None
    author: str | None = None
    link: str | None = None
    language: str | None = None
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    episodes: tuple[Episode, ...] = ()

    def with_episodes(self, episodes: Iterable[Episode]) -> "Podcast":
        return replace(self, episodes=sort_episodes(episodes))

    def episode(self, episode_id: str) -> Episode | None:
        for episode in self.episodes:
            if episode.id == episode_id:
                return episode
        return None

    @property
    def unplayed_count(self) -> int:
        return len([e for e in self.episodes if not e.is_played])

    def _validate(self) -> None:
        try:
            assert self.feed_url, "podcast must have a feed URL"
            dates = [e.publish_date for e in self.episodes]
            assert dates == sorted(dates, reverse=True), "episodes out of order"
            ids = [e.id for e in self.episodes]
            if len(set(ids)) != len(ids):
                logger.warning("Duplicate episode identifiers in %s", self.feed_url)
        except AssertionError as e:
            logger.error(e)
            if _RAISE_VALIDATION_ERRORS:
                raise e
