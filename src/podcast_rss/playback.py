import logging
from dataclasses import dataclass, replace
from typing import Protocol

from podcast_rss.models import Podcast

logger = logging.getLogger("playback")


@dataclass(frozen=True)
class PlaybackState:
    position: int = 0
    played: bool = False

    @property
    def is_in_progress(self) -> bool:
        return self.position > 0 and not self.played


class StateLookup(Protocol):
    def position(self, episode_id: str) -> int: ...

    def played(self, episode_id: str) -> bool: ...


def playback_state(lookup: StateLookup, episode_id: str) -> PlaybackState:
    return PlaybackState(
        position=lookup.position(episode_id),
        played=lookup.played(episode_id),
    )


def merge_playback_state(podcast: Podcast, lookup: StateLookup) -> Podcast:
    """
    Return a copy of podcast whose episodes carry the persisted playback
    position and played flag, looked up by each episode's effective id.
    """
    episodes = []
    for episode in podcast.episodes:
        state = playback_state(lookup, episode.id)
        episodes.append(
            replace(
                episode,
                playback_position=state.position,
                is_played=state.played,
            )
        )
    logger.debug("Merged playback state into %d episodes", len(episodes))
    return podcast.with_episodes(episodes)
