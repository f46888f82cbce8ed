import logging
import os
from contextlib import AbstractContextManager
from pathlib import Path
from types import TracebackType

import click
from prometheus_client import (
    CollectorRegistry,
    Gauge,
    generate_latest,
    write_to_textfile,
)

from podcast_rss.feed_cache import FeedCache
from podcast_rss.repository import PodcastRepository
from podcast_rss.session import Session
from podcast_rss.store import Store
from podcast_rss.utils import HTTPURL, EncryptionKey

logger = logging.getLogger("podcast-rss")


def _xdg_cache_home() -> Path:
    if "XDG_CACHE_HOME" in os.environ:
        return Path(os.environ["XDG_CACHE_HOME"])
    else:
        return Path.home() / ".cache"


def _xdg_data_home() -> Path:
    if "XDG_DATA_HOME" in os.environ:
        return Path(os.environ["XDG_DATA_HOME"])
    else:
        return Path.home() / ".local" / "share"


class Context(AbstractContextManager["Context"]):
    store: Store
    cache: FeedCache
    repository: PodcastRepository

    def __init__(
        self,
        session: Session,
        data_dir: Path,
        cache_path: Path,
        encryption_key: EncryptionKey | None,
        max_workers: int,
    ) -> None:
        self.store = Store(path=data_dir, encryption_key=encryption_key)
        self.cache = FeedCache(path=cache_path)
        self.repository = PodcastRepository(
            http=session,
            store=self.store,
            cache=self.cache,
            max_workers=max_workers,
        )

    def __enter__(self) -> "Context":
        logger.debug("Entering cli context")
        self.store.__enter__()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        logger.debug("Exiting cli context")
        self.store.__exit__(exc_type, exc_value, traceback)
        if exc_type is None:
            self.cache.save()


@click.group(chain=True)
@click.option(
    "--data-dir",
    envvar="PODCAST_RSS_DATA_DIR",
    default=_xdg_data_home() / "podcast-rss",
    show_default=True,
    type=click.Path(path_type=Path, dir_okay=True, file_okay=False, writable=True),
)
@click.option(
    "--cache-dir",
    default=_xdg_cache_home(),
    show_default=True,
    type=Path,
)
@click.option("--encryption-key", envvar="ENCRYPTION_KEY", default=None)
@click.option("--max-workers", type=int, default=1, show_default=True)
@click.option("--offline", is_flag=True)
@click.option("--verbose", "-v", is_flag=True)
@click.pass_context
def cli(
    ctx: click.Context,
    data_dir: Path,
    cache_dir: Path,
    encryption_key: str | None,
    max_workers: int,
    offline: bool,
    verbose: bool,
) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=log_level)

    context = Context(
        session=Session(offline=offline),
        data_dir=data_dir,
        cache_path=cache_dir / "podcast-rss.pickle",
        encryption_key=EncryptionKey(encryption_key) if encryption_key else None,
        max_workers=max_workers,
    )
    ctx.obj = ctx.with_resource(context)


@cli.command("subscribe")
@click.argument("feed_url")
@click.pass_obj
def subscribe(ctx: Context, feed_url: str) -> None:
    logger.info("[subscribe] %s", feed_url)
    result = ctx.repository.subscribe_feed(HTTPURL(feed_url))
    if result.ok and result.podcast:
        click.echo(f"subscribed\t{feed_url}\t{result.podcast.title}")
    else:
        click.echo(f"invalid feed\t{feed_url}\t{result.error}")


@cli.command("unsubscribe")
@click.argument("feed_url")
@click.pass_obj
def unsubscribe(ctx: Context, feed_url: str) -> None:
    logger.info("[unsubscribe] %s", feed_url)
    if not ctx.repository.unsubscribe_feed(feed_url):
        logger.warning("Not subscribed to %s", feed_url)


@cli.command("feeds")
@click.pass_obj
def feeds(ctx: Context) -> None:
    for feed_url in ctx.repository.subscribed_feeds():
        if podcast := ctx.cache[feed_url]:
            click.echo(f"{feed_url}\t{podcast.title}\t{podcast.unplayed_count} unplayed")
        else:
            click.echo(feed_url)


@cli.command("refresh")
@click.option("--force/--no-force", default=True, show_default=True)
@click.pass_obj
def refresh(ctx: Context, force: bool) -> None:
    logger.info("[refresh]")
    for result in ctx.repository.fetch_all_podcasts(force_refresh=force):
        if result.ok and result.podcast:
            click.echo(
                f"ok\t{result.feed_url}\t{result.podcast.title}"
                f"\t{len(result.podcast.episodes)} episodes"
            )
        else:
            click.echo(f"failed\t{result.feed_url}\t{result.error}")


@cli.command("episodes")
@click.option("--limit", type=int, default=20, show_default=True)
@click.option("--refresh", "force", is_flag=True)
@click.option("--unplayed", is_flag=True)
@click.pass_obj
def episodes(ctx: Context, limit: int, force: bool, unplayed: bool) -> None:
    pairs = ctx.repository.get_all_episodes(force_refresh=force)
    if unplayed:
        pairs = [(e, p) for e, p in pairs if not e.is_played]

    for episode, podcast in pairs[:limit]:
        state = "played" if episode.is_played else ""
        if episode.is_in_progress:
            state = f"at {episode.playback_position}s"
        click.echo(
            "\t".join(
                [
                    episode.publish_date_text,
                    podcast.title,
                    episode.title,
                    episode.formatted_duration,
                    state,
                    episode.id,
                ]
            )
        )


@cli.command("save-position")
@click.argument("episode_id")
@click.argument("seconds", type=int)
@click.pass_obj
def save_position(ctx: Context, episode_id: str, seconds: int) -> None:
    logger.info("[save-position] %s %i", episode_id, seconds)
    ctx.repository.save_playback_position(episode_id, seconds)


@cli.command("mark-played")
@click.argument("episode_id")
@click.pass_obj
def mark_played(ctx: Context, episode_id: str) -> None:
    logger.info("[mark-played] %s", episode_id)
    ctx.repository.mark_as_played(episode_id)


@cli.command("search")
@click.argument("query")
@click.pass_obj
def search(ctx: Context, query: str) -> None:
    for feed_url, name in ctx.repository.search_podcasts(query):
        click.echo(f"{name}\t{feed_url}")


@cli.command("metrics")
@click.option("--metrics-filename", type=click.Path(path_type=Path))
@click.pass_obj
def metrics(ctx: Context, metrics_filename: Path | None) -> None:
    registry = CollectorRegistry()

    episode_labelnames = ["feed_url", "played"]

    podcast_episode_count = Gauge(
        "podcast_episode_count",
        "Count of podcast episodes",
        labelnames=episode_labelnames,
        registry=registry,
    )
    podcast_episode_minutes = Gauge(
        "podcast_episode_minutes",
        "Minutes of podcast episodes",
        labelnames=episode_labelnames,
        registry=registry,
    )
    podcast_feed_up = Gauge(
        "podcast_feed_up",
        "Whether the last feed fetch succeeded",
        labelnames=["feed_url"],
        registry=registry,
    )

    logger.info("[metrics]")

    for result in ctx.repository.fetch_all_podcasts():
        podcast_feed_up.labels(feed_url=result.feed_url).set(1 if result.ok else 0)
        if not result.ok or result.podcast is None:
            continue

        for played in ["true", "false"]:
            podcast_episode_count.labels(feed_url=result.feed_url, played=played).set(0)
            podcast_episode_minutes.labels(feed_url=result.feed_url, played=played).set(0)

        for episode in result.podcast.episodes:
            played = "true" if episode.is_played else "false"
            podcast_episode_count.labels(feed_url=result.feed_url, played=played).inc()
            if episode.duration:
                podcast_episode_minutes.labels(
                    feed_url=result.feed_url,
                    played=played,
                ).inc(episode.duration / 60)

    for line in generate_latest(registry=registry).splitlines():
        logger.info(line.decode())

    if metrics_filename:
        logger.debug("Writing metrics to %s", metrics_filename)
        write_to_textfile(str(metrics_filename), registry)


if __name__ == "__main__":
    cli()
