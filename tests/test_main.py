from pathlib import Path

import pytest
from click.testing import CliRunner, Result

from podcast_rss.main import cli
from podcast_rss.store import Store
from podcast_rss.utils import generate_encryption_key

from .conftest import FakeHTTP, rss_feed

_FEED_A = "https://a.example.com/feed.xml"
_FEED_B = "https://b.example.com/feed.xml"
_MISSING_FEED = "https://missing.example.com/feed.xml"


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def invoke(
    http: FakeHTTP, data_dir: Path, cache_dir: Path, monkeypatch: pytest.MonkeyPatch
):
    monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
    monkeypatch.setattr("podcast_rss.main.Session", lambda **kwargs: http)

    http.serve(
        _FEED_A,
        rss_feed(
            "Show A",
            [
                ("a-1", "Mon, 01 Jan 2024 12:00:00 +0000", "https://a.example.com/1.mp3"),
                ("a-2", "Wed, 03 Jan 2024 12:00:00 +0000", "https://a.example.com/2.mp3"),
            ],
        ),
    )
    http.serve(
        _FEED_B,
        rss_feed(
            "Show B",
            [("b-1", "Tue, 02 Jan 2024 12:00:00 +0000", "https://b.example.com/1.mp3")],
        ),
    )

    runner = CliRunner()

    def _invoke(*args: str) -> Result:
        result = runner.invoke(
            cli,
            ["--data-dir", str(data_dir), "--cache-dir", str(cache_dir), *args],
        )
        assert result.exit_code == 0, result.output
        return result

    return _invoke


def test_subscribe_and_feeds(invoke) -> None:
    lines = invoke("subscribe", _FEED_A, "subscribe", _FEED_B).output.splitlines()
    assert f"subscribed\t{_FEED_A}\tShow A" in lines
    assert f"subscribed\t{_FEED_B}\tShow B" in lines

    lines = invoke("feeds").output.splitlines()
    assert f"{_FEED_A}\tShow A\t2 unplayed" in lines
    assert f"{_FEED_B}\tShow B\t1 unplayed" in lines
    assert lines.index(f"{_FEED_A}\tShow A\t2 unplayed") < lines.index(
        f"{_FEED_B}\tShow B\t1 unplayed"
    )


def test_subscribe_rejects_invalid_feed(invoke, data_dir: Path) -> None:
    lines = invoke("subscribe", _MISSING_FEED, "subscribe", _FEED_A).output.splitlines()
    assert f"invalid feed\t{_MISSING_FEED}\tFailed to fetch feed: HTTP 404" in lines

    with Store(path=data_dir) as store:
        assert store.feeds == [_FEED_A]


def test_subscribe_offline(data_dir: Path, tmp_path: Path) -> None:
    result = CliRunner().invoke(
        cli,
        [
            "--offline",
            "--data-dir",
            str(data_dir),
            "--cache-dir",
            str(tmp_path / "cache"),
            "subscribe",
            _FEED_A,
        ],
    )
    assert result.exit_code == 0, result.output
    assert (
        f"invalid feed\t{_FEED_A}\tOffline, can't fetch {_FEED_A}"
        in result.output.splitlines()
    )

    with Store(path=data_dir) as store:
        assert store.feeds == []


def test_unsubscribe(invoke, data_dir: Path) -> None:
    invoke("subscribe", _FEED_A, "subscribe", _FEED_B)
    invoke("unsubscribe", _FEED_A)

    with Store(path=data_dir) as store:
        assert store.feeds == [_FEED_B]


def test_refresh_reports_failures(invoke, http: FakeHTTP) -> None:
    invoke("subscribe", _FEED_A, "subscribe", _FEED_B)
    http.serve(_FEED_B, "", status_code=503)

    lines = invoke("refresh").output.splitlines()
    assert f"ok\t{_FEED_A}\tShow A\t2 episodes" in lines
    assert f"failed\t{_FEED_B}\tFailed to fetch feed: HTTP 503" in lines
    assert http.count(_FEED_A) == 2


def test_save_position_and_mark_played(invoke, data_dir: Path) -> None:
    invoke("save-position", "a-1", "120", "mark-played", "a-2")

    with Store(path=data_dir) as store:
        assert store.position("a-1") == 120
        assert store.played("a-2")
        assert not store.played("a-1")


def test_episodes_from_cache(invoke, http: FakeHTTP) -> None:
    invoke("subscribe", _FEED_A)

    lines = invoke("save-position", "a-1", "120", "episodes").output.splitlines()
    assert "Jan 3, 2024\tShow A\tShow A a-2\t\t\ta-2" in lines
    assert "Jan 1, 2024\tShow A\tShow A a-1\t\tat 120s\ta-1" in lines

    lines = invoke("mark-played", "a-2", "episodes", "--unplayed").output.splitlines()
    assert not any(line.endswith("\ta-2") for line in lines)
    assert any(line.endswith("\ta-1") for line in lines)

    assert http.count(_FEED_A) == 1


def test_encrypted_feeds(invoke, data_dir: Path) -> None:
    key = generate_encryption_key()
    invoke("--encryption-key", key, "subscribe", _FEED_A)

    assert "a.example.com" not in (data_dir / "feeds.csv").read_text()

    with Store(path=data_dir, encryption_key=key) as store:
        assert store.feeds == [_FEED_A]


def test_metrics(invoke, tmp_path: Path) -> None:
    invoke("subscribe", _FEED_A)

    metrics_filename = tmp_path / "podcast.prom"
    invoke("mark-played", "a-1", "metrics", "--metrics-filename", str(metrics_filename))

    contents = metrics_filename.read_text()
    assert f'podcast_feed_up{{feed_url="{_FEED_A}"}} 1.0' in contents
    assert (
        f'podcast_episode_count{{feed_url="{_FEED_A}",played="true"}} 1.0' in contents
    )
    assert (
        f'podcast_episode_count{{feed_url="{_FEED_A}",played="false"}} 1.0' in contents
    )
