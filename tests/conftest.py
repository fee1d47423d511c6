"""Shared fixtures and fakes for the pipeline tests."""

import os
import tempfile
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List

import pytest

from podcutter.core.config import AppConfig, FeedConfig
from podcutter.core.downloader import TempFile
from podcutter.core.models import Episode, EpisodeStatus, Feed, SponsorSegment
from podcutter.core.utils import episode_name
from podcutter.infra.database import init_db
from podcutter.infra.repository import EpisodeRepository
from podcutter.infra.storage import LocalStorage

FEED_ID = "test"
BASE_DATE = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeDownloader:
    """Writes `content` to a fresh temp dir, or raises the error configured for an episode."""

    def __init__(self, root: Path, content: bytes = b"raw-media-bytes"):
        self.root = root
        self.content = content
        self.errors: Dict[str, Exception] = {}
        self.calls: List[str] = []
        self.handed_out: List[TempFile] = []

    async def download(self, feed_config, episode):
        self.calls.append(episode.id)
        if episode.id in self.errors:
            raise self.errors[episode.id]
        tmp_dir = tempfile.mkdtemp(dir=self.root)
        path = os.path.join(tmp_dir, episode_name(feed_config, episode))
        with open(path, "wb") as f:
            f.write(self.content)
        temp = TempFile(path, tmp_dir)
        self.handed_out.append(temp)
        return temp


class FakeSponsorBlock:
    def __init__(self):
        self.segments: Dict[str, List[SponsorSegment]] = {}
        self.calls: List[str] = []

    async def get_segments(self, video_id):
        self.calls.append(video_id)
        return self.segments.get(video_id, [])


class FakeMedia:
    def __init__(self, output: bytes = b"trimmed"):
        self.output = output
        self.error = None
        self.calls = []

    @asynccontextmanager
    async def trimmed(self, input_path, keeps, ext, episode_id):
        self.calls.append((episode_id, list(keeps), ext))
        if self.error is not None:
            raise self.error
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = os.path.join(tmp_dir, f"processed-{episode_id}.{ext}")
            with open(path, "wb") as f:
                f.write(self.output)
            yield path


class FakeListingProvider:
    def __init__(self, feed: Feed = None):
        self.feed = feed
        self.error = None

    async def build(self, feed_config):
        if self.error is not None:
            raise self.error
        return self.feed


@pytest.fixture
def repo(tmp_path: Path) -> EpisodeRepository:
    db_path = str(tmp_path / "podcutter.db")
    init_db(db_path)
    return EpisodeRepository(db_path)


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorage:
    return LocalStorage(str(tmp_path / "feeds"))


@pytest.fixture
def downloader(tmp_path: Path) -> FakeDownloader:
    root = tmp_path / "downloads"
    root.mkdir()
    return FakeDownloader(root)


@pytest.fixture
def sponsorblock() -> FakeSponsorBlock:
    return FakeSponsorBlock()


@pytest.fixture
def media() -> FakeMedia:
    return FakeMedia()


@pytest.fixture
def make_app_config() -> Callable[..., AppConfig]:
    def factory(sponsorblock=None, **feed_overrides) -> AppConfig:
        data = {"feeds": {FEED_ID: {"url": "https://example.com/feed.xml", "format": "audio", **feed_overrides}}}
        if sponsorblock is not None:
            data["sponsorblock"] = sponsorblock
        return AppConfig.model_validate(data)
    return factory


@pytest.fixture
def make_feed_config(make_app_config) -> Callable[..., FeedConfig]:
    def factory(**overrides) -> FeedConfig:
        return make_app_config(**overrides).feeds[FEED_ID]
    return factory


@pytest.fixture
def make_episode() -> Callable[..., Episode]:
    def factory(n: int, **overrides) -> Episode:
        data = {
            "id": f"ep{n}",
            "title": f"Episode {n}",
            "description": f"Description of episode {n}",
            "video_url": f"https://example.com/media/ep{n}.mp3",
            "pub_date": BASE_DATE + timedelta(days=n),
        }
        data.update(overrides)
        return Episode(**data)
    return factory


@pytest.fixture
def seed(repo, make_episode) -> Callable[..., List[Episode]]:
    """Store episodes 0..count-1 and optionally force them into a status."""

    def factory(count: int, status: EpisodeStatus = EpisodeStatus.NEW, size: int = 0) -> List[Episode]:
        episodes = [make_episode(i) for i in range(count)]
        repo.add_feed(FEED_ID, Feed(id=FEED_ID, title="Test feed", episodes=episodes))
        if status != EpisodeStatus.NEW:
            for ep in episodes:
                def mutate(e):
                    e.status = status
                    e.size = size
                repo.update_episode(FEED_ID, ep.id, mutate)
        return episodes

    return factory


@pytest.fixture
def statuses(repo) -> Callable[[], Dict[str, EpisodeStatus]]:
    def snapshot(feed_id: str = FEED_ID) -> Dict[str, EpisodeStatus]:
        return {e.id: e.status for e in repo.walk_episodes(feed_id)}
    return snapshot


@pytest.fixture
def listing_provider() -> FakeListingProvider:
    return FakeListingProvider()
