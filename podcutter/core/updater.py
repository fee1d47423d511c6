import asyncio
import logging
import time
from typing import Dict, Optional

from podcutter.core.cleaner import RetentionCleaner
from podcutter.core.config import AppConfig, FeedConfig, settings
from podcutter.core.errors import CleanupError, UpdateError
from podcutter.core.models import DownloadReport
from podcutter.core.reconciler import Reconciler
from podcutter.core.rss_gen import OPML_NAME, FeedBuilder, feed_xml_name
from podcutter.core.scheduler import DownloadScheduler

logger = logging.getLogger(__name__)


class Updater:
    """
    Runs the update pipeline for a feed:

    reconcile listing -> download episodes -> feed XML -> OPML -> retention cleanup

    Any failure before cleanup aborts the run and is raised as UpdateError with
    the stage name. Cleanup failures are only logged.
    """

    def __init__(self, config: AppConfig, repo, storage, listing_provider, downloader, sponsorblock, media):
        self.config = config
        self.repo = repo
        self.storage = storage
        self.reconciler = Reconciler(repo, listing_provider)
        self.scheduler = DownloadScheduler(repo, storage, downloader, sponsorblock, media)
        self.cleaner = RetentionCleaner(repo, storage)
        self.builder = FeedBuilder(config.server.hostname)
        self._last_run: Dict[str, float] = {}

    async def update(self, feed_config: FeedConfig) -> DownloadReport:
        logger.info(
            f"-> updating {feed_config.url} (feed {feed_config.id}, format {feed_config.format}, "
            f"sponsorblock {feed_config.sponsorblock_mode})"
        )
        started = time.monotonic()

        try:
            await self.reconciler.update_feed(feed_config)
        except Exception as e:
            raise UpdateError(feed_config.id, "update", e) from e

        try:
            report = await self.scheduler.download_episodes(feed_config)
        except Exception as e:
            raise UpdateError(feed_config.id, "download", e) from e

        try:
            await self.build_xml(feed_config)
        except Exception as e:
            raise UpdateError(feed_config.id, "xml build", e) from e

        try:
            await self.build_opml()
        except Exception as e:
            raise UpdateError(feed_config.id, "opml build", e) from e

        try:
            await self.cleaner.cleanup(feed_config)
        except CleanupError as e:
            logger.error(f"[{feed_config.id}] cleanup failed: {e}")

        elapsed = time.monotonic() - started
        logger.info(f"[{feed_config.id}] successfully updated feed in {elapsed:.1f}s")
        return report

    async def build_xml(self, feed_config: FeedConfig):
        feed = self.repo.get_feed(feed_config.id)
        logger.debug(f"[{feed_config.id}] building podcast feed")
        xml = self.builder.build_xml(feed, feed_config)
        await self.storage.create("", feed_xml_name(feed_config.id), xml.encode("utf-8"))

    async def build_opml(self):
        logger.debug("building podcast OPML")
        feeds = []
        for feed_config in self.config.feeds.values():
            if not feed_config.opml:
                continue
            try:
                feeds.append((self.repo.get_feed(feed_config.id), feed_config))
            except Exception as e:
                # Not fetched yet; it will show up once its first update ran
                logger.debug(f"[{feed_config.id}] skipping in OPML: {e}")
        opml = self.builder.build_opml(feeds)
        await self.storage.create("", OPML_NAME, opml.encode("utf-8"))

    def due_feeds(self, now: Optional[float] = None):
        now = time.monotonic() if now is None else now
        for feed_config in self.config.feeds.values():
            last = self._last_run.get(feed_config.id)
            if last is None or now - last >= feed_config.update_period.total_seconds():
                yield feed_config

    async def run_loop(self, stop_event: Optional[asyncio.Event] = None, interval: Optional[float] = None):
        """Update every feed whose update period elapsed, until `stop_event` is set."""
        stop_event = stop_event or asyncio.Event()
        interval = settings.CHECK_INTERVAL_SECONDS if interval is None else interval

        while not stop_event.is_set():
            for feed_config in list(self.due_feeds()):
                if stop_event.is_set():
                    break
                self._last_run[feed_config.id] = time.monotonic()
                try:
                    await self.update(feed_config)
                except UpdateError as e:
                    logger.error(f"Failed to update feed: {e}")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
