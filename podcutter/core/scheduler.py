import logging
from typing import List, Optional

from podcutter.core.config import FeedConfig
from podcutter.core.errors import DownloadError, RateLimitedError, TranscodeError
from podcutter.core.filters import match_filters
from podcutter.core.models import DownloadOutcome, DownloadReport, Episode, EpisodeStatus
from podcutter.core.segments import delay_passed, is_passthrough, plan_keep_intervals, should_defer, should_query
from podcutter.core.utils import episode_name

logger = logging.getLogger(__name__)


def _mark(status: EpisodeStatus, size: Optional[int] = None):
    def mutate(episode: Episode):
        episode.status = status
        if size is not None:
            episode.size = size
    return mutate


class DownloadScheduler:
    """
    Downloads pending episodes of one feed, one at a time.

    Each candidate yields a DownloadOutcome. A RATE_LIMITED outcome stops the
    batch; the remaining candidates stay untouched for the next run.
    """

    def __init__(self, repo, storage, downloader, sponsorblock, media, now=None):
        self.repo = repo
        self.storage = storage
        self.downloader = downloader
        self.sponsorblock = sponsorblock
        self.media = media
        self.now = now

    def select(self, feed_config: FeedConfig) -> List[Episode]:
        """
        Build the download queue.

        Every new/error episode that is looked at consumes one unit of the
        page-size budget, whether or not it passes the filters.
        """
        budget = feed_config.page_size
        queue = []
        for episode in self.repo.walk_episodes(feed_config.id):
            if episode.status not in (EpisodeStatus.NEW, EpisodeStatus.ERROR):
                continue
            if budget <= 0:
                break
            budget -= 1

            if not match_filters(episode, feed_config.filters):
                continue

            logger.debug(f"[{feed_config.id}] adding {episode.id} ({episode.title!r}) to queue")
            queue.append(episode)
        return queue

    async def download_episodes(self, feed_config: FeedConfig) -> DownloadReport:
        logger.info(f"[{feed_config.id}] downloading episodes (page size {feed_config.page_size})")
        report = DownloadReport()

        queue = self.select(feed_config)
        report.queued = len(queue)
        if not queue:
            logger.info(f"[{feed_config.id}] no episodes to download")
            return report

        logger.info(f"[{feed_config.id}] download count: {len(queue)}")
        for idx, episode in enumerate(queue):
            outcome = await self.process(feed_config, episode, idx)
            report.record(outcome)
            if outcome is DownloadOutcome.RATE_LIMITED:
                logger.warning(f"[{feed_config.id}] rate limited, leaving {len(queue) - idx - 1} episode(s) for the next run")
                break

        logger.info(
            f"[{feed_config.id}] downloaded {report.downloaded}, skipped {report.skipped}, "
            f"deferred {report.deferred}, failed {report.failed} episode(s)"
        )
        return report

    async def process(self, feed_config: FeedConfig, episode: Episode, idx: int = 0) -> DownloadOutcome:
        feed_id = feed_config.id
        name = episode_name(feed_config, episode)
        tag = f"[{feed_id}][{idx}][{episode.id}]"

        # Already on disk: just record it
        try:
            size = await self.storage.size(feed_id, name)
        except FileNotFoundError:
            pass
        else:
            logger.info(f"{tag} episode already exists on disk")
            self.repo.update_episode(feed_id, episode.id, _mark(EpisodeStatus.DOWNLOADED, size))
            return DownloadOutcome.SKIPPED

        mode = feed_config.sponsorblock_mode
        passed = delay_passed(episode.pub_date, feed_config.sponsorblock_delay, self.now() if self.now else None)

        segments = []
        if should_query(mode, passed):
            segments = await self.sponsorblock.get_segments(episode.id)

        if should_defer(mode, len(segments), passed):
            logger.info(f"{tag} sponsorblock mode is {mode} ({len(segments)} segment(s), delay passed: {passed}), skipping for now")
            return DownloadOutcome.DEFERRED

        logger.info(f"{tag} downloading episode {episode.video_url}")
        try:
            temp_file = await self.downloader.download(feed_config, episode)
        except RateLimitedError as e:
            logger.warning(f"{tag} {e}")
            return DownloadOutcome.RATE_LIMITED
        except DownloadError as e:
            logger.error(f"{tag} download failed: {e}")
            self.repo.update_episode(feed_id, episode.id, _mark(EpisodeStatus.ERROR))
            return DownloadOutcome.FAILED

        with temp_file:
            keeps = plan_keep_intervals(segments, feed_config.sponsorblock_categories.policy())
            if is_passthrough(keeps):
                logger.debug(f"{tag} copying file")
                size = await self.storage.create(feed_id, name, temp_file.path)
            else:
                logger.debug(f"{tag} keep segments are {keeps}")
                try:
                    async with self.media.trimmed(temp_file.path, keeps, feed_config.extension, episode.id) as processed:
                        size = await self.storage.create(feed_id, name, processed)
                except TranscodeError as e:
                    logger.error(f"{tag} trimming failed: {e}")
                    self.repo.update_episode(feed_id, episode.id, _mark(EpisodeStatus.ERROR))
                    return DownloadOutcome.FAILED

        self.repo.update_episode(feed_id, episode.id, _mark(EpisodeStatus.DOWNLOADED, size))
        logger.info(f"{tag} successfully downloaded file ({size} bytes)")
        return DownloadOutcome.DOWNLOADED
