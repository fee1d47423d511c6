import logging
from datetime import datetime, timezone

from podcutter.core.config import FeedConfig
from podcutter.core.errors import CleanupError
from podcutter.core.models import Episode, EpisodeStatus
from podcutter.core.utils import episode_name

logger = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _scrub(episode: Episode):
    episode.status = EpisodeStatus.CLEANED
    episode.title = ""
    episode.description = ""


class RetentionCleaner:
    def __init__(self, repo, storage):
        self.repo = repo
        self.storage = storage

    async def cleanup(self, feed_config: FeedConfig) -> int:
        """
        Keep only the `clean.keep_last` newest downloaded episodes.

        Older ones have their media deleted and are marked cleaned with their
        title and description cleared. Failures don't stop the pass; they are
        raised together as a CleanupError at the end.

        Returns the number of episodes cleaned.
        """
        feed_id = feed_config.id
        count = feed_config.clean.keep_last

        if count < 1:
            logger.info(f"[{feed_id}] nothing to clean")
            return 0

        logger.info(f"[{feed_id}] running cleaner (keep last {count})")
        downloaded = [
            episode for episode in self.repo.walk_episodes(feed_id)
            if episode.status == EpisodeStatus.DOWNLOADED
        ]
        if len(downloaded) <= count:
            return 0

        downloaded.sort(key=lambda e: e.pub_date or _OLDEST, reverse=True)

        errors = []
        cleaned = 0
        for episode in downloaded[count:]:
            logger.info(f"[{feed_id}] deleting {episode.id!r} ({episode.title!r})")

            try:
                await self.storage.delete(feed_id, episode_name(feed_config, episode))
            except Exception as e:
                errors.append(Exception(f"failed to delete episode {episode.id}: {e}"))
                continue

            try:
                self.repo.update_episode(feed_id, episode.id, _scrub)
            except Exception as e:
                errors.append(Exception(f"failed to set state for cleaned episode {episode.id}: {e}"))
                continue
            cleaned += 1

        if errors:
            raise CleanupError(errors)
        return cleaned
