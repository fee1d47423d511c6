import logging

from podcutter.core.config import FeedConfig
from podcutter.core.models import EpisodeStatus, Feed

logger = logging.getLogger(__name__)


class Reconciler:
    def __init__(self, repo, listing_provider):
        self.repo = repo
        self.listing_provider = listing_provider

    async def update_feed(self, feed_config: FeedConfig) -> Feed:
        """Pull the remote listing for new episodes and save them to the store."""
        logger.debug(f"[{feed_config.id}] building feed")
        listing = await self.listing_provider.build(feed_config)
        logger.debug(f"[{feed_config.id}] received {len(listing.episodes)} episode(s) for {listing.title!r}")
        self.reconcile(feed_config.id, listing)
        return listing

    def reconcile(self, feed_id: str, listing: Feed):
        """
        Merge `listing` into the store, then drop unresolved episodes that vanished upstream.

        Only 'new' and 'error' episodes are removal candidates, and the
        candidate set is snapshotted before the merge. Downloaded and cleaned
        episodes survive upstream deletion.
        """
        candidates = {
            episode.id
            for episode in self.repo.walk_episodes(feed_id)
            if episode.status in (EpisodeStatus.NEW, EpisodeStatus.ERROR)
        }

        self.repo.add_feed(feed_id, listing)

        for episode in listing.episodes:
            candidates.discard(episode.id)

        for episode_id in sorted(candidates):
            logger.info(f"[{feed_id}] removing episode {episode_id!r}, no longer in the source listing")
            self.repo.delete_episode(feed_id, episode_id)

        logger.debug(f"[{feed_id}] successfully saved updates to storage")
