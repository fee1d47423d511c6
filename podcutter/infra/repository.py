import logging
from datetime import datetime
from typing import Callable, Iterator, Optional

from podcutter.core.config import settings
from podcutter.core.errors import EpisodeNotFoundError, FeedNotFoundError
from podcutter.core.models import Episode, EpisodeStatus, Feed
from podcutter.infra.database import get_db_connection

logger = logging.getLogger(__name__)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class EpisodeRepository:
    """
    Durable owner of feeds and their episodes.

    Status changes go through update_episode, which rejects transitions the
    episode state machine does not allow.
    """

    def __init__(self, db_path: str = None):
        self.db_path = db_path or settings.DB_PATH

    @staticmethod
    def _to_episode(row) -> Episode:
        data = dict(row)
        data.pop("feed_id", None)
        return Episode.model_validate(data)

    def walk_episodes(self, feed_id: str) -> Iterator[Episode]:
        """Yield the feed's episodes in store order (listing position, then id)."""
        with get_db_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM episodes WHERE feed_id = ? ORDER BY position ASC, id ASC",
                (feed_id,)
            ).fetchall()
        for row in rows:
            yield self._to_episode(row)

    def get_episode(self, feed_id: str, episode_id: str) -> Episode:
        with get_db_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM episodes WHERE feed_id = ? AND id = ?", (feed_id, episode_id)
            ).fetchone()
        if not row:
            raise EpisodeNotFoundError(feed_id, episode_id)
        return self._to_episode(row)

    def add_feed(self, feed_id: str, feed: Feed):
        """
        Upsert a freshly fetched listing.

        New episodes are inserted with status 'new'. Known episodes get their
        metadata refreshed but keep their status and size; cleaned episodes
        keep their scrubbed title and description.
        """
        with get_db_connection(self.db_path) as conn:
            try:
                conn.execute("""
                    INSERT INTO feeds (id, title, description, link, author, image_url, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        title = excluded.title,
                        description = excluded.description,
                        link = excluded.link,
                        author = excluded.author,
                        image_url = excluded.image_url,
                        updated_at = excluded.updated_at
                """, (feed_id, feed.title, feed.description, feed.link, feed.author, feed.image_url,
                      _ts(feed.updated_at or datetime.now())))

                for position, ep in enumerate(feed.episodes):
                    conn.execute("""
                        INSERT INTO episodes (feed_id, id, title, description, thumbnail, duration, video_url, pub_date, size, position, status)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, 'new')
                        ON CONFLICT(feed_id, id) DO UPDATE SET
                            title = CASE WHEN status = 'cleaned' THEN title ELSE excluded.title END,
                            description = CASE WHEN status = 'cleaned' THEN description ELSE excluded.description END,
                            thumbnail = excluded.thumbnail,
                            duration = excluded.duration,
                            video_url = excluded.video_url,
                            pub_date = excluded.pub_date,
                            position = excluded.position
                    """, (feed_id, ep.id, ep.title, ep.description, ep.thumbnail, ep.duration,
                          ep.video_url, _ts(ep.pub_date), position))
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def update_episode(self, feed_id: str, episode_id: str, mutate: Callable[[Episode], None]) -> Episode:
        """
        Read-modify-write a single episode in one transaction.

        Raises:
            EpisodeNotFoundError: the episode is unknown.
            IllegalTransitionError: `mutate` requested a status change the
                state machine does not allow. Nothing is written.
        """
        with get_db_connection(self.db_path) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT * FROM episodes WHERE feed_id = ? AND id = ?", (feed_id, episode_id)
                ).fetchone()
                if not row:
                    raise EpisodeNotFoundError(feed_id, episode_id)

                current = self._to_episode(row)
                updated = current.model_copy()
                mutate(updated)
                updated.status = EpisodeStatus(updated.status)
                current.status.check_transition(updated.status, episode_id)

                conn.execute("""
                    UPDATE episodes
                    SET title = ?, description = ?, thumbnail = ?, duration = ?, video_url = ?,
                        pub_date = ?, size = ?, status = ?
                    WHERE feed_id = ? AND id = ?
                """, (updated.title, updated.description, updated.thumbnail, updated.duration,
                      updated.video_url, _ts(updated.pub_date), updated.size, updated.status.value,
                      feed_id, episode_id))
                conn.commit()
                return updated
            except Exception:
                conn.rollback()
                raise

    def delete_episode(self, feed_id: str, episode_id: str):
        with get_db_connection(self.db_path) as conn:
            conn.execute("DELETE FROM episodes WHERE feed_id = ? AND id = ?", (feed_id, episode_id))
            conn.commit()

    def get_feed(self, feed_id: str) -> Feed:
        with get_db_connection(self.db_path) as conn:
            row = conn.execute("SELECT * FROM feeds WHERE id = ?", (feed_id,)).fetchone()
        if not row:
            raise FeedNotFoundError(f"feed {feed_id!r} not found")
        feed = Feed.model_validate(dict(row))
        feed.episodes = list(self.walk_episodes(feed_id))
        return feed
