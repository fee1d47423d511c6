import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import feedparser

from podcutter.core.config import FeedConfig
from podcutter.core.errors import ListingError
from podcutter.core.models import Episode, Feed

logger = logging.getLogger(__name__)


def parse_duration(itunes_duration) -> int:
    """Parse an itunes:duration value ("1:02:03", "62:03" or "3723") into seconds."""
    if not itunes_duration:
        return 0
    try:
        if ':' in itunes_duration:
            parts = itunes_duration.split(':')
            if len(parts) == 3:
                h, m, s = map(int, parts)
                return h * 3600 + m * 60 + s
            elif len(parts) == 2:
                m, s = map(int, parts)
                return m * 60 + s
            return 0
        return int(itunes_duration)
    except ValueError:
        return 0


def _parsed_time(entry, key: str) -> Optional[datetime]:
    value = entry.get(key)
    if not value:
        return None
    return datetime(*value[:6], tzinfo=timezone.utc)


def _thumbnail(entry) -> Optional[str]:
    thumbs = entry.get('media_thumbnail') or []
    if thumbs and thumbs[0].get('url'):
        return thumbs[0]['url']
    image = entry.get('image')
    if image and image.get('href'):
        return image['href']
    return None


class RSSListingProvider:
    """
    Builds a listing from an RSS/Atom feed.

    YouTube channel and playlist feeds are supported: their entries carry a
    yt:videoId which becomes the episode ID (and the SponsorBlock video ID).
    For podcast feeds the audio/video enclosure is the source locator.
    """

    async def build(self, feed_config: FeedConfig) -> Feed:
        d = await asyncio.to_thread(feedparser.parse, feed_config.url)
        if d.bozo and not d.entries:
            raise ListingError(f"Invalid feed {feed_config.url}: {d.bozo_exception}")
        return self.parse(feed_config, d)

    def parse(self, feed_config: FeedConfig, d) -> Feed:
        info = d.get('feed', {})

        image_url = None
        if info.get('image') and info['image'].get('href'):
            image_url = info['image']['href']

        feed = Feed(
            id=feed_config.id,
            title=info.get('title', feed_config.id),
            description=info.get('summary', info.get('description', '')),
            link=info.get('link', feed_config.url),
            author=info.get('author'),
            image_url=image_url,
            updated_at=_parsed_time(info, 'updated_parsed'),
        )

        for entry in d.entries:
            enclosure = next(
                (l for l in entry.get('links', [])
                 if l.get('type', '').startswith(('audio/', 'video/'))),
                None
            )
            video_url = enclosure['href'] if enclosure else entry.get('link', '')
            if not video_url:
                continue

            episode_id = entry.get('yt_videoid') or entry.get('id') or video_url
            feed.episodes.append(Episode(
                id=episode_id,
                title=entry.get('title', 'Unknown Episode'),
                description=entry.get('summary', entry.get('description', '')),
                thumbnail=_thumbnail(entry),
                duration=parse_duration(entry.get('itunes_duration')),
                video_url=video_url,
                pub_date=_parsed_time(entry, 'published_parsed') or _parsed_time(entry, 'updated_parsed'),
            ))

        logger.debug(f"Received {len(feed.episodes)} episode(s) for {feed.title!r}")
        return feed
