import logging
from email.utils import format_datetime
from typing import List, Tuple
from xml.etree.ElementTree import Element, SubElement, tostring

from podcutter.core.config import FeedConfig
from podcutter.core.models import EpisodeStatus, Feed
from podcutter.core.utils import blob_key, episode_name

logger = logging.getLogger(__name__)

ITUNES_NS = 'http://www.itunes.com/dtds/podcast-1.0.dtd'
OPML_NAME = "podcutter.opml"


def feed_xml_name(feed_id: str) -> str:
    return f"{feed_id}.xml"


def _serialize(root: Element) -> str:
    xml_str = tostring(root, encoding='unicode')
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + xml_str


class FeedBuilder:
    """Builds the podcast RSS document for a feed and the OPML index of all feeds."""

    def __init__(self, hostname: str):
        self.base_url = hostname.rstrip("/")

    def url(self, feed_id: str, name: str) -> str:
        """Public URL of a blob, matching where LocalStorage keeps it."""
        return f"{self.base_url}/{blob_key(feed_id, name)}"

    def build_xml(self, feed: Feed, feed_config: FeedConfig) -> str:
        rss = Element('rss', version='2.0', **{'xmlns:itunes': ITUNES_NS})
        channel = SubElement(rss, 'channel')

        SubElement(channel, 'title').text = feed.title or feed_config.id
        SubElement(channel, 'description').text = feed.description or f"Feed for {feed_config.url}"
        SubElement(channel, 'link').text = feed.link or feed_config.url
        if feed.author:
            SubElement(channel, 'itunes:author').text = feed.author
        if feed.image_url:
            itunes_image = SubElement(channel, 'itunes:image')
            itunes_image.set('href', feed.image_url)

        mime = 'audio/mpeg' if feed_config.is_audio else 'video/mp4'
        downloaded = [ep for ep in feed.episodes if ep.status == EpisodeStatus.DOWNLOADED]

        for ep in downloaded:
            item = SubElement(channel, 'item')
            SubElement(item, 'title').text = ep.title
            SubElement(item, 'guid').text = ep.id
            SubElement(item, 'description').text = ep.description

            if ep.pub_date:
                SubElement(item, 'pubDate').text = format_datetime(ep.pub_date)
            if ep.duration:
                SubElement(item, 'itunes:duration').text = str(ep.duration)
            if ep.thumbnail:
                SubElement(item, 'itunes:image').set('href', ep.thumbnail)

            enclosure = SubElement(item, 'enclosure')
            enclosure.set('url', self.url(feed_config.id, episode_name(feed_config, ep)))
            enclosure.set('type', mime)
            enclosure.set('length', str(ep.size))

        logger.debug(f"Built feed {feed_config.id} with {len(downloaded)} item(s)")
        return _serialize(rss)

    def build_opml(self, feeds: List[Tuple[Feed, FeedConfig]]) -> str:
        opml = Element('opml', version='1.0')
        head = SubElement(opml, 'head')
        SubElement(head, 'title').text = "podcutter feeds"
        body = SubElement(opml, 'body')

        for feed, feed_config in feeds:
            outline = SubElement(body, 'outline')
            outline.set('type', 'rss')
            outline.set('text', feed.title or feed_config.id)
            outline.set('title', feed.title or feed_config.id)
            outline.set('xmlUrl', self.url("", feed_xml_name(feed_config.id)))

        return _serialize(opml)
