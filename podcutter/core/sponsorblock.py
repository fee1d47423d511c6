import json
import logging
from typing import List, Optional

import httpx
from pydantic import ValidationError

from podcutter.core.config import DEFAULT_SPONSORBLOCK_URL
from podcutter.core.models import SponsorSegment

logger = logging.getLogger(__name__)

CATEGORIES = ["sponsor", "intro", "outro", "interaction", "selfpromo", "music_offtopic"]


class SponsorBlockClient:
    """
    Looks up sponsor segments for a video.

    Failures never propagate: anything other than a usable 200 response is
    logged and treated as "no segments".
    """

    def __init__(self, base_url: str = DEFAULT_SPONSORBLOCK_URL, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.timeout = timeout

    async def get_segments(self, video_id: str) -> List[SponsorSegment]:
        url = f"{self.base_url}/api/skipSegments"
        params = {"categories": json.dumps(CATEGORIES), "videoID": video_id}
        logger.debug(f"[{video_id}] querying SponsorBlock at {url}")

        try:
            if self.client is not None:
                resp = await self.client.get(url, params=params, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(url, params=params, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.warning(f"[{video_id}] failed to retrieve sponsor segments: {e}")
            return []

        if resp.status_code == 404:
            logger.info(f"[{video_id}] no sponsor segments available yet")
            return []
        if resp.status_code != 200:
            logger.error(f"[{video_id}] SponsorBlock returned unexpected status {resp.status_code}")
            return []

        try:
            data = resp.json()
            segments = [SponsorSegment.from_api(item) for item in data]
        except (ValueError, TypeError, KeyError, ValidationError) as e:
            logger.error(f"[{video_id}] failed to parse SponsorBlock response: {e}")
            return []

        logger.debug(f"[{video_id}] SponsorBlock returned {len(segments)} segment(s)")
        return segments
