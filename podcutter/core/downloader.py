import asyncio
import glob
import logging
import os
import shutil
import tempfile
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import aiofiles
import httpx
from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadError as YtdlDownloadError
from yt_dlp.utils import ExtractorError

from podcutter.core.config import FeedConfig, settings
from podcutter.core.errors import DownloadError, RateLimitedError
from podcutter.core.models import Episode
from podcutter.core.utils import episode_name

logger = logging.getLogger(__name__)

YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com", "music.youtube.com", "youtu.be"}


def is_youtube_url(url: str) -> bool:
    return (urlparse(url).hostname or "").lower() in YOUTUBE_HOSTS


def _is_rate_limited(error: Exception) -> bool:
    text = str(error)
    return "HTTP Error 429" in text or "Too Many Requests" in text


class TempFile:
    """A downloaded file inside its own temporary directory. close() removes both."""

    def __init__(self, path: str, dir: str):
        self.path = path
        self.dir = dir

    def close(self):
        if os.path.exists(self.dir):
            try:
                shutil.rmtree(self.dir)
            except OSError as e:
                logger.error(f"Could not remove temp dir {self.dir}: {e}")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class HttpDownloader:
    """
    Streams a direct media URL (a podcast enclosure) to a private temp directory.

    Files are fetched to a temp location first so that clients never see a
    half-written file in the served data directory.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 300.0):
        self.client = client
        self.timeout = timeout

    async def download(self, feed_config: FeedConfig, episode: Episode) -> TempFile:
        if not episode.video_url:
            raise DownloadError(f"episode {episode.id!r} has no media URL")

        tmp_dir = tempfile.mkdtemp(prefix="podcutter-dl-")
        temp = TempFile(os.path.join(tmp_dir, episode_name(feed_config, episode)), tmp_dir)
        try:
            if self.client is not None:
                await self._fetch(self.client, episode, temp.path)
            else:
                async with httpx.AsyncClient() as client:
                    await self._fetch(client, episode, temp.path)
        except BaseException:
            temp.close()
            raise
        return temp

    async def _fetch(self, client: httpx.AsyncClient, episode: Episode, path: str):
        try:
            async with client.stream("GET", episode.video_url, follow_redirects=True, timeout=self.timeout) as resp:
                if resp.status_code == 429:
                    raise RateLimitedError(f"server responded with 'Too Many Requests' for {episode.video_url}")
                resp.raise_for_status()

                content_type = resp.headers.get("Content-Type", "").lower()
                if content_type.startswith("text/html"):
                    raise DownloadError(f"{episode.video_url} returned a web page, not media")

                total = int(resp.headers.get("Content-Length", 0))
                downloaded = 0
                last_logged_percent = -1
                async with aiofiles.open(path, "wb") as f:
                    async for chunk in resp.aiter_bytes():
                        await f.write(chunk)
                        downloaded += len(chunk)
                        if total > 0:
                            percent = int((downloaded / total) * 100)
                            if percent % 25 == 0 and percent != last_logged_percent:
                                logger.debug(f"[{episode.id}] downloading: {percent}%")
                                last_logged_percent = percent
        except httpx.HTTPError as e:
            raise DownloadError(f"failed to download {episode.video_url}: {e}") from e
        except OSError as e:
            raise DownloadError(f"failed to write {path}: {e}") from e


class YtdlDownloader:
    """
    Downloads YouTube videos with yt-dlp.

    Audio feeds get the best audio stream converted to mp3, video feeds an mp4
    (merged from separate streams when needed). yt-dlp blocks, so it runs in a
    worker thread.
    """

    def __init__(self, ffmpeg_path: Optional[str] = None, extra_options: Optional[Dict[str, Any]] = None):
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.extra_options = extra_options or {}

    def options(self, feed_config: FeedConfig, stem: str) -> Dict[str, Any]:
        opts: Dict[str, Any] = {
            "outtmpl": f"{stem}.%(ext)s",
            "noplaylist": True,
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
        }
        if feed_config.is_audio:
            opts["format"] = "bestaudio/best"
            opts["postprocessors"] = [{
                "key": "FFmpegExtractAudio",
                "preferredcodec": "mp3",
                "preferredquality": "0",
            }]
        else:
            opts["format"] = "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best"
            opts["merge_output_format"] = "mp4"
            opts["postprocessors"] = [{"key": "FFmpegVideoRemuxer", "preferedformat": "mp4"}]
        # A bare command name is looked up on PATH by yt-dlp itself
        if os.path.dirname(self.ffmpeg_path):
            opts["ffmpeg_location"] = self.ffmpeg_path
        opts.update(self.extra_options)
        return opts

    async def download(self, feed_config: FeedConfig, episode: Episode) -> TempFile:
        if not episode.video_url:
            raise DownloadError(f"episode {episode.id!r} has no media URL")

        tmp_dir = tempfile.mkdtemp(prefix="podcutter-ytdl-")
        temp = TempFile(os.path.join(tmp_dir, episode_name(feed_config, episode)), tmp_dir)
        stem, _ = os.path.splitext(temp.path)
        try:
            await asyncio.to_thread(self._download_sync, episode.video_url, self.options(feed_config, stem), temp.path)
        except BaseException:
            temp.close()
            raise
        return temp

    @staticmethod
    def _download_sync(url: str, opts: Dict[str, Any], expected_path: str):
        try:
            with YoutubeDL(opts) as ydl:
                info = ydl.extract_info(url, download=True)
        except YtdlDownloadError as e:
            if _is_rate_limited(e):
                raise RateLimitedError(f"YouTube responded with 'Too Many Requests' for {url}") from e
            raise DownloadError(f"failed to download {url}: {e}") from e
        except ExtractorError as e:
            raise DownloadError(f"failed to extract media information from {url}: {e}") from e

        if not info:
            raise DownloadError(f"no media information for {url}")
        if not os.path.exists(expected_path):
            stem, _ = os.path.splitext(expected_path)
            found = sorted(glob.glob(glob.escape(stem) + ".*"))
            raise DownloadError(f"download of {url} finished but {expected_path} is missing (found {found})")


class MediaDownloader:
    """Picks yt-dlp for YouTube links and plain HTTP streaming for everything else."""

    def __init__(self, http: Optional[HttpDownloader] = None, ytdl: Optional[YtdlDownloader] = None):
        self.http = http or HttpDownloader()
        self.ytdl = ytdl or YtdlDownloader()

    async def download(self, feed_config: FeedConfig, episode: Episode) -> TempFile:
        if is_youtube_url(episode.video_url):
            logger.debug(f"[{episode.id}] downloading with yt-dlp")
            return await self.ytdl.download(feed_config, episode)
        return await self.http.download(feed_config, episode)
