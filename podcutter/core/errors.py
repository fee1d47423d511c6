"""
Exception types shared by the update pipeline.

Stage failures are wrapped in UpdateError by the updater. Per-episode failures
(DownloadError, TranscodeError) are contained by the scheduler, and
RateLimitedError stops the remaining batch without failing the run.
"""

from typing import List


class PodcutterError(Exception):
    """Base class for all podcutter errors."""


class ConfigError(PodcutterError):
    pass


class ListingError(PodcutterError):
    """The remote listing could not be fetched or parsed."""


class DownloadError(PodcutterError):
    pass


class RateLimitedError(DownloadError):
    """Upstream is throttling us (HTTP 429). Stop downloading and retry next run."""


class TranscodeError(PodcutterError):
    pass


class FeedNotFoundError(PodcutterError):
    pass


class EpisodeNotFoundError(PodcutterError):
    def __init__(self, feed_id: str, episode_id: str):
        super().__init__(f"episode {episode_id!r} not found in feed {feed_id!r}")
        self.feed_id = feed_id
        self.episode_id = episode_id


class IllegalTransitionError(PodcutterError):
    def __init__(self, episode_id: str, current, requested):
        super().__init__(
            f"episode {episode_id!r}: illegal status transition {current.value} -> {requested.value}"
        )
        self.episode_id = episode_id
        self.current = current
        self.requested = requested


class UpdateError(PodcutterError):
    def __init__(self, feed_id: str, stage: str, cause: Exception):
        super().__init__(f"feed {feed_id!r}: {stage} failed: {cause}")
        self.feed_id = feed_id
        self.stage = stage
        self.cause = cause


class CleanupError(PodcutterError):
    """Every failure collected during one retention pass."""

    def __init__(self, errors: List[Exception]):
        self.errors = list(errors)
        lines = "\n".join(f"  * {e}" for e in self.errors)
        super().__init__(f"{len(self.errors)} error(s) occurred during cleanup:\n{lines}")
