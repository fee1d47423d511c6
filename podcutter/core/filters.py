import logging
import re

from podcutter.core.config import Filters
from podcutter.core.models import Episode

logger = logging.getLogger(__name__)


def match_pattern(pattern: str, text: str, negative: bool, episode_id: str, name: str) -> bool:
    """Check one regex filter. Empty or invalid patterns always pass."""
    if not pattern:
        return True

    try:
        matched = re.search(pattern, text or "") is not None
    except re.error as e:
        logger.warning(f"[{episode_id}] {name} filter {pattern!r} is not a valid pattern: {e}")
        return True

    if matched == negative:
        logger.info(f"[{episode_id}] skipping due to {name} filter mismatch")
        return False
    return True


def match_filters(episode: Episode, filters: Filters) -> bool:
    """All four filters must pass for the episode to be downloaded."""
    return (
        match_pattern(filters.title, episode.title, False, episode.id, "title")
        and match_pattern(filters.not_title, episode.title, True, episode.id, "not_title")
        and match_pattern(filters.description, episode.description, False, episode.id, "description")
        and match_pattern(filters.not_description, episode.description, True, episode.id, "not_description")
    )
