from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from podcutter.core.models import KeepInterval, SponsorSegment

FULL_MEDIA = [KeepInterval(0.0, -1)]


def delay_passed(pub_date: Optional[datetime], delay: timedelta, now: Optional[datetime] = None) -> bool:
    if pub_date is None:
        return True
    now = now or datetime.now(timezone.utc)
    if pub_date.tzinfo is None:
        pub_date = pub_date.replace(tzinfo=timezone.utc)
    return now - pub_date > delay


def should_query(mode: str, passed: bool) -> bool:
    """Whether SponsorBlock is asked for segments at all for this episode."""
    if mode == "off":
        return False
    if mode == "delay" and not passed:
        return False
    return True


def should_defer(mode: str, segment_count: int, passed: bool) -> bool:
    """Decide whether to leave an episode for a later run instead of downloading it now."""
    if mode == "require":
        return segment_count == 0
    if mode == "delay":
        return not passed
    if mode == "requiredelay":
        return segment_count == 0 and not passed
    return False


def cut_ranges(segments: List[SponsorSegment], policy: Dict[str, str]) -> List[tuple]:
    """
    Select the segments to cut and normalize them.

    SponsorBlock does not promise ordering or disjointness, so the cut ranges
    are sorted by start and overlapping or touching ranges are merged.
    Unknown categories are kept.
    """
    ranges = sorted(
        (s.start, s.end)
        for s in segments
        if policy.get(s.category, "keep") == "cut" and s.end > s.start
    )

    merged = []
    for start, end in ranges:
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def plan_keep_intervals(segments: List[SponsorSegment], policy: Dict[str, str]) -> List[KeepInterval]:
    """
    Turn cut segments into the complementary list of ranges to keep.

    The last interval always runs to the end of the media (end == -1).
    Zero-length gaps (a cut at 0, or two adjacent cuts) produce no interval.
    """
    keeps = []
    cursor = 0.0
    for start, end in cut_ranges(segments, policy):
        if start > cursor:
            keeps.append(KeepInterval(cursor, start))
        cursor = max(cursor, end)
    keeps.append(KeepInterval(cursor, -1))
    return keeps


def is_passthrough(keeps: List[KeepInterval]) -> bool:
    return keeps == FULL_MEDIA
