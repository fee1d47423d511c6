from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, NamedTuple, Optional

from pydantic import BaseModel, Field, field_validator

from podcutter.core.errors import IllegalTransitionError


class EpisodeStatus(str, Enum):
    NEW = "new"
    DOWNLOADED = "downloaded"
    ERROR = "error"
    CLEANED = "cleaned"

    def can_transition(self, target: "EpisodeStatus") -> bool:
        return target in _TRANSITIONS[self]

    def check_transition(self, target: "EpisodeStatus", episode_id: str = ""):
        if not self.can_transition(target):
            raise IllegalTransitionError(episode_id, self, target)

    @property
    def is_resolved(self) -> bool:
        """Downloaded/cleaned episodes are durable and survive upstream removal."""
        return self in (EpisodeStatus.DOWNLOADED, EpisodeStatus.CLEANED)


# Same-status transitions are refreshes (e.g. a new size) and always allowed.
_TRANSITIONS: Dict[EpisodeStatus, FrozenSet[EpisodeStatus]] = {
    EpisodeStatus.NEW: frozenset({EpisodeStatus.NEW, EpisodeStatus.DOWNLOADED, EpisodeStatus.ERROR}),
    EpisodeStatus.ERROR: frozenset({EpisodeStatus.ERROR, EpisodeStatus.DOWNLOADED}),
    EpisodeStatus.DOWNLOADED: frozenset({EpisodeStatus.DOWNLOADED, EpisodeStatus.CLEANED}),
    EpisodeStatus.CLEANED: frozenset({EpisodeStatus.CLEANED}),
}


class Episode(BaseModel):
    id: str
    title: str = ""
    description: str = ""
    thumbnail: Optional[str] = None
    duration: int = 0
    video_url: str = ""
    pub_date: Optional[datetime] = None
    size: int = 0
    position: int = 0
    status: EpisodeStatus = EpisodeStatus.NEW

    @field_validator("pub_date")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    class Config:
        from_attributes = True


class Feed(BaseModel):
    id: str
    title: str = ""
    description: str = ""
    link: Optional[str] = None
    author: Optional[str] = None
    image_url: Optional[str] = None
    updated_at: Optional[datetime] = None
    episodes: List[Episode] = Field(default_factory=list)


class SponsorSegment(BaseModel):
    category: str
    start: float
    end: float
    uuid: Optional[str] = None

    @classmethod
    def from_api(cls, item: dict) -> "SponsorSegment":
        start, end = item["segment"][:2]
        return cls(category=item["category"], start=start, end=end, uuid=item.get("UUID"))


class KeepInterval(NamedTuple):
    start: float
    end: float  # -1 means "until the end of the media"

    @property
    def open_ended(self) -> bool:
        return self.end < 0


class DownloadOutcome(str, Enum):
    SKIPPED = "skipped"
    DOWNLOADED = "downloaded"
    DEFERRED = "deferred"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"


class DownloadReport(BaseModel):
    queued: int = 0
    skipped: int = 0
    downloaded: int = 0
    deferred: int = 0
    failed: int = 0
    rate_limited: bool = False

    def record(self, outcome: DownloadOutcome):
        if outcome is DownloadOutcome.RATE_LIMITED:
            self.rate_limited = True
        else:
            setattr(self, outcome.value, getattr(self, outcome.value) + 1)
