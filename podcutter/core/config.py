import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from podcutter.core.errors import ConfigError
from podcutter.core.utils import FEED_ID_RE


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    LOG_LEVEL: str = "INFO"

    # Paths
    DATA_DIR: str = "./data"
    CONFIG_PATH: str = "config.yaml"

    # Web
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    BASE_URL: str = "http://localhost:8080"

    # Processing
    CHECK_INTERVAL_SECONDS: int = 60
    FFMPEG_PATH: str = "ffmpeg"
    LOG_MAX_BYTES: int = 10 * 1024 * 1024  # 10 MB
    LOG_BACKUP_COUNT: int = 5

    @property
    def DB_PATH(self) -> str:
        return os.path.join(self.DATA_DIR, "db", "podcutter.db")

    @property
    def FEEDS_DIR(self) -> str:
        return os.path.join(self.DATA_DIR, "feeds")

    def ensure_directories(self):
        for path in [os.path.dirname(self.DB_PATH), self.FEEDS_DIR]:
            os.makedirs(path, exist_ok=True)


settings = Settings()


DEFAULT_PAGE_SIZE = 50
DEFAULT_UPDATE_PERIOD = timedelta(hours=6)
DEFAULT_SPONSORBLOCK_URL = "https://sponsor.ajay.app"

SponsorBlockMode = Literal["off", "require", "delay", "requiredelay"]
CategoryMode = Literal["cut", "keep"]

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value):
    """Accept seconds, a timedelta, or a unit-suffixed duration string like "1h30m"."""
    if value is None or isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    text = str(value).strip()
    if not text:
        return timedelta(0)
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return timedelta(seconds=float(text))
    parts = _DURATION_PART.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=sum(float(n) * _DURATION_UNITS[u] for n, u in parts))


class SponsorBlockCategories(BaseModel):
    """What to do with each SponsorBlock category. "default" defers to the global setting."""

    sponsors: Literal["cut", "keep", "default"] = "default"
    intermissions: Literal["cut", "keep", "default"] = "default"
    endcards: Literal["cut", "keep", "default"] = "default"
    interaction_reminders: Literal["cut", "keep", "default"] = "default"
    self_promotions: Literal["cut", "keep", "default"] = "default"
    nonmusic_sections: Literal["cut", "keep", "default"] = "default"

    def resolve(self, fallback: "SponsorBlockCategories") -> "SponsorBlockCategories":
        values = {}
        for name in type(self).model_fields:
            own = getattr(self, name)
            values[name] = getattr(fallback, name) if own == "default" else own
        return SponsorBlockCategories(**values)

    def policy(self) -> Dict[str, CategoryMode]:
        """Map SponsorBlock API category names to cut/keep."""
        return {
            "sponsor": self.sponsors,
            "intro": self.intermissions,
            "outro": self.endcards,
            "interaction": self.interaction_reminders,
            "selfpromo": self.self_promotions,
            "music_offtopic": self.nonmusic_sections,
        }


# These should match SponsorBlock's own defaults
GLOBAL_CATEGORY_DEFAULTS = SponsorBlockCategories(
    sponsors="cut",
    intermissions="keep",
    endcards="keep",
    interaction_reminders="keep",
    self_promotions="keep",
    nonmusic_sections="cut",
)


class SponsorBlockConfig(BaseModel):
    url: str = DEFAULT_SPONSORBLOCK_URL
    default_mode: SponsorBlockMode = "off"
    default_delay: timedelta = timedelta(0)
    categories: SponsorBlockCategories = Field(default_factory=SponsorBlockCategories)

    @field_validator("default_delay", mode="before")
    @classmethod
    def parse_delay(cls, v):
        return parse_duration(v)

    @model_validator(mode="after")
    def apply_category_defaults(self):
        self.categories = self.categories.resolve(GLOBAL_CATEGORY_DEFAULTS)
        return self


class Filters(BaseModel):
    title: str = ""
    not_title: str = ""
    description: str = ""
    not_description: str = ""


class Cleanup(BaseModel):
    keep_last: int = 0


class FeedConfig(BaseModel):
    id: str = ""
    url: str
    page_size: int = DEFAULT_PAGE_SIZE
    update_period: timedelta = DEFAULT_UPDATE_PERIOD
    format: Literal["audio", "video"] = "video"
    filters: Filters = Field(default_factory=Filters)
    clean: Cleanup = Field(default_factory=Cleanup)
    opml: bool = False
    sponsorblock_mode: Literal["off", "require", "delay", "requiredelay", "default"] = "default"
    sponsorblock_delay: timedelta = timedelta(0)
    sponsorblock_categories: SponsorBlockCategories = Field(default_factory=SponsorBlockCategories)

    @field_validator("update_period", "sponsorblock_delay", mode="before")
    @classmethod
    def parse_durations(cls, v):
        return parse_duration(v)

    @field_validator("url")
    @classmethod
    def url_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("URL is required")
        return v

    @property
    def is_audio(self) -> bool:
        return self.format == "audio"

    @property
    def extension(self) -> str:
        return "mp3" if self.is_audio else "mp4"


class ServerConfig(BaseModel):
    hostname: str = ""
    port: int = 8080


class AppConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    sponsorblock: SponsorBlockConfig = Field(default_factory=SponsorBlockConfig)
    feeds: Dict[str, FeedConfig]

    @field_validator("feeds")
    @classmethod
    def validate_feeds(cls, v):
        if not v:
            raise ValueError("at least one feed must be specified")
        unsafe = [feed_id for feed_id in v if not FEED_ID_RE.match(feed_id)]
        if unsafe:
            raise ValueError(
                f"feed ids may only contain letters, digits, '-' and '_': {', '.join(repr(i) for i in unsafe)}"
            )
        return v

    @model_validator(mode="after")
    def apply_defaults(self):
        if not self.server.hostname:
            if self.server.port and self.server.port != 80:
                self.server.hostname = f"http://localhost:{self.server.port}"
            else:
                self.server.hostname = "http://localhost"

        sb = self.sponsorblock
        for feed_id, feed in self.feeds.items():
            feed.id = feed_id
            if feed.page_size <= 0:
                feed.page_size = DEFAULT_PAGE_SIZE
            if not feed.update_period:
                feed.update_period = DEFAULT_UPDATE_PERIOD
            if not feed.sponsorblock_delay:
                feed.sponsorblock_delay = sb.default_delay
            if feed.sponsorblock_mode == "default":
                feed.sponsorblock_mode = sb.default_mode
            feed.sponsorblock_categories = feed.sponsorblock_categories.resolve(sb.categories)
        return self


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load and validate the YAML configuration file.

    Raises:
        ConfigError: the file is missing, unreadable, not YAML, or fails validation.
            Validation problems are reported together in a single error.
    """
    cfg_path = Path(path or settings.CONFIG_PATH).expanduser()
    if not cfg_path.exists():
        raise ConfigError(f"Config file not found: {cfg_path}")

    try:
        with open(cfg_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config file {cfg_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {cfg_path} must contain a mapping")

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid config {cfg_path}: {problems}") from e
