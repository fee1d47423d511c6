import hashlib
import re

# Feed IDs become a directory and a URL segment as they are
FEED_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
# Blob names: no separators, no leading dot, nothing that needs URL quoting
BLOB_NAME_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9._-]*$")

_STEM_MAX = 64
_UNSAFE_RUN = re.compile(r"[^A-Za-z0-9_-]+")


def episode_stem(episode_id: str) -> str:
    """
    File stem for an episode's media.

    IDs made only of letters, digits, '-' and '_' (YouTube video IDs, for
    instance) are used unchanged. Anything else, like the URL-shaped guids
    most podcast feeds use, becomes a readable slug of its tail plus a short
    hash of the full ID, so two IDs never share a stem.
    """
    if FEED_ID_RE.match(episode_id) and len(episode_id) <= _STEM_MAX:
        return episode_id

    digest = hashlib.sha1(episode_id.encode("utf-8")).hexdigest()[:12]
    slug = _UNSAFE_RUN.sub("-", episode_id).strip("-")[-40:].strip("-")
    return f"{slug}-{digest}" if slug else digest


def episode_name(feed_config, episode) -> str:
    """File name of an episode's media blob inside its feed directory."""
    return f"{episode_stem(episode.id)}.{feed_config.extension}"


def blob_key(feed_id: str, name: str) -> str:
    """
    Relative location of a blob: `{feed_id}/{name}`, or just `name` at the root.

    Storage writes here and the published URLs point here, so both always
    agree. Unsafe components raise ValueError instead of being rewritten.
    """
    if not BLOB_NAME_RE.match(name or ""):
        raise ValueError(f"unsafe blob name {name!r}")
    if not feed_id:
        return name
    if not FEED_ID_RE.match(feed_id):
        raise ValueError(f"unsafe feed id {feed_id!r}")
    return f"{feed_id}/{name}"
