import logging
import os
from typing import Union

import aiofiles
import aiofiles.os

from podcutter.core.utils import blob_key

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class LocalStorage:
    """
    Blob storage on the local disk, one directory per feed.

    An empty feed_id addresses the storage root (feed XML and OPML documents).
    """

    def __init__(self, root: str):
        self.root = root

    def path(self, feed_id: str, name: str) -> str:
        """Raises ValueError for a feed id or name that is not a safe path component."""
        return os.path.join(self.root, *blob_key(feed_id, name).split("/"))

    async def size(self, feed_id: str, name: str) -> int:
        """Raises FileNotFoundError if the blob does not exist."""
        stat = await aiofiles.os.stat(self.path(feed_id, name))
        return stat.st_size

    async def create(self, feed_id: str, name: str, source: Union[str, bytes]) -> int:
        """
        Store `source` (raw bytes, or the path of a file to copy) under `name`.

        Written to a temporary name first and renamed into place.
        Returns the number of bytes written.
        """
        dest = self.path(feed_id, name)
        await aiofiles.os.makedirs(os.path.dirname(dest), exist_ok=True)
        part = dest + ".part"

        written = 0
        try:
            async with aiofiles.open(part, "wb") as out:
                if isinstance(source, bytes):
                    await out.write(source)
                    written = len(source)
                else:
                    async with aiofiles.open(source, "rb") as src:
                        while True:
                            chunk = await src.read(CHUNK_SIZE)
                            if not chunk:
                                break
                            await out.write(chunk)
                            written += len(chunk)
            await aiofiles.os.replace(part, dest)
        except BaseException:
            if os.path.exists(part):
                os.remove(part)
            raise

        logger.debug(f"Wrote {written} bytes to {dest}")
        return written

    async def delete(self, feed_id: str, name: str):
        """Raises FileNotFoundError if the blob does not exist."""
        path = self.path(feed_id, name)
        await aiofiles.os.remove(path)
        logger.debug(f"Deleted {path}")
