import asyncio
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from typing import AsyncIterator, List

from podcutter.core.config import settings
from podcutter.core.errors import TranscodeError
from podcutter.core.models import KeepInterval

logger = logging.getLogger(__name__)

TERMINATE_GRACE_SECONDS = 5.0


def _trim_bounds(interval: KeepInterval) -> str:
    bounds = f"start={interval.start:f}"
    if not interval.open_ended:
        bounds += f":end={interval.end:f}"
    return bounds


def build_filter_graph(keeps: List[KeepInterval], video: bool) -> str:
    """
    Render keep intervals as an ffmpeg -filter_complex expression.

    Each interval becomes a trimmed stream with reset timestamps, then all of
    them are concatenated:

        [0:a]atrim=start=0.000000:end=30.000000,asetpts=PTS-STARTPTS[s0a];
        [0:a]atrim=start=45.000000,asetpts=PTS-STARTPTS[s1a];
        [s0a][s1a]concat=n=2:v=0:a=1[outa]
    """
    stages = ""
    concat_inputs = ""
    for idx, interval in enumerate(keeps):
        bounds = _trim_bounds(interval)
        stages += f"[0:a]atrim={bounds},asetpts=PTS-STARTPTS[s{idx}a];"
        if video:
            stages += f"[0:v]trim={bounds},setpts=PTS-STARTPTS[s{idx}v];"
            concat_inputs += f"[s{idx}v]"
        concat_inputs += f"[s{idx}a]"

    graph = stages + concat_inputs + f"concat=n={len(keeps)}:v={1 if video else 0}:a=1"
    if video:
        graph += "[outv]"
    graph += "[outa]"
    return graph


def build_ffmpeg_args(input_path: str, output_path: str, keeps: List[KeepInterval], ext: str) -> List[str]:
    video = ext != "mp3"
    args = [
        "-f", ext,
        "-i", input_path,
        "-filter_complex", build_filter_graph(keeps, video),
        "-map", "[outa]",
    ]
    if video:
        args.extend(["-map", "[outv]"])
    args.append(output_path)
    return args


class MediaProcessor:
    def __init__(self, ffmpeg_path: str = None):
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH

    @asynccontextmanager
    async def trimmed(self, input_path: str, keeps: List[KeepInterval], ext: str, episode_id: str) -> AsyncIterator[str]:
        """
        Cut everything outside `keeps` from the media at `input_path`.

        Yields the path of the processed file. It lives in a private temporary
        directory that is removed when the context exits, whether ffmpeg
        succeeded, failed or was cancelled.
        """
        with tempfile.TemporaryDirectory(prefix="podcutter-ffmpeg-") as tmp_dir:
            output_path = os.path.join(tmp_dir, f"processed-{episode_id}.{ext}")
            args = build_ffmpeg_args(input_path, output_path, keeps, ext)
            logger.debug(f"[{episode_id}] calling ffmpeg with args {args}")
            await self.run(args)
            yield output_path

    async def run(self, args: List[str]):
        """Run ffmpeg to completion. The process is terminated if the task is cancelled."""
        try:
            proc = await asyncio.create_subprocess_exec(
                self.ffmpeg_path, *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeError(f"failed to start ffmpeg: {e}") from e

        try:
            _, stderr = await proc.communicate()
        except asyncio.CancelledError:
            logger.warning("Cancelled while ffmpeg was running, terminating it")
            await self._terminate(proc)
            raise

        if proc.returncode != 0:
            tail = (stderr or b"").decode("utf-8", errors="replace").strip()[-2000:]
            raise TranscodeError(f"ffmpeg exited with code {proc.returncode}: {tail}")

    @staticmethod
    async def _terminate(proc):
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=TERMINATE_GRACE_SECONDS)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
