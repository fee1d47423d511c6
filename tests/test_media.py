"""Tests for the ffmpeg filter graph and the trimming subprocess."""

import asyncio
import os
from unittest.mock import AsyncMock, patch

import pytest

from podcutter.core.errors import TranscodeError
from podcutter.core.media import MediaProcessor, build_ffmpeg_args, build_filter_graph
from podcutter.core.models import KeepInterval

KEEPS = [KeepInterval(0.0, 10.0), KeepInterval(20.0, -1)]


class TestFilterGraph:
    def test_audio_graph(self) -> None:
        graph = build_filter_graph(KEEPS, video=False)

        assert graph == (
            "[0:a]atrim=start=0.000000:end=10.000000,asetpts=PTS-STARTPTS[s0a];"
            "[0:a]atrim=start=20.000000,asetpts=PTS-STARTPTS[s1a];"
            "[s0a][s1a]concat=n=2:v=0:a=1[outa]"
        )

    def test_video_graph(self) -> None:
        graph = build_filter_graph(KEEPS, video=True)

        assert graph == (
            "[0:a]atrim=start=0.000000:end=10.000000,asetpts=PTS-STARTPTS[s0a];"
            "[0:v]trim=start=0.000000:end=10.000000,setpts=PTS-STARTPTS[s0v];"
            "[0:a]atrim=start=20.000000,asetpts=PTS-STARTPTS[s1a];"
            "[0:v]trim=start=20.000000,setpts=PTS-STARTPTS[s1v];"
            "[s0v][s0a][s1v][s1a]concat=n=2:v=1:a=1[outv][outa]"
        )

    @pytest.mark.parametrize("k", [1, 2, 5])
    def test_stage_count(self, k: int) -> None:
        keeps = [KeepInterval(i * 10.0, i * 10.0 + 5) for i in range(k - 1)] + [KeepInterval(100.0, -1)]

        audio = build_filter_graph(keeps, video=False)
        video = build_filter_graph(keeps, video=True)

        assert audio.count("atrim=") == k
        assert "setpts=PTS-STARTPTS[s0v]" not in audio
        assert video.count("atrim=") == k
        assert video.count("[0:v]trim=") == k
        concat = "".join(f"[s{i}a]" for i in range(k)) + f"concat=n={k}:v=0:a=1"
        assert concat in audio

    def test_fractional_bounds(self) -> None:
        graph = build_filter_graph([KeepInterval(1.5, 2.25), KeepInterval(3.125, -1)], video=False)

        assert "atrim=start=1.500000:end=2.250000" in graph
        assert "atrim=start=3.125000,asetpts" in graph


class TestFfmpegArgs:
    def test_audio_args(self) -> None:
        args = build_ffmpeg_args("/tmp/in.mp3", "/tmp/out.mp3", KEEPS, "mp3")

        assert args == [
            "-f", "mp3",
            "-i", "/tmp/in.mp3",
            "-filter_complex", build_filter_graph(KEEPS, False),
            "-map", "[outa]",
            "/tmp/out.mp3",
        ]

    def test_video_args(self) -> None:
        args = build_ffmpeg_args("/tmp/in.mp4", "/tmp/out.mp4", KEEPS, "mp4")

        assert args[:2] == ["-f", "mp4"]
        assert args[-5:] == ["-map", "[outa]", "-map", "[outv]", "/tmp/out.mp4"]
        assert "[outv][outa]" in args[5]


class HangingProcess:
    def __init__(self):
        self.returncode = None
        self.terminated = False

    async def communicate(self):
        await asyncio.Event().wait()

    def terminate(self):
        self.terminated = True

    def kill(self):
        pass

    async def wait(self):
        self.returncode = -15
        return self.returncode


class FinishedProcess:
    def __init__(self, returncode: int, stderr: bytes = b""):
        self.returncode = returncode
        self.stderr = stderr

    async def communicate(self):
        return b"", self.stderr


class TestMediaProcessor:
    @pytest.mark.asyncio
    async def test_trimmed_yields_output_and_removes_temp_dir(self) -> None:
        processor = MediaProcessor(ffmpeg_path="ffmpeg")

        async def fake_run(args):
            with open(args[-1], "wb") as f:
                f.write(b"cut")

        with patch.object(processor, "run", side_effect=fake_run) as run:
            async with processor.trimmed("/tmp/in.mp3", KEEPS, "mp3", "abc") as output:
                assert os.path.basename(output) == "processed-abc.mp3"
                with open(output, "rb") as f:
                    assert f.read() == b"cut"
                tmp_dir = os.path.dirname(output)

        run.assert_awaited_once()
        assert not os.path.exists(tmp_dir)

    @pytest.mark.asyncio
    async def test_temp_dir_removed_when_ffmpeg_fails(self) -> None:
        processor = MediaProcessor(ffmpeg_path="ffmpeg")
        seen = []

        async def failing_run(args):
            seen.append(os.path.dirname(args[-1]))
            raise TranscodeError("boom")

        with patch.object(processor, "run", side_effect=failing_run):
            with pytest.raises(TranscodeError, match="boom"):
                async with processor.trimmed("/tmp/in.mp3", KEEPS, "mp3", "abc"):
                    pytest.fail("should not yield")

        assert seen and not os.path.exists(seen[0])

    @pytest.mark.asyncio
    async def test_run_passes_arguments_to_ffmpeg(self) -> None:
        processor = MediaProcessor(ffmpeg_path="/usr/bin/ffmpeg")
        exec_mock = AsyncMock(return_value=FinishedProcess(0))

        with patch("podcutter.core.media.asyncio.create_subprocess_exec", exec_mock):
            await processor.run(["-i", "in.mp3", "out.mp3"])

        assert exec_mock.await_args.args == ("/usr/bin/ffmpeg", "-i", "in.mp3", "out.mp3")

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises(self) -> None:
        processor = MediaProcessor(ffmpeg_path="ffmpeg")
        exec_mock = AsyncMock(return_value=FinishedProcess(1, b"Invalid data found"))

        with patch("podcutter.core.media.asyncio.create_subprocess_exec", exec_mock):
            with pytest.raises(TranscodeError, match="Invalid data found"):
                await processor.run(["-i", "x"])

    @pytest.mark.asyncio
    async def test_missing_binary_raises(self) -> None:
        processor = MediaProcessor(ffmpeg_path="does-not-exist")
        exec_mock = AsyncMock(side_effect=FileNotFoundError("no such file"))

        with patch("podcutter.core.media.asyncio.create_subprocess_exec", exec_mock):
            with pytest.raises(TranscodeError, match="failed to start ffmpeg"):
                await processor.run(["-i", "x"])

    @pytest.mark.asyncio
    async def test_cancellation_terminates_process(self) -> None:
        processor = MediaProcessor(ffmpeg_path="ffmpeg")
        proc = HangingProcess()

        with patch("podcutter.core.media.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            task = asyncio.create_task(processor.run(["-i", "x"]))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert proc.terminated
        assert proc.returncode == -15
