# Live_Photo_Transcoder.py
#########################################
# Live Photo Transcoding Library
# Converts a live photo between the local two-file form (still + MOV clip)
# and the remote single-file motion photo (still with a trailing MP4 clip).
#
####################
# Function List
#
# 1. FfmpegVideoTranscoder.transcode(input_path, output_path, profile)
# 2. LivePhotoTranscoder.to_remote_encoding(image_path, video_path)
# 3. LivePhotoTranscoder.to_local_encoding(splice_asset_path)
# 4. LivePhotoTranscoder.to_local_encoding_bytes(data)
#
####################
#
# Imports
import asyncio
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union
#
# 3rd-party Libraries
import aiofiles
from loguru import logger
#
# Local Imports
from cloudbridge_API.app.core.config import LOCAL_VIDEO_ARGS, REMOTE_VIDEO_ARGS, TranscoderConfig
from cloudbridge_API.app.core.Media_Processing.Live_Photo.Motion_Photo_Lib import embed_video, split_motion_photo
from cloudbridge_API.app.core.Sync.exceptions import TranscodingError
from cloudbridge_API.app.core.Sync.models import LivePhotoAsset
from cloudbridge_API.app.core.Utils.Utils import timeit
#
#######################################################################################################################
#
# Classes:

@dataclass(frozen=True)
class TranscodeProfile:
    """Target container and ffmpeg output arguments for one direction."""
    name: str
    extension: str
    output_args: List[str] = field(default_factory=list)


REMOTE_PROFILE = TranscodeProfile("remote", ".mp4", list(REMOTE_VIDEO_ARGS))
LOCAL_PROFILE = TranscodeProfile("local", ".mov", list(LOCAL_VIDEO_ARGS))


class VideoTranscoder(ABC):
    """External tool that re-encodes one video file into another."""

    @abstractmethod
    async def transcode(self, input_path: Path, output_path: Path, profile: TranscodeProfile) -> None:
        """
        Raises:
            TranscodingError: If the tool is missing, fails, or times out.
        """
        pass


def _find_ffmpeg() -> str:
    """Finds the ffmpeg executable."""
    ffmpeg_env = os.environ.get("FFMPEG_PATH")
    if ffmpeg_env and Path(ffmpeg_env).exists():
        logger.debug(f"Found ffmpeg via FFMPEG_PATH env var: {ffmpeg_env}")
        return ffmpeg_env

    ffmpeg_path = shutil.which("ffmpeg")
    if ffmpeg_path:
        logger.debug(f"Found ffmpeg in system PATH: {ffmpeg_path}")
        return ffmpeg_path

    raise TranscodingError("ffmpeg executable not found. Set FFMPEG_PATH or install ffmpeg.",
                           operation="find_ffmpeg")


class FfmpegVideoTranscoder(VideoTranscoder):
    """Runs ffmpeg as an awaited subprocess."""

    def __init__(self, ffmpeg_path: Optional[str] = None, timeout: float = 120.0):
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout

    def build_command(self, input_path: Path, output_path: Path, profile: TranscodeProfile) -> List[str]:
        ffmpeg = self.ffmpeg_path or _find_ffmpeg()
        return [ffmpeg, "-y", "-i", str(input_path), *profile.output_args, str(output_path)]

    async def transcode(self, input_path: Path, output_path: Path, profile: TranscodeProfile) -> None:
        command = self.build_command(input_path, output_path, profile)
        logger.debug(f"Running ffmpeg: {' '.join(command)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodingError(f"Failed to start ffmpeg: {e}", operation="transcode",
                                   context={"profile": profile.name}, original_error=e) from e

        try:
            _stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise TranscodingError(f"ffmpeg timed out after {self.timeout}s", operation="transcode",
                                   context={"profile": profile.name}, original_error=e) from e

        if process.returncode != 0:
            error_message = stderr.decode("utf-8", errors="replace").strip()
            logger.error(f"ffmpeg failed with code {process.returncode}: {error_message}")
            raise TranscodingError(f"ffmpeg exited with code {process.returncode}: {error_message[-500:]}",
                                   operation="transcode", context={"profile": profile.name})


async def _read_bytes(path: Union[str, Path]) -> bytes:
    try:
        async with aiofiles.open(path, "rb") as f:
            return await f.read()
    except OSError as e:
        raise TranscodingError(f"Failed to read {path}: {e}", operation="read_file", original_error=e) from e


async def _write_bytes(path: Union[str, Path], data: bytes) -> None:
    try:
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)
    except OSError as e:
        raise TranscodingError(f"Failed to write {path}: {e}", operation="write_file", original_error=e) from e


class LivePhotoTranscoder:
    """
    Two-way live-photo pipeline.

    Local to remote: re-encode the clip with the remote profile, then splice it
    onto the still. Remote to local: split at the still's end-of-image marker,
    then re-encode the clip with the local profile. Intermediate files live in
    a per-call temporary directory that is removed on every exit path.
    Nothing here is retried; that is the caller's decision.
    """

    def __init__(
        self,
        video_transcoder: Optional[VideoTranscoder] = None,
        temp_dir: Optional[str] = None,
        remote_profile: TranscodeProfile = REMOTE_PROFILE,
        local_profile: TranscodeProfile = LOCAL_PROFILE,
    ):
        self.video_transcoder = video_transcoder or FfmpegVideoTranscoder()
        self.temp_dir = temp_dir
        self.remote_profile = remote_profile
        self.local_profile = local_profile

    @classmethod
    def from_config(cls, config: TranscoderConfig) -> "LivePhotoTranscoder":
        return cls(
            video_transcoder=FfmpegVideoTranscoder(config.ffmpeg_path, config.timeout),
            temp_dir=config.temp_dir,
            remote_profile=TranscodeProfile("remote", ".mp4", list(config.remote_output_args)),
            local_profile=TranscodeProfile("local", ".mov", list(config.local_output_args)),
        )

    def _workspace(self) -> tempfile.TemporaryDirectory:
        try:
            return tempfile.TemporaryDirectory(prefix="livephoto_", dir=self.temp_dir)
        except OSError as e:
            raise TranscodingError(f"Failed to create temporary directory: {e}", operation="workspace",
                                   original_error=e) from e

    async def _reencode(self, source: Path, workdir: Path, profile: TranscodeProfile) -> bytes:
        output_path = workdir / f"converted{profile.extension}"
        await self.video_transcoder.transcode(source, output_path, profile)
        return await _read_bytes(output_path)

    @timeit
    async def to_remote_encoding(self, image_path: Union[str, Path], video_path: Union[str, Path]) -> bytes:
        """
        Produces the single-file motion photo for a local still/clip pair.

        Raises:
            TranscodingError: On any read, tool or splice failure.
        """
        logger.info(f"Converting live photo to remote encoding: {image_path}, {video_path}")
        with self._workspace() as workdir:
            video = await self._reencode(Path(video_path), Path(workdir), self.remote_profile)
            image = await _read_bytes(image_path)
        return embed_video(image, video)

    async def to_local_encoding(self, splice_asset_path: Union[str, Path]) -> LivePhotoAsset:
        """
        Splits a motion photo file into its still and a locally encoded clip.

        Raises:
            TranscodingError: If the file has no end-of-image marker, or on any
                read, write or tool failure.
        """
        logger.info(f"Converting live photo to local encoding: {splice_asset_path}")
        return await self.to_local_encoding_bytes(await _read_bytes(splice_asset_path))

    @timeit
    async def to_local_encoding_bytes(self, data: bytes) -> LivePhotoAsset:
        image, video = split_motion_photo(data)
        with self._workspace() as workdir:
            workdir = Path(workdir)
            source = workdir / f"embedded{self.remote_profile.extension}"
            await _write_bytes(source, video)
            local_video = await self._reencode(source, workdir, self.local_profile)
        return LivePhotoAsset(image=image, video=local_video)

#
# End of Live_Photo_Transcoder.py
#######################################################################################################################
