"""
Pytest fixtures shared by the cloudbridge test suites.

Provides a scripted remote endpoint, a sleep recorder for retry timing,
dispatcher settings, and a minimal JPEG builder for live-photo tests.
"""

import json
import struct
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from cloudbridge_API.app.core.config import DispatcherSettings
from cloudbridge_API.app.core.Sync.exceptions import TransientNetworkError
from cloudbridge_API.app.core.Sync.transport import RemoteEndpoint, RemoteResponse


class ScriptedEndpoint(RemoteEndpoint):
    """
    Records every call and answers from a script.

    Each script entry is a RemoteResponse, an exception instance to raise, or
    a callable taking the call dict and returning either. When the script runs
    out, `default` is used (an echo of the request body with status 200).
    """

    def __init__(self, script: Optional[List[Any]] = None, default: Any = None):
        self.script = list(script or [])
        self.default = default
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def request(self, method, path, body=None, headers=None):
        call = {"method": method, "path": path, "body": body, "headers": dict(headers or {})}
        self.calls.append(call)
        reply = self.script.pop(0) if self.script else self.default
        if reply is None:
            reply = RemoteResponse(200, body or b"")
        if callable(reply) and not isinstance(reply, RemoteResponse):
            reply = reply(call)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def aclose(self):
        self.closed = True

    def bodies(self) -> List[Any]:
        return [json.loads(call["body"]) if call["body"] else None for call in self.calls]


class SleepRecorder:
    """Stands in for asyncio.sleep and remembers the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def json_response(payload: Any, status: int = 200, headers: Optional[Dict[str, str]] = None) -> RemoteResponse:
    return RemoteResponse(status, json.dumps(payload).encode("utf-8"), headers or {})


def build_jpeg(scan: bytes = b"\x12\x34\x56", app_segments: Optional[List[bytes]] = None) -> bytes:
    """
    Builds a structurally valid (not decodable) JPEG: SOI, optional APPn
    segments, a quantisation table, SOS with `scan` as entropy data, EOI.
    """
    def segment(marker: int, payload: bytes) -> bytes:
        return bytes([0xFF, marker]) + struct.pack(">H", len(payload) + 2) + payload

    if app_segments is None:
        app_segments = [segment(0xE0, b"JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00")]
    parts = [b"\xff\xd8", *app_segments, segment(0xDB, b"\x00" + bytes(64)),
             segment(0xDA, b"\x01\x01\x00\x00\x3f\x00"), scan, b"\xff\xd9"]
    return b"".join(parts)


@pytest.fixture
def scripted_endpoint():
    """Factory for ScriptedEndpoint instances."""
    return ScriptedEndpoint


@pytest.fixture
def respond():
    """Helper building JSON RemoteResponse objects."""
    return json_response


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def settings():
    return DispatcherSettings(
        base_url="https://sync.example.test",
        access_token="test-token",
        batch_size=100,
        max_attempts=5,
        initial_backoff=1.0,
        max_backoff=60.0,
        request_timeout=8.0,
    )


@pytest.fixture
def transient_error():
    def make(message: str = "Service unavailable", status: int = 503):
        return TransientNetworkError(message, status=status)
    return make


@pytest.fixture
def jpeg_builder():
    return build_jpeg


@pytest.fixture
def sample_jpeg() -> bytes:
    return build_jpeg()


@pytest.fixture
def sample_video() -> bytes:
    return b"\x00\x00\x00\x18ftypmp42" + bytes(range(256)) * 4


@pytest.fixture
def live_photo_files(tmp_path: Path, sample_jpeg: bytes, sample_video: bytes):
    image_path = tmp_path / "IMG_0001.JPG"
    video_path = tmp_path / "IMG_0001.MOV"
    image_path.write_bytes(sample_jpeg)
    video_path.write_bytes(sample_video)
    return image_path, video_path


class CopyingVideoTranscoder:
    """Fake ffmpeg: copies the input to the output and records each call."""

    def __init__(self, fail_with: Optional[BaseException] = None):
        self.calls = []
        self.fail_with = fail_with

    async def transcode(self, input_path, output_path, profile):
        self.calls.append({"input": Path(input_path), "output": Path(output_path), "profile": profile.name})
        if self.fail_with is not None:
            raise self.fail_with
        Path(output_path).write_bytes(Path(input_path).read_bytes())


@pytest.fixture
def copying_transcoder():
    return CopyingVideoTranscoder()


@pytest.fixture
def failing_transcoder():
    def make(error: BaseException):
        return CopyingVideoTranscoder(fail_with=error)
    return make
