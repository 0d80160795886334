# Motion_Photo_Lib.py
#########################################
# Motion Photo Container Library
# Splices a video clip onto a JPEG still (the single-file "motion photo" layout)
# and splits such a file back into its still and video parts.
#
# Layout produced by embed_video():
#   SOI | leading APPn segments | APP1 XMP motion-photo marker | rest of JPEG ... EOI | video bytes
#
# split_motion_photo() removes the marker segment again, so the still image it
# returns is byte-identical to the one that was embedded.
#
# Main Functions:
# - build_motion_photo_marker(video_length)
# - embed_video(image, video)
# - split_motion_photo(data)
# - find_image_end(data)
# - is_motion_photo(data)
#
#########################################
# Imports
import re
import struct
from typing import Iterator, List, Optional, Tuple
#
# External Imports
from loguru import logger
#
# Local Imports
from cloudbridge_API.app.core.Sync.exceptions import TranscodingError
#
#######################################################################################################################
# Constants
#

SOI = b"\xff\xd8"
EOI = b"\xff\xd9"
APP1 = 0xE1
SOS = 0xDA
EOI_MARKER = 0xD9
STANDALONE_MARKERS = {0x01, 0xD8} | set(range(0xD0, 0xD8))
XMP_NAMESPACE = b"http://ns.adobe.com/xap/1.0/\x00"
MOTION_PHOTO_SENTINEL = b"GCamera:MotionPhoto>"
MAX_SEGMENT_PAYLOAD = 0xFFFF - 2

MOTION_PHOTO_XMP = """<?xpacket begin="﻿" id="W5M0MpCehiHzreSzNTczkc9d"?>
<x:xmpmeta xmlns:x="adobe:ns:meta/">
  <rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#">
    <rdf:Description rdf:about=""
        xmlns:GCamera="http://ns.google.com/photos/1.0/camera/">
      <GCamera:MotionPhoto>1</GCamera:MotionPhoto>
      <GCamera:MotionPhotoVersion>1</GCamera:MotionPhotoVersion>
      <GCamera:MotionPhotoPresentationTimestampUs>0</GCamera:MotionPhotoPresentationTimestampUs>
      <GCamera:MicroVideoOffset>{video_length}</GCamera:MicroVideoOffset>
    </rdf:Description>
  </rdf:RDF>
</x:xmpmeta>
<?xpacket end="w"?>"""

_OFFSET_PATTERN = re.compile(rb"<GCamera:MicroVideoOffset>(\d+)</GCamera:MicroVideoOffset>")

#######################################################################################################################
# Function Definitions
#

def build_motion_photo_marker(video_length: int) -> bytes:
    """
    Builds the APP1 segment announcing an embedded motion clip.

    The XMP packet names the GCamera namespace with MotionPhoto=1 and
    MotionPhotoVersion=1, plus the trailing video length as MicroVideoOffset.
    """
    payload = XMP_NAMESPACE + MOTION_PHOTO_XMP.format(video_length=video_length).encode("utf-8")
    if len(payload) > MAX_SEGMENT_PAYLOAD:
        raise TranscodingError("Motion photo marker does not fit in a single APP1 segment")
    return bytes([0xFF, APP1]) + struct.pack(">H", len(payload) + 2) + payload


def _iter_segments(data: bytes) -> Iterator[Tuple[int, int, int]]:
    """
    Walks the marker structure of a JPEG, yielding (marker, start, end) spans.

    Entropy-coded scan data after SOS is skipped (stuffed 0xFF00 bytes and
    restart markers do not end a scan), so an EOI-like byte pair inside scan
    data or inside a segment payload (e.g. an EXIF thumbnail) is never
    mistaken for the end of the image. Stops after yielding EOI.

    Raises:
        TranscodingError: If the data is not a JPEG or the structure is truncated.
    """
    if not data.startswith(SOI):
        raise TranscodingError("Input is not a JPEG image (missing start-of-image marker)")
    yield 0xD8, 0, 2

    n = len(data)
    pos = 2
    while pos < n - 1:
        if data[pos] != 0xFF:
            raise TranscodingError(f"Malformed JPEG: expected a marker at offset {pos}")
        # Skip fill bytes
        while pos < n - 1 and data[pos + 1] == 0xFF:
            pos += 1
        if pos >= n - 1:
            break
        marker = data[pos + 1]

        if marker == EOI_MARKER:
            yield marker, pos, pos + 2
            return
        if marker in STANDALONE_MARKERS:
            yield marker, pos, pos + 2
            pos += 2
            continue

        if pos + 4 > n:
            break
        (length,) = struct.unpack(">H", data[pos + 2:pos + 4])
        if length < 2 or pos + 2 + length > n:
            raise TranscodingError(f"Malformed JPEG: segment 0x{marker:02X} at offset {pos} is truncated")
        end = pos + 2 + length
        yield marker, pos, end

        if marker != SOS:
            pos = end
            continue

        # Entropy-coded data runs until the next marker that is not 0xFF00 or RSTn.
        i = end
        while i < n - 1:
            if data[i] == 0xFF:
                following = data[i + 1]
                if following == 0x00 or 0xD0 <= following <= 0xD7:
                    i += 2
                    continue
                if following == 0xFF:
                    i += 1
                    continue
                break
            i += 1
        pos = i


def find_image_end(data: bytes) -> Optional[int]:
    """Returns the offset just past the JPEG's end-of-image marker, or None if it has none."""
    for marker, _start, end in _iter_segments(data):
        if marker == EOI_MARKER:
            return end
    return None


def _marker_insert_offset(image: bytes) -> int:
    """Offset just after the leading run of APPn metadata segments (or just after SOI)."""
    offset = 2
    for marker, _start, end in _iter_segments(image):
        if marker == 0xD8:
            continue
        if 0xE0 <= marker <= 0xEF:
            offset = end
            continue
        break
    return offset


def _is_marker_segment(data: bytes, start: int, end: int) -> bool:
    payload = data[start + 4:end]
    return payload.startswith(XMP_NAMESPACE) and MOTION_PHOTO_SENTINEL in payload


def is_motion_photo(data: bytes) -> bool:
    """True if a motion-photo marker is present anywhere in the leading metadata."""
    try:
        for marker, start, end in _iter_segments(data):
            if marker == APP1 and _is_marker_segment(data, start, end):
                return True
            if marker in (SOS, EOI_MARKER):
                return False
    except TranscodingError:
        return False
    return False


def embed_video(image: bytes, video: bytes) -> bytes:
    """
    Splices `video` onto `image`, inserting the motion-photo marker right
    after the image's existing metadata segments.

    Raises:
        TranscodingError: If the image is not a complete JPEG or already carries a clip.
    """
    if not video:
        raise TranscodingError("Cannot embed an empty video")
    image_end = find_image_end(image)
    if image_end is None:
        raise TranscodingError("Still image has no end-of-image marker")
    if image_end != len(image):
        raise TranscodingError("Still image has trailing data after its end-of-image marker")
    if is_motion_photo(image):
        raise TranscodingError("Still image already carries a motion-photo marker")

    offset = _marker_insert_offset(image)
    marker = build_motion_photo_marker(len(video))
    logger.debug(f"Embedding {len(video)} byte clip after offset {offset} of {len(image)} byte image")
    return image[:offset] + marker + image[offset:] + video


def split_motion_photo(data: bytes) -> Tuple[bytes, bytes]:
    """
    Splits a motion photo into (image, video).

    Motion-photo marker segments are stripped from the returned image.

    Raises:
        TranscodingError: If the end-of-image marker is missing or no video follows it.
    """
    marker_spans: List[Tuple[int, int]] = []
    image_end = None
    declared_length = None
    for marker, start, end in _iter_segments(data):
        if marker == APP1 and _is_marker_segment(data, start, end):
            marker_spans.append((start, end))
            match = _OFFSET_PATTERN.search(data, start, end)
            if match:
                declared_length = int(match.group(1))
        if marker == EOI_MARKER:
            image_end = end

    if image_end is None:
        raise TranscodingError("Not a valid motion photo: end-of-image marker not found")

    video = data[image_end:]
    if not video:
        raise TranscodingError("Not a valid motion photo: no video follows the still image")
    if declared_length is not None and declared_length != len(video):
        logger.warning(f"Motion photo declares a {declared_length} byte clip but {len(video)} bytes follow the image")

    image_parts = []
    cursor = 0
    for start, end in marker_spans:
        image_parts.append(data[cursor:start])
        cursor = end
    image_parts.append(data[cursor:image_end])
    return b"".join(image_parts), video

#
# End of Motion_Photo_Lib.py
#######################################################################################################################
