"""Protocol module for frame processing."""

from .constants import (
    SYNC_BYTES, CLASS_LENGTH, ID_LENGTH, LENGTH_FIELD_BYTES, CHECKSUM_LENGTH,
    MAX_PAYLOAD_LENGTH, CLASS_POLARIS, ID_AUTH, ID_POSITION,
    HEADER_LENGTH, FOOTER_LENGTH
)
from .frame_codec import Frame, FrameCodec, FrameEncodingError, FrameSyncError, FrameChecksumError
from .messages import Position, build_auth_frame, build_position_frame, to_centimeters

__all__ = [
    "SYNC_BYTES", "CLASS_LENGTH", "ID_LENGTH", "LENGTH_FIELD_BYTES", "CHECKSUM_LENGTH",
    "MAX_PAYLOAD_LENGTH", "CLASS_POLARIS", "ID_AUTH", "ID_POSITION",
    "HEADER_LENGTH", "FOOTER_LENGTH", "Frame", "FrameCodec", "FrameEncodingError",
    "FrameSyncError", "FrameChecksumError", "Position", "build_auth_frame",
    "build_position_frame", "to_centimeters"
]
