"""Upstream handshake messages (authentication and position report)."""

import math
import struct
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from .constants import (
    CLASS_POLARIS, ID_AUTH, ID_POSITION, POSITION_FORMAT, POSITION_SCALE,
    INT32_MIN, INT32_MAX, MAX_PAYLOAD_LENGTH
)
from .frame_codec import Frame, FrameEncodingError


@dataclass(frozen=True)
class Position:
    """ECEF 座標（メートル）"""
    x: float
    y: float
    z: float

    def __str__(self) -> str:
        return f"{self.x},{self.y},{self.z} (ECEF)"


def to_centimeters(coord: float) -> int:
    """
    メートル単位の座標をセンチメートルの int32 に変換

    10進表現に対して四捨五入（0から遠い方へ丸める）するので、
    1234.565 は 123457、-1234.565 は -123457 になる。

    Raises:
        FrameEncodingError: 有限値でない、または int32 の範囲を超える場合
    """
    if not math.isfinite(coord):
        raise FrameEncodingError(f"Invalid coordinate {coord}: must be finite")
    scaled = (Decimal(repr(float(coord))) * POSITION_SCALE).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    value = int(scaled)
    if not INT32_MIN <= value <= INT32_MAX:
        raise FrameEncodingError(f"Coordinate {coord} out of range for int32 centimeters")
    return value


def encode_position_payload(position: Position) -> bytes:
    """位置ペイロード（リトルエンディアン int32 x 3）を作成"""
    return struct.pack(
        POSITION_FORMAT,
        to_centimeters(position.x),
        to_centimeters(position.y),
        to_centimeters(position.z),
    )


def encode_auth_payload(token: str) -> bytes:
    """シリアル番号（ASCII）を認証ペイロードに変換"""
    try:
        payload = token.encode("ascii")
    except UnicodeEncodeError as e:
        raise FrameEncodingError(f"Auth token must be ASCII: {e}") from e
    if len(payload) > MAX_PAYLOAD_LENGTH:
        raise FrameEncodingError(f"Auth token length {len(payload)} exceeds maximum {MAX_PAYLOAD_LENGTH}")
    return payload


def build_auth_frame(token: str) -> bytes:
    return Frame(CLASS_POLARIS, ID_AUTH, encode_auth_payload(token)).to_bytes()


def build_position_frame(position: Position) -> bytes:
    return Frame(CLASS_POLARIS, ID_POSITION, encode_position_payload(position)).to_bytes()
