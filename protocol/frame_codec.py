"""Frame encoding / decoding utilities.

Wire layout (all frames)::

    [sync0][sync1][class][id][length:u16 LE][payload][ckA][ckB]

``length`` covers the payload only. The checksum runs over every byte from
the class field to the end of the payload, sync bytes excluded.
"""

import struct
from dataclasses import dataclass

from .constants import (
    SYNC_BYTES, LENGTH_FIELD_FORMAT, MAX_PAYLOAD_LENGTH, CHECKSUM_LENGTH,
    HEADER_LENGTH, FOOTER_LENGTH
)


class FrameEncodingError(ValueError):
    """フレームを組み立てられない（送信前に検出されるエラー）"""
    pass


class FrameSyncError(ValueError):
    """フレーム同期エラー（マーカー不一致・長さ不整合）"""
    pass


class FrameChecksumError(ValueError):
    """チェックサム不一致"""
    pass


@dataclass(frozen=True)
class Frame:
    msg_class: int
    msg_id: int
    payload: bytes = b""

    def to_bytes(self) -> bytes:
        return FrameCodec.encode(self.msg_class, self.msg_id, self.payload)


class FrameCodec:
    """フレームのエンコード・デコードクラス"""

    @staticmethod
    def checksum(data: bytes) -> bytes:
        """8ビットのフレッチャー型チェックサム (ckA, ckB) を計算"""
        ck_a = 0
        ck_b = 0
        for byte in data:
            ck_a = (ck_a + byte) & 0xFF
            ck_b = (ck_b + ck_a) & 0xFF
        return bytes((ck_a, ck_b))

    @staticmethod
    def encode(msg_class: int, msg_id: int, payload: bytes = b"") -> bytes:
        """
        フレームをエンコード

        Args:
            msg_class: メッセージクラス (0-255)
            msg_id: メッセージID (0-255)
            payload: ペイロード（最大 65535 バイト）

        Returns:
            同期バイトからチェックサムまでを含むフレームのバイト列

        Raises:
            FrameEncodingError: クラス/IDが1バイトに収まらない、またはペイロードが長すぎる場合
        """
        if not 0 <= msg_class <= 0xFF:
            raise FrameEncodingError(f"Invalid message class {msg_class}: must fit in one byte")
        if not 0 <= msg_id <= 0xFF:
            raise FrameEncodingError(f"Invalid message id {msg_id}: must fit in one byte")
        payload = bytes(payload)
        if len(payload) > MAX_PAYLOAD_LENGTH:
            raise FrameEncodingError(
                f"Payload length {len(payload)} exceeds maximum {MAX_PAYLOAD_LENGTH}"
            )

        body = bytes((msg_class, msg_id)) + struct.pack(LENGTH_FIELD_FORMAT, len(payload)) + payload
        return SYNC_BYTES + body + FrameCodec.checksum(body)

    @staticmethod
    def decode(raw: bytes) -> Frame:
        """
        バイト列を1フレームとしてデコード

        Raises:
            FrameSyncError: 同期バイト不一致、または長さフィールドと実際の長さが合わない場合
            FrameChecksumError: チェックサムが一致しない場合
        """
        raw = bytes(raw)
        if len(raw) < HEADER_LENGTH + FOOTER_LENGTH:
            raise FrameSyncError(
                f"Buffer too short for frame: need {HEADER_LENGTH + FOOTER_LENGTH}, got {len(raw)}"
            )
        if raw[:len(SYNC_BYTES)] != SYNC_BYTES:
            raise FrameSyncError(f"Invalid sync bytes: {raw[:len(SYNC_BYTES)].hex()}")

        msg_class = raw[len(SYNC_BYTES)]
        msg_id = raw[len(SYNC_BYTES) + 1]
        (length,) = struct.unpack_from(LENGTH_FIELD_FORMAT, raw, len(SYNC_BYTES) + 2)

        expected_len = HEADER_LENGTH + length + FOOTER_LENGTH
        if len(raw) != expected_len:
            raise FrameSyncError(f"Frame length mismatch: header says {expected_len}, got {len(raw)}")

        body = raw[len(SYNC_BYTES):HEADER_LENGTH + length]
        received = raw[-CHECKSUM_LENGTH:]
        expected = FrameCodec.checksum(body)
        if received != expected:
            raise FrameChecksumError(
                f"Checksum mismatch: expected {expected.hex()}, got {received.hex()}"
            )

        return Frame(msg_class=msg_class, msg_id=msg_id, payload=raw[HEADER_LENGTH:HEADER_LENGTH + length])

    @staticmethod
    def frame_length(raw: bytes) -> int:
        """先頭のヘッダーからフレーム全体の長さを求める（ヘッダー不足なら 0）"""
        if len(raw) < HEADER_LENGTH:
            return 0
        if raw[:len(SYNC_BYTES)] != SYNC_BYTES:
            raise FrameSyncError(f"Invalid sync bytes: {bytes(raw[:len(SYNC_BYTES)]).hex()}")
        (length,) = struct.unpack_from(LENGTH_FIELD_FORMAT, raw, len(SYNC_BYTES) + 2)
        return HEADER_LENGTH + length + FOOTER_LENGTH
