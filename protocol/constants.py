"""Protocol constants for frame processing."""

# Frame markers (2 bytes)
SYNC_BYTES = b"\xb5\x62"

# Frame field sizes
CLASS_LENGTH = 1
ID_LENGTH = 1
LENGTH_FIELD_BYTES = 2
CHECKSUM_LENGTH = 2

# 長さフィールドはリトルエンディアンの u16
LENGTH_FIELD_FORMAT = "<H"
MAX_PAYLOAD_LENGTH = 0xFFFF

# Message definitions (class / id)
CLASS_POLARIS = 0xE0
ID_AUTH = 0x01
ID_POSITION = 0x03

# Position payload: 3 x little endian int32, centimeters
POSITION_FORMAT = "<iii"
POSITION_SCALE = 100
INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

# Calculated frame lengths
HEADER_LENGTH = len(SYNC_BYTES) + CLASS_LENGTH + ID_LENGTH + LENGTH_FIELD_BYTES
FOOTER_LENGTH = CHECKSUM_LENGTH
