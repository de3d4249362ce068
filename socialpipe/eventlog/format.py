"""
Binary frame for event records stored in segment files.

Wire format:
    Length (4 bytes) - Length of everything after this field
    CRC32C (4 bytes) - Checksum of the payload below
    Magic byte (1 byte) - Format version
    Timestamp (8 bytes) - Produce time in milliseconds
    Key length (4 bytes)
    Key (variable) - UTF-8 partition key
    Value length (4 bytes)
    Value (variable) - Encoded event payload

Offsets are not stored: a record's offset is its position in the partition,
so it is reassigned on recovery by counting frames.
"""

import struct
from dataclasses import dataclass

import crc32c

MAGIC_V1 = 1

LENGTH_FIELD_SIZE = 4
MAX_RECORD_SIZE = 16 * 1024 * 1024


class CorruptRecordError(ValueError):
    """Raised when a frame fails validation."""
    pass


@dataclass
class LogRecord:
    """
    A single record in a partition.
    
    Attributes:
        offset: Position in the partition
        timestamp: Produce time in milliseconds
        key: Partition key
        value: Encoded payload
    """
    offset: int
    timestamp: int
    key: str
    value: bytes


def encode_record(record: LogRecord) -> bytes:
    """
    Serialize a record to a checksummed frame.
    
    Args:
        record: Record to serialize
    
    Returns:
        Frame bytes
    """
    key_bytes = record.key.encode("utf-8")
    
    payload = struct.pack(
        f">BQi{len(key_bytes)}si{len(record.value)}s",
        MAGIC_V1,
        record.timestamp,
        len(key_bytes),
        key_bytes,
        len(record.value),
        record.value,
    )
    
    crc = crc32c.crc32c(payload)
    
    return struct.pack(">II", 4 + len(payload), crc) + payload


def decode_record(frame: bytes, offset: int) -> LogRecord:
    """
    Deserialize a frame produced by encode_record.
    
    Args:
        frame: Complete frame including the length field
        offset: Offset to assign to the record
    
    Returns:
        Decoded record
    
    Raises:
        CorruptRecordError: If the frame is truncated or fails its checksum
    """
    if len(frame) < LENGTH_FIELD_SIZE + 4:
        raise CorruptRecordError(f"Frame too short: {len(frame)} bytes")
    
    length, crc = struct.unpack(">II", frame[:8])
    
    if len(frame) != LENGTH_FIELD_SIZE + length:
        raise CorruptRecordError(
            f"Frame length mismatch: header says {LENGTH_FIELD_SIZE + length}, got {len(frame)}"
        )
    
    payload = frame[8:]
    
    computed = crc32c.crc32c(payload)
    if computed != crc:
        raise CorruptRecordError(f"CRC mismatch: expected {crc}, computed {computed}")
    
    try:
        magic, timestamp, key_length = struct.unpack(">BQi", payload[:13])
        if magic != MAGIC_V1:
            raise CorruptRecordError(f"Unsupported magic byte: {magic}")
        
        key_end = 13 + key_length
        key = payload[13:key_end].decode("utf-8")
        
        value_length = struct.unpack(">i", payload[key_end:key_end + 4])[0]
        value = payload[key_end + 4:key_end + 4 + value_length]
    except (struct.error, UnicodeDecodeError) as e:
        raise CorruptRecordError(f"Malformed frame body: {e}") from e
    
    if key_length < 0 or value_length < 0 or len(value) != value_length:
        raise CorruptRecordError("Frame body lengths do not match its contents")
    
    return LogRecord(offset=offset, timestamp=timestamp, key=key, value=value)
