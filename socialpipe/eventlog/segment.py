"""
Append-only segment file for one partition.

Frames are appended with a single write. On open, the file is scanned and
truncated after the last valid frame, dropping a partial or corrupt tail left
by a crash.
"""

import os
from pathlib import Path
from typing import List, Optional

from socialpipe.eventlog.format import (
    LENGTH_FIELD_SIZE,
    MAX_RECORD_SIZE,
    CorruptRecordError,
    LogRecord,
    decode_record,
    encode_record,
)
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


class SegmentFile:
    """
    A partition's on-disk record file.
    
    Attributes:
        path: Path to the segment file
        base_offset: Offset of the first record in the file
    """
    
    SEGMENT_FILE_SUFFIX = ".log"
    OFFSET_PADDING = 20
    
    def __init__(self, directory: Path, base_offset: int = 0, fsync_on_append: bool = False):
        """
        Open (or create) a segment file.
        
        Args:
            directory: Partition directory
            base_offset: Offset of the first record
            fsync_on_append: Whether to fsync after each append
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.base_offset = base_offset
        self.fsync_on_append = fsync_on_append
        
        filename = f"{str(base_offset).zfill(self.OFFSET_PADDING)}{self.SEGMENT_FILE_SUFFIX}"
        self.path = self.directory / filename
        
        self._fd: Optional[int] = None
    
    @classmethod
    def find_existing(cls, directory: Path) -> Optional[Path]:
        """Return the newest segment file in directory, if any."""
        directory = Path(directory)
        if not directory.exists():
            return None
        
        candidates = sorted(
            directory.glob(f"*{cls.SEGMENT_FILE_SUFFIX}"),
            key=lambda p: int(p.stem),
        )
        return candidates[-1] if candidates else None
    
    def recover(self) -> List[LogRecord]:
        """
        Read every valid record and truncate anything after the last one.
        
        Returns:
            Recovered records in offset order
        """
        records: List[LogRecord] = []
        valid_bytes = 0
        
        if self.path.exists():
            data = self.path.read_bytes()
            position = 0
            offset = self.base_offset
            
            while position + LENGTH_FIELD_SIZE <= len(data):
                length = int.from_bytes(data[position:position + LENGTH_FIELD_SIZE], "big")
                end = position + LENGTH_FIELD_SIZE + length
                
                if length <= 0 or length > MAX_RECORD_SIZE or end > len(data):
                    logger.warning(
                        "Partial record at end of segment",
                        path=str(self.path),
                        position=position,
                    )
                    break
                
                try:
                    records.append(decode_record(data[position:end], offset))
                except CorruptRecordError as e:
                    logger.error(
                        "Corrupt record in segment, truncating",
                        path=str(self.path),
                        position=position,
                        offset=offset,
                        error=str(e),
                    )
                    break
                
                position = end
                offset += 1
            
            valid_bytes = position
            
            if valid_bytes < len(data):
                with open(self.path, "r+b") as f:
                    f.truncate(valid_bytes)
        
        logger.info(
            "Recovered segment",
            path=str(self.path),
            records=len(records),
            bytes=valid_bytes,
        )
        
        return records
    
    def open(self) -> None:
        """Open the file for appending."""
        if self._fd is None:
            self._fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644)
    
    def append(self, record: LogRecord) -> int:
        """
        Append a record.
        
        Args:
            record: Record to append
        
        Returns:
            Bytes written
        
        Raises:
            IOError: If the write is partial
        """
        self.open()
        
        data = encode_record(record)
        written = os.write(self._fd, data)
        
        if written != len(data):
            raise IOError(f"Partial write: expected {len(data)} bytes, wrote {written} bytes")
        
        if self.fsync_on_append:
            os.fsync(self._fd)
        
        return written
    
    def flush(self) -> None:
        """Force buffered data to disk."""
        if self._fd is not None:
            os.fsync(self._fd)
    
    def close(self) -> None:
        """Flush and close the file."""
        if self._fd is not None:
            self.flush()
            os.close(self._fd)
            self._fd = None
    
    def __repr__(self) -> str:
        return f"SegmentFile(path={self.path}, base_offset={self.base_offset})"
