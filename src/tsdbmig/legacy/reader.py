"""
Per-series readers over legacy chunk data.

- ChunkReader walks the fixed-size records of one series' chunk file, followed by the head
  chunks that only exist in the heads file, decoding one chunk per read().
- SampleReader flattens a ChunkReader into a lazy iterator of Sample objects in ascending
  time order, reading chunk records on demand.

Both hold at most one open file handle, opened on first read and released by close().
Closing is idempotent. A reader is not rewindable; open a new one to restart a series.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator, Sequence
from typing import BinaryIO

from tsdbmig.core.constants import CHUNK_LEN_WITH_HEADER
from tsdbmig.core.labels import format_fingerprint
from tsdbmig.core.model import Sample, SeriesRecord

from .chunk import Chunk, decode_chunk
from .paths import chunk_file_path

logger = logging.getLogger(__name__)


class ChunkReader:
    """
    Reads the chunks of one series, one record at a time.

    Args:
        path (str): Chunk file of the series (may not exist).
        head_chunks (Sequence[bytes]): Records to yield after the file is exhausted.
        expected_file_chunks (int): Persisted chunk count claimed by the index; used only to
            warn when the file is missing.
    """

    def __init__(
        self,
        path: str,
        head_chunks: Sequence[bytes] = (),
        *,
        expected_file_chunks: int = 0,
    ) -> None:
        self.path = path
        self._head_chunks = list(head_chunks)
        self._expected_file_chunks = expected_file_chunks
        self._fh: BinaryIO | None = None
        self._opened = False
        self._file_chunks = 0
        self._file_pos = 0
        self._head_pos = 0
        self.closed = False

    def _open(self) -> None:
        self._opened = True
        try:
            fh = open(self.path, "rb")
        except FileNotFoundError:
            if self._expected_file_chunks:
                logger.warning(
                    "Chunk file %s missing, index lists %d persisted chunks",
                    self.path,
                    self._expected_file_chunks,
                )
            return
        size = os.fstat(fh.fileno()).st_size
        self._file_chunks, tail = divmod(size, CHUNK_LEN_WITH_HEADER)
        if tail:
            logger.warning(
                "Chunk file %s has a trailing partial record of %d bytes", self.path, tail
            )
        self._fh = fh

    def read(self) -> Chunk | None:
        """
        Decode the next chunk.

        Returns:
            Chunk | None: The next chunk, or None once every chunk has been read.

        Raises:
            ValueError: If the reader is closed.
            CorruptChunk: If the record cannot be decoded.
            OSError: If the chunk file cannot be read.
        """
        if self.closed:
            raise ValueError(f"read from closed chunk reader ({self.path})")
        if not self._opened:
            self._open()
        if self._fh is not None and self._file_pos < self._file_chunks:
            self._fh.seek(self._file_pos * CHUNK_LEN_WITH_HEADER)
            record = self._fh.read(CHUNK_LEN_WITH_HEADER)
            self._file_pos += 1
            return decode_chunk(record)
        if self._head_pos < len(self._head_chunks):
            record = self._head_chunks[self._head_pos]
            self._head_pos += 1
            return decode_chunk(record)
        return None

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._head_chunks = []
        fh, self._fh = self._fh, None
        if fh is not None:
            fh.close()


class SampleReader:
    """
    Lazy ascending-time iterator over one series' samples.

    Samples that go backwards in time relative to the last yielded one (overlapping chunks)
    are dropped and counted in `dropped`; equal timestamps pass through.

    Examples:
        >>> reader = open_sample_reader("data", record)  # doctest: +SKIP
        >>> with reader:  # doctest: +SKIP
        ...     for sample in reader:
        ...         print(sample.timestamp, sample.value)
    """

    def __init__(self, chunk_reader: ChunkReader, name: str = "") -> None:
        self._chunks = chunk_reader
        self._iter: Iterator[Sample] | None = None
        self._last_time: int | None = None
        self.name = name or chunk_reader.path
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._chunks.closed

    def __iter__(self) -> SampleReader:
        return self

    def __next__(self) -> Sample:
        while True:
            if self._iter is None:
                chunk = self._chunks.read()
                if chunk is None:
                    raise StopIteration
                self._iter = iter(chunk)
            for sample in self._iter:
                if self._last_time is not None and sample.timestamp < self._last_time:
                    self.dropped += 1
                    logger.debug(
                        "%s: dropping sample at %d behind %d",
                        self.name,
                        sample.timestamp,
                        self._last_time,
                    )
                    continue
                self._last_time = sample.timestamp
                return sample
            self._iter = None

    def close(self) -> None:
        self._iter = None
        self._chunks.close()

    def __enter__(self) -> SampleReader:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def open_sample_reader(input_dir: str, record: SeriesRecord) -> SampleReader:
    """
    Build a SampleReader for a series. No file is opened until the first sample is pulled.

    Args:
        input_dir (str): Legacy storage directory.
        record (SeriesRecord): Index entry of the series.
    """
    chunk_reader = ChunkReader(
        chunk_file_path(input_dir, record.fingerprint),
        record.head_chunks,
        expected_file_chunks=record.persisted_chunks,
    )
    return SampleReader(chunk_reader, name=format_fingerprint(record.fingerprint))
