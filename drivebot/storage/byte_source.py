import re
from typing import AsyncIterator, List, Optional, Tuple


class ByteSource:
    """Lazy, finite, single-pass sequence of byte pieces."""

    def __aiter__(self) -> AsyncIterator[bytes]:
        raise NotImplementedError

    async def read_all(self) -> bytes:
        return b"".join([piece async for piece in self])


class BufferedByteSource(ByteSource):
    def __init__(self, data: bytes, piece_size: int = 1024 * 1024):
        self._data = data
        self._piece_size = piece_size

    async def _pieces(self) -> AsyncIterator[bytes]:
        for start in range(0, len(self._data), self._piece_size):
            yield self._data[start:start + self._piece_size]

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._pieces()

    async def read_all(self) -> bytes:
        return self._data


class StreamByteSource(ByteSource):
    def __init__(self, stream: AsyncIterator[bytes]):
        self._stream = stream
        self._consumed = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise RuntimeError("Byte stream has already been consumed")
        self._consumed = True
        return self._stream.__aiter__()


class ChunkReader:
    """
    Serves byte ranges from a ByteSource at non-decreasing offsets.

    Bytes before the requested offset are released; bytes at or after it are
    kept, so a chunk the backend only partly confirmed can be re-read from the
    confirmed offset. Asking for an offset ahead of the buffer skips forward
    through the source.
    """

    def __init__(self, source: ByteSource):
        self._pieces = source.__aiter__()
        self._buffer = bytearray()
        self._start = 0  # absolute offset of self._buffer[0]
        self._exhausted = False

    @property
    def position(self) -> int:
        return self._start

    async def read(self, offset: int, length: int) -> bytes:
        if offset < self._start:
            raise ValueError(f"Offset {offset} was already released (reader is at {self._start})")
        while True:
            self._release(offset)
            if self._start + len(self._buffer) >= offset + length or self._exhausted:
                break
            piece = await self._next_piece()
            if piece:
                self._buffer.extend(piece)
        if self._start < offset:
            # Source ended before reaching the offset
            return b""
        return bytes(self._buffer[:length])

    def _release(self, offset: int) -> None:
        drop = min(offset - self._start, len(self._buffer))
        if drop > 0:
            del self._buffer[:drop]
            self._start += drop

    async def _next_piece(self) -> Optional[bytes]:
        try:
            return await self._pieces.__anext__()
        except StopAsyncIteration:
            self._exhausted = True
            return None


def chunk_ranges(total_size: int, chunk_size: int) -> List[Tuple[int, int]]:
    """Partition [0, total_size) into (start, end_exclusive) ranges of chunk_size."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [(start, min(start + chunk_size, total_size)) for start in range(0, total_size, chunk_size)]


RANGE_RE = re.compile(r"^\s*bytes=(\d+)-(\d+)\s*$")


def parse_range_end(header: Optional[str]) -> Optional[int]:
    """Last confirmed byte from a resumable-upload ``Range: bytes=0-N`` header."""
    if not header:
        return None
    m = RANGE_RE.match(header)
    if not m:
        return None
    start, end = int(m.group(1)), int(m.group(2))
    if end < start:
        return None
    return end


def content_range(start: int, end: int, total: int) -> str:
    return f"bytes {start}-{end}/{total}"
