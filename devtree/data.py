"""Byte strings carrying typed markers: the value type of device tree properties."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator

_CHUNK_SIZE = 4096
_INTEGER_WIDTHS = (8, 16, 32, 64)


class MarkerType(enum.Enum):
    """Kinds of annotation that can be attached to a position in a value."""

    NONE = enum.auto()
    REF_PHANDLE = enum.auto()
    REF_PATH = enum.auto()
    LABEL = enum.auto()
    UINT8 = enum.auto()
    UINT16 = enum.auto()
    UINT32 = enum.auto()
    UINT64 = enum.auto()
    STRING = enum.auto()


@dataclass
class Marker:
    """An annotation at a byte offset: a type change, a reference or a label."""

    type: MarkerType
    offset: int
    ref: str | None = None


@dataclass
class Data:
    """A growable byte string with an ordered list of markers.

    The appending methods modify the value in place and return it, so
    calls can be chained.
    """

    val: bytearray = field(default_factory=bytearray)
    markers: list[Marker] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.val = bytearray(self.val)

    def __len__(self) -> int:
        return len(self.val)

    def __bytes__(self) -> bytes:
        return bytes(self.val)

    def append(self, payload: bytes) -> Data:
        """Append raw bytes."""
        self.val += payload
        return self

    def insert_at_marker(self, marker: Marker, payload: bytes) -> Data:
        """Insert bytes at a marker's offset, shifting the markers after it."""
        index = next(
            (i for i, m in enumerate(self.markers) if m is marker), None
        )
        if index is None:
            raise ValueError("marker does not belong to this value")
        self.val[marker.offset:marker.offset] = payload
        for later in self.markers[index + 1:]:
            later.offset += len(payload)
        return self

    def merge(self, other: Data) -> Data:
        """Append another value, carrying its markers over at shifted offsets."""
        base = len(self.val)
        self.val += other.val
        self.markers.extend(
            Marker(m.type, m.offset + base, m.ref) for m in other.markers
        )
        return self

    def append_integer(self, value: int, bits: int) -> Data:
        """Append a big-endian integer of 8, 16, 32 or 64 bits, truncating it."""
        if bits not in _INTEGER_WIDTHS:
            raise ValueError(f"Invalid literal size ({bits})")
        masked = value & ((1 << bits) - 1)
        self.val += masked.to_bytes(bits // 8, "big")
        return self

    def append_cell(self, word: int) -> Data:
        """Append one 32-bit cell."""
        return self.append_integer(word, 32)

    def append_addr(self, addr: int) -> Data:
        """Append one 64-bit address."""
        return self.append_integer(addr, 64)

    def append_byte(self, byte: int) -> Data:
        """Append a single byte."""
        return self.append_integer(byte, 8)

    def append_re(self, address: int, size: int) -> Data:
        """Append a memory reservation entry: a 64-bit address and size."""
        return self.append_integer(address, 64).append_integer(size, 64)

    def append_zeroes(self, length: int) -> Data:
        """Append the given number of zero bytes."""
        if length < 0:
            raise ValueError(f"cannot append a negative length ({length})")
        self.val += bytes(length)
        return self

    def append_align(self, align: int) -> Data:
        """Pad with zeroes up to the next multiple of align."""
        if align <= 0:
            raise ValueError(f"alignment must be positive ({align})")
        newlen = -(-len(self.val) // align) * align
        return self.append_zeroes(newlen - len(self.val))

    def add_marker(self, type: MarkerType, ref: str | None = None) -> Data:
        """Add a marker at the current end of the value."""
        self.markers.append(Marker(type, len(self.val), ref))
        return self

    def markers_of_type(self, type: MarkerType) -> Iterator[Marker]:
        """Yield the markers of one type, in order."""
        return (m for m in self.markers if m.type is type)

    def is_one_string(self) -> bool:
        """True if the value is exactly one NUL-terminated string."""
        return len(self.val) > 0 and self.val.find(0) == len(self.val) - 1

    @classmethod
    def from_file(cls, stream: BinaryIO, maxlen: int | None = None) -> Data:
        """Read a binary stream into a value, up to maxlen bytes if given.

        A maxlen of None or -1 reads to the end of the stream.
        """
        data = cls().add_marker(MarkerType.NONE)
        unlimited = maxlen is None or maxlen == -1
        while unlimited or len(data.val) < maxlen:
            want = _CHUNK_SIZE if unlimited else maxlen - len(data.val)
            chunk = stream.read(want)
            if not chunk:
                break
            data.val += chunk
        return data