"""KV6File structure and related functions.

The goal of this module is to provide an interface for reading and writing
.kv6 sparse voxel models. A model stores, for every (x, y) column, a run of
colored surface voxels, followed by two tables of voxel counts per x slab and
per (x, y) column that renderers use to find a column's run directly.

    -------------------------------------------------------------------------------
    # Bytes        | Type       | Value
    -------------------------------------------------------------------------------
    4              | uint32     | magic 'Kvxl' (always big endian)
    4 x 3          | uint32     | size x, size y, size z
    4 x 3          | float32    | pivot x, pivot y, pivot z
    4              | uint32     | numVoxels (N)
    8 x N          | voxel      | see VoxelData
    4 x size x     | uint32     | xlen : voxels per x slab
    2 x sx x sy    | uint16     | ylen : voxels per (x, y) column (always little endian)
    -------------------------------------------------------------------------------
"""

import enum
import logging
import struct
import sys
from dataclasses import dataclass, field
from typing import Union

logger = logging.getLogger(__name__)

KV6_MAGIC = 0x4B76786C  # b"Kvxl"
HEADER_SIZE = 32
VOXEL_SIZE = 8
RESERVED_SENTINEL = 128

BytesLike = Union[bytes, bytearray, memoryview]


class Endian(str, enum.Enum):
    """Byte order of multi-byte fields."""

    LITTLE = "little"
    BIG = "big"

    @property
    def struct_prefix(self) -> str:
        return "<" if self is Endian.LITTLE else ">"


class KV6Error(ValueError):
    """Base class for malformed .kv6 data."""


class TruncatedInput(KV6Error):
    """Fewer bytes remain than a field or array requires."""

    def __init__(self, what: str, offset: int, needed: int, available: int):
        super().__init__(what, offset, needed, available)
        self.what = what
        self.offset = offset
        self.needed = needed
        self.available = available

    def __str__(self):
        return (
            f"Truncated input reading {self.what} at offset {hex(self.offset)}: "
            f"need {self.needed} bytes, {self.available} available"
        )


class ArithmeticOverflow(KV6Error):
    """A declared element count does not fit in addressable memory."""


class MagicMismatch(KV6Error):
    """The file does not start with the expected magic."""

    def __init__(self, found: int, expected: int = KV6_MAGIC):
        super().__init__(found, expected)
        self.found = found
        self.expected = expected

    def __str__(self):
        return f"Invalid .kv6 magic: {self.found:#010x}; expected {self.expected:#010x}"


class ByteCursor:
    """Read position over an in-memory buffer.

    The offset only moves forward. Every read is bounds checked and raises
    TruncatedInput instead of returning short data.
    """

    def __init__(self, data: BytesLike, offset: int = 0):
        self.data = memoryview(data).cast("B")
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def require(self, n: int, what: str = "data"):
        """Check that at least n bytes remain, without consuming them."""
        if n > sys.maxsize:
            raise ArithmeticOverflow(
                f"{what} at offset {hex(self.offset)} needs {n} bytes, "
                f"which exceeds the addressable size"
            )
        if n > self.remaining:
            raise TruncatedInput(what, self.offset, n, self.remaining)

    def read_bytes(self, n: int, what: str = "data") -> bytes:
        self.require(n, what)
        start = self.offset
        self.offset += n
        return self.data[start : self.offset].tobytes()


class ByteWriter:
    """Write position over a preallocated output buffer."""

    def __init__(self, size: int):
        self.buffer = bytearray(size)
        self.offset = 0

    def write(self, bytes_: bytes):
        end = self.offset + len(bytes_)
        if end > len(self.buffer):
            raise ValueError(f"Write past end of buffer: {end} > {len(self.buffer)}")
        self.buffer[self.offset : end] = bytes_
        self.offset = end

    def getvalue(self) -> bytes:
        if self.offset != len(self.buffer):
            raise ValueError(
                f"Wrote {self.offset} bytes into a {len(self.buffer)} byte buffer"
            )
        return bytes(self.buffer)


class UInt8:
    """Representative of .kv6 file 8-bit unsigned integers."""

    size = 1

    @staticmethod
    def read(cursor: ByteCursor, endian: Endian, what: str = "uint8") -> int:
        return int.from_bytes(cursor.read_bytes(1, what), endian.value)

    @staticmethod
    def write(uint8: int, endian: Endian) -> bytes:
        return uint8.to_bytes(1, endian.value)


class UInt16:
    """Representative of .kv6 file 16-bit unsigned integers."""

    size = 2

    @staticmethod
    def read(cursor: ByteCursor, endian: Endian, what: str = "uint16") -> int:
        return int.from_bytes(cursor.read_bytes(2, what), endian.value)

    @staticmethod
    def write(uint16: int, endian: Endian) -> bytes:
        return uint16.to_bytes(2, endian.value)


class UInt32:
    """Representative of .kv6 file 32-bit unsigned integers."""

    size = 4

    @staticmethod
    def read(cursor: ByteCursor, endian: Endian, what: str = "uint32") -> int:
        """Read a 32-bit unsigned integer from the cursor."""
        return int.from_bytes(cursor.read_bytes(4, what), endian.value)

    @staticmethod
    def write(uint32: int, endian: Endian) -> bytes:
        """Write a 32-bit unsigned integer to bytes."""
        return uint32.to_bytes(4, endian.value)


class Float32:
    """Representative of .kv6 file 32-bit floats."""

    size = 4

    @staticmethod
    def read(cursor: ByteCursor, endian: Endian, what: str = "float32") -> float:
        return struct.unpack(endian.struct_prefix + "f", cursor.read_bytes(4, what))[0]

    @staticmethod
    def write(float32: float, endian: Endian) -> bytes:
        return struct.pack(endian.struct_prefix + "f", float32)

    @staticmethod
    def narrow(value: float) -> float:
        """Round a Python float to the nearest 32-bit float."""
        return struct.unpack("<f", struct.pack("<f", value))[0]


@dataclass(frozen=True)
class VoxelData:
    """Voxel record.

    -------------------------------------------------------------------------------
    # Bytes  | Type       | Value
    -------------------------------------------------------------------------------
    1        | uint8      | red (read as big endian)
    1        | uint8      | green
    1        | uint8      | blue
    1        | uint8      | reserved : always 128, probably once an alpha value
    2        | uint16     | height : z within the column (always little endian)
    1        | uint8      | visibility : low 6 bits are hidden surface removal info
    1        | uint8      | normal index : into the renderer's normal table
    -------------------------------------------------------------------------------
    """

    red: int
    green: int
    blue: int
    reserved: int = RESERVED_SENTINEL
    height: int = 0
    visibility_mask: int = 0
    normal_index: int = 0

    @property
    def color(self) -> tuple[int, int, int]:
        return (self.red, self.green, self.blue)

    @classmethod
    def read(cls, cursor: ByteCursor, endian: Endian = Endian.LITTLE) -> "VoxelData":
        """Read a voxel record from the given cursor."""
        cursor.require(VOXEL_SIZE, "voxel")

        red = UInt8.read(cursor, Endian.BIG)
        green = UInt8.read(cursor, endian)
        blue = UInt8.read(cursor, endian)
        reserved = UInt8.read(cursor, endian)

        height = UInt16.read(cursor, Endian.LITTLE)
        visibility_mask = UInt8.read(cursor, endian)
        normal_index = UInt8.read(cursor, endian)

        return VoxelData(red, green, blue, reserved, height, visibility_mask, normal_index)

    def to_bytes(self, endian: Endian = Endian.LITTLE) -> bytes:
        return (
            UInt8.write(self.red, Endian.BIG)
            + UInt8.write(self.green, endian)
            + UInt8.write(self.blue, endian)
            + UInt8.write(self.reserved, endian)
            + UInt16.write(self.height, Endian.LITTLE)
            + UInt8.write(self.visibility_mask, endian)
            + UInt8.write(self.normal_index, endian)
        )

    def __bytes__(self):
        return self.to_bytes()


@dataclass
class KV6File:
    """KV6File class."""

    magic: int
    size_x: int
    size_y: int
    size_z: int
    pivot_x: float
    pivot_y: float
    pivot_z: float
    voxels: list[VoxelData] = field(default_factory=list)
    x_index: list[int] = field(default_factory=list)
    y_index: list[list[int]] = field(default_factory=list)

    def __post_init__(self):
        # pivots are stored as float32
        self.pivot_x = Float32.narrow(self.pivot_x)
        self.pivot_y = Float32.narrow(self.pivot_y)
        self.pivot_z = Float32.narrow(self.pivot_z)

    @property
    def size(self) -> tuple[int, int, int]:
        return (self.size_x, self.size_y, self.size_z)

    @property
    def pivot(self) -> tuple[float, float, float]:
        return (self.pivot_x, self.pivot_y, self.pivot_z)

    def has_valid_magic(self) -> bool:
        return self.magic == KV6_MAGIC

    def column(self, x: int, y: int) -> list[VoxelData]:
        """Return the voxel run of column (x, y), top to bottom as stored."""
        if not (0 <= x < self.size_x and 0 <= y < self.size_y):
            raise IndexError(
                f"Column ({x}, {y}) out of bounds for size ({self.size_x}, {self.size_y})"
            )
        start = sum(self.x_index[:x]) + sum(self.y_index[x][:y])
        return self.voxels[start : start + self.y_index[x][y]]

    @staticmethod
    def from_bytes(data: BytesLike, endian: Endian = Endian.LITTLE) -> "KV6File":
        """Decode a whole .kv6 buffer."""
        cursor = ByteCursor(data)

        magic = UInt32.read(cursor, Endian.BIG, "magic")

        size_x = UInt32.read(cursor, endian, "size x")
        size_y = UInt32.read(cursor, endian, "size y")
        size_z = UInt32.read(cursor, endian, "size z")

        pivot_x = Float32.read(cursor, endian, "pivot x")
        pivot_y = Float32.read(cursor, endian, "pivot y")
        pivot_z = Float32.read(cursor, endian, "pivot z")

        num_voxels = UInt32.read(cursor, endian, "voxel count")
        logger.debug(
            "kv6 header: size (%d, %d, %d), pivot (%g, %g, %g), %d voxels",
            size_x, size_y, size_z, pivot_x, pivot_y, pivot_z, num_voxels,
        )

        cursor.require(num_voxels * VOXEL_SIZE, "voxels")
        voxels = [VoxelData.read(cursor, endian) for _ in range(num_voxels)]

        cursor.require(size_x * UInt32.size, "x index")
        x_index = [UInt32.read(cursor, endian, "x index") for _ in range(size_x)]

        cursor.require(size_x * size_y * UInt16.size, "y index")
        y_index = [
            [UInt16.read(cursor, Endian.LITTLE, "y index") for _ in range(size_y)]
            for _ in range(size_x)
        ]

        if cursor.remaining:
            logger.warning(
                "Ignoring %d trailing bytes after .kv6 data at offset %s",
                cursor.remaining, hex(cursor.offset),
            )

        return KV6File(
            magic,
            size_x,
            size_y,
            size_z,
            pivot_x,
            pivot_y,
            pivot_z,
            voxels,
            x_index,
            y_index,
        )

    def encoded_size(self) -> int:
        return (
            HEADER_SIZE
            + VOXEL_SIZE * len(self.voxels)
            + UInt32.size * self.size_x
            + UInt16.size * self.size_x * self.size_y
        )

    def to_bytes(self, endian: Endian = Endian.LITTLE) -> bytes:
        """Encode to a .kv6 buffer."""
        if len(self.x_index) != self.size_x:
            raise ValueError(
                f"x index has {len(self.x_index)} entries; expected size x {self.size_x}"
            )
        if len(self.y_index) != self.size_x:
            raise ValueError(
                f"y index has {len(self.y_index)} slabs; expected size x {self.size_x}"
            )
        for x, slab in enumerate(self.y_index):
            if len(slab) != self.size_y:
                raise ValueError(
                    f"y index slab {x} has {len(slab)} entries; expected size y {self.size_y}"
                )

        writer = ByteWriter(self.encoded_size())

        writer.write(UInt32.write(self.magic, Endian.BIG))

        writer.write(UInt32.write(self.size_x, endian))
        writer.write(UInt32.write(self.size_y, endian))
        writer.write(UInt32.write(self.size_z, endian))

        writer.write(Float32.write(self.pivot_x, endian))
        writer.write(Float32.write(self.pivot_y, endian))
        writer.write(Float32.write(self.pivot_z, endian))

        writer.write(UInt32.write(len(self.voxels), endian))
        for voxel in self.voxels:
            writer.write(voxel.to_bytes(endian))

        for count in self.x_index:
            writer.write(UInt32.write(count, endian))

        for slab in self.y_index:
            for count in slab:
                writer.write(UInt16.write(count, Endian.LITTLE))

        logger.debug("kv6 encoded: %d voxels, %d bytes", len(self.voxels), writer.offset)
        return writer.getvalue()

    def __bytes__(self):
        return self.to_bytes()

    @staticmethod
    def read(path: str, endian: Endian = Endian.LITTLE) -> "KV6File":
        """Read a .kv6 file from the given path."""
        with open(path, "rb") as f:
            kv6 = KV6File.from_bytes(f.read(), endian)

        if not kv6.has_valid_magic():
            raise MagicMismatch(kv6.magic)

        return kv6

    def write(self, path: str, endian: Endian = Endian.LITTLE):
        """Write a .kv6 file to the given path."""
        with open(path, "wb") as f:
            f.write(self.to_bytes(endian))


def decode_voxel(data: BytesLike, endian: Endian = Endian.LITTLE) -> tuple[VoxelData, int]:
    """Decode one voxel record from the start of data.

    Returns the record and the number of bytes consumed (always 8).
    """
    cursor = ByteCursor(data)
    voxel = VoxelData.read(cursor, endian)
    return voxel, cursor.offset


def encode_voxel(voxel: VoxelData, endian: Endian = Endian.LITTLE) -> bytes:
    """Encode one voxel record to 8 bytes."""
    return voxel.to_bytes(endian)


def decode_model(data: BytesLike, endian: Endian = Endian.LITTLE) -> KV6File:
    """Decode a whole .kv6 buffer. The magic is stored but not checked."""
    return KV6File.from_bytes(data, endian)


def encode_model(model: KV6File, endian: Endian = Endian.LITTLE) -> bytes:
    """Encode a model; the voxel count is taken from len(model.voxels)."""
    return model.to_bytes(endian)
