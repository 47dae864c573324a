from kv6util.kv6file import (
    KV6_MAGIC,
    HEADER_SIZE,
    VOXEL_SIZE,
    RESERVED_SENTINEL,
    Endian,
    KV6Error,
    TruncatedInput,
    ArithmeticOverflow,
    MagicMismatch,
    ByteCursor,
    ByteWriter,
    VoxelData,
    KV6File,
    decode_voxel,
    encode_voxel,
    decode_model,
    encode_model,
)
from kv6util.volume import Color, Volume
from kv6util import kv6file, volume
