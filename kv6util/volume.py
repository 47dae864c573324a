"""Volume class for KV6Util.

The goal of this module is to provide an interface for creating and modifying
.kv6 models. This class is meant to be used by the user to build dense volumes
that can be converted to .kv6 files, which only store surface voxels.
"""

from kv6util import kv6file
from typing import Optional

# face visibility bits, set when the neighbour across that face is empty
FACE_NEG_X = 1
FACE_POS_X = 2
FACE_NEG_Y = 4
FACE_POS_Y = 8
FACE_NEG_Z = 16
FACE_POS_Z = 32

_FACES = (
    (FACE_NEG_X, (-1, 0, 0)),
    (FACE_POS_X, (1, 0, 0)),
    (FACE_NEG_Y, (0, -1, 0)),
    (FACE_POS_Y, (0, 1, 0)),
    (FACE_NEG_Z, (0, 0, -1)),
    (FACE_POS_Z, (0, 0, 1)),
)


class Color:
    """Color class."""

    def __init__(self, r: int, g: int, b: int):
        for name, value in (("r", r), ("g", g), ("b", b)):
            if not 0 <= value <= 255:
                raise ValueError(f"Color channel {name} out of range: {value}")
        self.r = r
        self.g = g
        self.b = b

    def __eq__(self, other):
        if not isinstance(other, Color):
            return False
        return self.r == other.r and self.g == other.g and self.b == other.b

    def __hash__(self):
        return hash((self.r, self.g, self.b))

    def __repr__(self):
        return f"Color({self.r}, {self.g}, {self.b})"


class Volume:
    """Volume class."""

    def __init__(
        self,
        size: tuple[int, int, int],
        pivot: Optional[tuple[float, float, float]] = None,
    ):
        self.size = size
        self.pivot = pivot if pivot is not None else (size[0] / 2, size[1] / 2, size[2] / 2)
        self.voxels: list[Optional[Color]] = [
            None for _ in range(size[0] * size[1] * size[2])
        ]

    def _in_bounds(self, index: tuple[int, int, int]) -> bool:
        return all(0 <= index[i] < self.size[i] for i in range(3))

    def _check_bounds(self, index: tuple[int, int, int]):
        for i in range(3):
            if index[i] < 0 or index[i] >= self.size[i]:
                raise ValueError(
                    f"Index {i} out of bounds: {index[i]} not in [0, {self.size[i]})"
                )

    def _flat(self, index: tuple[int, int, int]) -> int:
        return index[0] + index[1] * self.size[0] + index[2] * self.size[0] * self.size[1]

    def set(self, index: tuple[int, int, int], color: Optional[Color]):
        self._check_bounds(index)
        self.voxels[self._flat(index)] = color

    def get(self, index: tuple[int, int, int]) -> Optional[Color]:
        self._check_bounds(index)
        return self.voxels[self._flat(index)]

    def visibility(self, index: tuple[int, int, int]) -> int:
        """Face mask of the voxel at index; faces touching the outside count as visible."""
        mask = 0
        for bit, (dx, dy, dz) in _FACES:
            neighbour = (index[0] + dx, index[1] + dy, index[2] + dz)
            if not self._in_bounds(neighbour) or self.voxels[self._flat(neighbour)] is None:
                mask |= bit
        return mask

    def to_kv6file(self, surface_only: bool = True) -> kv6file.KV6File:
        size_x, size_y, size_z = self.size

        voxels = []
        x_index = []
        y_index = []
        for x in range(size_x):
            slab_counts = []
            for y in range(size_y):
                count = 0
                for z in range(size_z):
                    color = self.voxels[self._flat((x, y, z))]
                    if color is None:
                        continue
                    mask = self.visibility((x, y, z))
                    if surface_only and not mask:
                        continue
                    voxels.append(
                        kv6file.VoxelData(
                            color.r,
                            color.g,
                            color.b,
                            kv6file.RESERVED_SENTINEL,
                            z,
                            mask,
                            0,
                        )
                    )
                    count += 1
                slab_counts.append(count)
            y_index.append(slab_counts)
            x_index.append(sum(slab_counts))

        return kv6file.KV6File(
            kv6file.KV6_MAGIC,
            size_x,
            size_y,
            size_z,
            self.pivot[0],
            self.pivot[1],
            self.pivot[2],
            voxels,
            x_index,
            y_index,
        )

    @staticmethod
    def from_kv6file(kv6: kv6file.KV6File) -> "Volume":
        volume = Volume(kv6.size, kv6.pivot)

        for x in range(kv6.size_x):
            for y in range(kv6.size_y):
                for voxel in kv6.column(x, y):
                    if voxel.height >= kv6.size_z:
                        raise ValueError(
                            f"Voxel height {voxel.height} in column ({x}, {y}) "
                            f"not in [0, {kv6.size_z})"
                        )
                    volume.set((x, y, voxel.height), Color(*voxel.color))

        return volume
