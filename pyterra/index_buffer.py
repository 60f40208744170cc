from typing import NamedTuple

import numpy as np

# Offsets of the two triangles of a grid cell, relative to its top-left vertex.
# `W` stands for the row stride (resolution + 1).
_CELL_PATTERN = ((0, 0), (1, 0), (0, 1), (1, 0), (1, 1), (0, 1))


class IndexBuffers(NamedTuple):
    '''Little-endian uint16 index data shared by every terrain node'''
    full: bytes
    half: bytes

    def combined(self) -> bytes:
        '''Full resolution indices followed by the half resolution ones'''
        return self.full + self.half


def make_index_buffer(resolution: int) -> np.ndarray:
    """Triangulate a square grid of `resolution` x `resolution` cells

    Parameters
    ----------
    resolution : int
        Number of cells along each side

    Returns
    -------
    indices : np.ndarray
        uint16 array of length 6 * resolution**2. Cell (x, y) contributes the
        triangles (v, v+1, v+W) and (v+1, v+W+1, v+W) with v = x + y*W and
        W = resolution + 1.
    """
    if resolution < 1:
        raise ValueError(f"Invalid resolution: {resolution}")
    width = resolution + 1
    if width * width > 1 << 16:
        raise ValueError(f"Resolution too large for 16 bit indices: {resolution}")

    offsets = np.array([dx + dy * width for dx, dy in _CELL_PATTERN], dtype=np.int64)
    xs, ys = np.meshgrid(np.arange(resolution), np.arange(resolution))
    base = (xs + ys * width).ravel()
    return (base[:, None] + offsets[None, :]).ravel().astype(np.uint16)


def create_index_buffers(resolution: int) -> IndexBuffers:
    """Build the full and half resolution index blobs

    Parameters
    ----------
    resolution : int
        Heights resolution of a node; the half buffer uses resolution // 2

    Returns
    -------
    buffers : IndexBuffers
    """
    full = make_index_buffer(resolution)
    half = make_index_buffer(resolution // 2)
    return IndexBuffers(full=full.astype('<u2').tobytes(), half=half.astype('<u2').tobytes())
