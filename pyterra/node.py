from collections import deque
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, ClassVar, Optional

import numpy as np

from pyterra.config import (
    DEFAULT_TILE_RESOLUTION,
    MAX_TERRAIN_HEIGHT,
    MIN_TERRAIN_HEIGHT,
    PLANET_RADIUS,
)

NUM_FACES = 6


@dataclass(frozen=True, order=True)
class Priority:
    '''Importance of a node, larger is more important

    NaN and negative values collapse to `Priority.none()` so that priorities
    always compare.
    '''
    value: float = 0.0

    def __post_init__(self):
        if not self.value >= 0.0:
            object.__setattr__(self, 'value', 0.0)

    @staticmethod
    def none() -> "Priority":
        return Priority(0.0)

    @staticmethod
    def cutoff() -> "Priority":
        '''Below this a node is not worth displaying'''
        return Priority(1.0)

    @staticmethod
    def from_f64(value: float) -> "Priority":
        return Priority(float(value))


#------------------------------------------------
# Cube face mapping
#------------------------------------------------
def fspace_to_cspace(face: int, u, v) -> np.ndarray:
    """Map face-space coordinates to points on the surface of the unit cube

    Parameters
    ----------
    face : int
        Cube face, 0..5 for +X, -X, +Y, -Y, +Z, -Z
    u : array_like
        Face-space u in [-1, 1]
    v : array_like
        Face-space v in [-1, 1]

    Returns
    -------
    points : np.ndarray
        (..., 3) cube-space points
    """
    u = np.asarray(u, dtype=np.float64)
    v = np.asarray(v, dtype=np.float64)
    one = np.ones_like(u)
    if face == 0:
        axes = (one, u, v)
    elif face == 1:
        axes = (-one, -u, v)
    elif face == 2:
        axes = (-u, one, v)
    elif face == 3:
        axes = (u, -one, v)
    elif face == 4:
        axes = (-v, u, one)
    elif face == 5:
        axes = (v, u, -one)
    else:
        raise ValueError(f"face out of range: {face}")
    return np.stack(axes, axis=-1)


# Per face: (axis, sign) of the face normal, then of the u and v directions
_FACE_FRAMES = (
    ((0, 1), (1, 1), (2, 1)),
    ((0, -1), (1, -1), (2, 1)),
    ((1, 1), (0, -1), (2, 1)),
    ((1, -1), (0, 1), (2, 1)),
    ((2, 1), (1, 1), (0, -1)),
    ((2, -1), (1, 1), (0, 1)),
)


def _face_frame(face: int, point) -> tuple[float, float, float]:
    '''Components of `point` along the normal, u and v directions of `face`'''
    return tuple(sign * float(point[axis]) for axis, sign in _FACE_FRAMES[face])


def cspace_to_fspace(point) -> tuple[int, float, float]:
    """Project a direction onto the cube and return (face, u, v)

    Parameters
    ----------
    point : array_like
        Any non-zero vector, for example an ECEF position

    Returns
    -------
    face : int
    u : float
    v : float
    """
    components = [float(c) for c in point]
    axis = int(np.argmax(np.abs(components)))
    face = 2 * axis + (0 if components[axis] > 0 else 1)
    s, a, b = _face_frame(face, components)
    if not s > 0.0:
        raise ValueError(f"cannot project onto the cube: {components}")
    return face, a / s, b / s


def fspace_to_ecef(face: int, u, v, radius: float = PLANET_RADIUS) -> np.ndarray:
    '''Face-space coordinates to ECEF points on a sphere of `radius`'''
    p = fspace_to_cspace(face, u, v)
    return p / np.linalg.norm(p, axis=-1, keepdims=True) * radius


def node_outline(node: "VNode", steps: int = 8, height: float = 0.0) -> np.ndarray:
    """Border of a node as a closed polyline on the planet surface

    Parameters
    ----------
    node : VNode
        Node to outline
    steps : int
        Segments per edge
    height : float
        Height above the sphere, meters

    Returns
    -------
    points : np.ndarray
        (4 * steps, 3) ECEF points, counter-clockwise in face space
    """
    u0, v0, u1, v1 = node.fspace_bounds()
    t = np.linspace(0.0, 1.0, steps, endpoint=False)
    u = np.concatenate([u0 + (u1 - u0) * t, np.full(steps, u1), u1 - (u1 - u0) * t, np.full(steps, u0)])
    v = np.concatenate([np.full(steps, v0), v0 + (v1 - v0) * t, np.full(steps, v1), v1 - (v1 - v0) * t])
    return fspace_to_ecef(node.face, u, v, PLANET_RADIUS + height)


@lru_cache(maxsize=1 << 16)
def _node_bounds(face: int, level: int, x: int, y: int) -> tuple[np.ndarray, np.ndarray]:
    n = 1 << level
    u = np.linspace(-1.0 + 2.0 * x / n, -1.0 + 2.0 * (x + 1) / n, 5)
    v = np.linspace(-1.0 + 2.0 * y / n, -1.0 + 2.0 * (y + 1) / n, 5)
    uu, vv = np.meshgrid(u, v)
    surface = fspace_to_ecef(face, uu.ravel(), vv.ravel(), 1.0)
    points = np.vstack([
        surface * (PLANET_RADIUS + MIN_TERRAIN_HEIGHT),
        surface * (PLANET_RADIUS + MAX_TERRAIN_HEIGHT),
    ])
    lo = points.min(axis=0)
    hi = points.max(axis=0)
    lo.setflags(write=False)
    hi.setflags(write=False)
    return lo, hi


@dataclass(frozen=True)
class VNode:
    """Address of one cell of the terrain quadtree

    Each of the six cube faces is the root (level 0) of a quadtree. A node at
    level L covers cell (x, y) of a 2**L by 2**L grid over its face.

    Attributes
    ----------
    face : int
        Cube face, 0..5
    level : int
        Subdivision level, 0 is a whole face
    x : int
        Column within the level, 0 .. 2**level - 1
    y : int
        Row within the level, 0 .. 2**level - 1
    """
    face: int
    level: int
    x: int
    y: int

    LEVEL_CELL_10M: ClassVar[int] = 11
    LEVEL_CELL_1M: ClassVar[int] = 15
    LEVEL_CELL_2CM: ClassVar[int] = 20

    def __post_init__(self) -> None:
        if not (0 <= self.face < NUM_FACES):
            raise ValueError(f"face out of range: {self.face}")
        if not (0 <= self.level <= self.LEVEL_CELL_2CM):
            raise ValueError(f"level out of range: {self.level}")
        n = 1 << self.level
        if not (0 <= self.x < n):
            raise ValueError(f"x out of range at level={self.level}: {self.x}")
        if not (0 <= self.y < n):
            raise ValueError(f"y out of range at level={self.level}: {self.y}")

    @staticmethod
    def roots() -> list["VNode"]:
        return [VNode(face, 0, 0, 0) for face in range(NUM_FACES)]

    @staticmethod
    def from_ecef(point, level: int) -> "VNode":
        '''Node at `level` containing the direction of an ECEF point'''
        face, u, v = cspace_to_fspace(point)
        n = 1 << level
        x = min(max(int((u + 1.0) * 0.5 * n), 0), n - 1)
        y = min(max(int((v + 1.0) * 0.5 * n), 0), n - 1)
        return VNode(face, level, x, y)

    #------------------------------------------------
    # Geometry
    #------------------------------------------------
    def side_length(self) -> float:
        '''Approximate length of one side of the node on the ground, meters'''
        return 0.5 * np.pi * PLANET_RADIUS / (1 << self.level)

    def cell_size(self, resolution: int = DEFAULT_TILE_RESOLUTION) -> float:
        '''Ground size of one texel of a tile with `resolution` texels per side'''
        return self.side_length() / resolution

    def fspace_bounds(self) -> tuple[float, float, float, float]:
        '''(u_min, v_min, u_max, v_max) in face space'''
        size = 2.0 / (1 << self.level)
        u0 = -1.0 + self.x * size
        v0 = -1.0 + self.y * size
        return u0, v0, u0 + size, v0 + size

    def center_ecef(self) -> np.ndarray:
        u0, v0, u1, v1 = self.fspace_bounds()
        return fspace_to_ecef(self.face, 0.5 * (u0 + u1), 0.5 * (v0 + v1))

    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        """ECEF axis aligned box enclosing the node and its terrain

        Returns
        -------
        lo : np.ndarray
            Minimum corner
        hi : np.ndarray
            Maximum corner
        """
        return _node_bounds(self.face, self.level, self.x, self.y)

    def nearest_surface_point(self, point) -> np.ndarray:
        """Point of the node's patch on the planet sphere closest to `point`

        The projection of `point` onto the face plane is clamped into the
        node's face-space bounds and mapped back onto the sphere.

        Parameters
        ----------
        point : array_like
            ECEF position in meters

        Returns
        -------
        nearest : np.ndarray
            ECEF point at `PLANET_RADIUS`
        """
        u0, v0, u1, v1 = self.fspace_bounds()
        s, a, b = _face_frame(self.face, point)
        if s <= 0.0:
            # Behind the face plane: slide off towards the edge facing the point
            s = 1e-12 * max(abs(a), abs(b), 1.0)
        u = min(max(a / s, u0), u1)
        v = min(max(b / s, v0), v1)
        return fspace_to_ecef(self.face, u, v)

    def priority(self, camera) -> Priority:
        """Priority of the node seen from an ECEF camera position

        Grows with the square of the node's side length over the distance
        from the camera to the node's surface patch. A non-finite camera
        gives `Priority.none()`.

        Parameters
        ----------
        camera : array_like
            Camera position in ECEF meters

        Returns
        -------
        priority : Priority
        """
        camera = np.asarray(camera, dtype=np.float64)
        if not np.all(np.isfinite(camera)):
            return Priority.none()
        distance = float(np.linalg.norm(camera - self.nearest_surface_point(camera)))
        distance = max(distance, 1e-6)
        return Priority.from_f64((self.side_length() / distance) ** 2)

    #------------------------------------------------
    # Relatives
    #------------------------------------------------
    def parent(self) -> Optional["VNode"]:
        if self.level == 0:
            return None
        return VNode(self.face, self.level - 1, self.x // 2, self.y // 2)

    def children(self) -> tuple["VNode", "VNode", "VNode", "VNode"]:
        """The four children of this node

        Child i has x offset `i & 1` and y offset `i >> 1`; visibility masks
        use the same bit order.
        """
        level = self.level + 1
        x = self.x * 2
        y = self.y * 2
        return (
            VNode(self.face, level, x, y),
            VNode(self.face, level, x + 1, y),
            VNode(self.face, level, x, y + 1),
            VNode(self.face, level, x + 1, y + 1),
        )

    def neighbors(self) -> tuple["VNode", "VNode", "VNode", "VNode"]:
        """Edge neighbors at the same level: -x, +x, -y, +y

        Neighbors across a cube edge are found by stepping just past the
        shared edge and projecting back onto the cube.
        """
        n = 1 << self.level
        u0, v0, u1, v1 = self.fspace_bounds()
        uc = 0.5 * (u0 + u1)
        vc = 0.5 * (v0 + v1)
        eps = 1e-9

        result = []
        for dx, dy in ((-1, 0), (1, 0), (0, -1), (0, 1)):
            x = self.x + dx
            y = self.y + dy
            if 0 <= x < n and 0 <= y < n:
                result.append(VNode(self.face, self.level, x, y))
                continue
            u = uc if dx == 0 else dx * (1.0 + eps)
            v = vc if dy == 0 else dy * (1.0 + eps)
            result.append(VNode.from_ecef(fspace_to_cspace(self.face, u, v), self.level))
        return tuple(result)

    def is_ancestor_of(self, other: "VNode") -> bool:
        if other.face != self.face or other.level <= self.level:
            return False
        shift = other.level - self.level
        return (other.x >> shift) == self.x and (other.y >> shift) == self.y

    #------------------------------------------------
    # Traversal
    #------------------------------------------------
    @staticmethod
    def breadth_first(visit: Callable[["VNode"], bool], max_level: Optional[int] = None) -> None:
        """Visit the quadtree level by level starting from the six roots

        Parameters
        ----------
        visit : callable
            Called with each node; returning True requests its children
        max_level : int, optional
            Deepest level ever visited, defaults to LEVEL_CELL_2CM

        Remarks
        -------
        Children are only enqueued while the node's level is below
        `max_level`, so traversal ends whatever `visit` returns.
        """
        if max_level is None:
            max_level = VNode.LEVEL_CELL_2CM
        max_level = min(max_level, VNode.LEVEL_CELL_2CM)

        pending = deque()
        for root in VNode.roots():
            if visit(root) and root.level < max_level:
                pending.append(root)

        while pending:
            node = pending.popleft()
            for child in node.children():
                if visit(child) and child.level < max_level:
                    pending.append(child)
