import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from pyterra.index_buffer import IndexBuffers, create_index_buffers
from pyterra.node import Priority, VNode
from pyterra.tile_cache import LayerType

logger = logging.getLogger(__name__)

FULL_MASK = 15

# Per-node record handed to the renderer
NODE_DTYPE = np.dtype([
    ('face', '<u4'),
    ('level', '<u4'),
    ('x', '<u4'),
    ('y', '<u4'),
    ('mask', '<u4'),
])


@dataclass(frozen=True)
class NodeState:
    '''Render state of one node selected this frame

    `mask` bit i set means quadrant i (same order as `VNode.children`) of the
    node must be drawn. Fully visible nodes have all four bits set.
    '''
    node: VNode
    mask: int = FULL_MASK


class QuadTree:
    """Per-frame level of detail selection over the terrain quadtree

    Remarks
    -------
    - `update_priorities` scores nodes against the camera (ECEF meters)
    - The caller then makes the needed tiles resident in its tile cache
    - `update_visibility` picks the nodes to draw, using tile residency
    - The renderer reads `visible_nodes`, `partially_visible_nodes` and
      `node_buffer()`

    A QuadTree is owned by a single caller; nothing here is thread safe.
    """

    def __init__(self, heights_resolution: int, max_level: int = VNode.LEVEL_CELL_2CM,
                 required_layers=(LayerType.HEIGHTMAPS,)):
        '''
        Parameters
        ----------
        heights_resolution : int
            Grid cells along one side of a node's mesh
        max_level : int
            Deepest level the tree will ever split to
        required_layers : iterable of LayerType
            Layers that must be resident for a node to be visible
        '''
        if not (0 <= max_level <= VNode.LEVEL_CELL_2CM):
            raise ValueError(f"max_level out of range: {max_level}")
        self.heights_resolution = heights_resolution
        self.max_level = max_level
        self.required_layers = tuple(required_layers)

        self.node_priorities = {}
        self._visible_nodes = []
        self._partially_visible_nodes = []
        self._node_states = []
        self._last_camera_position = None

    def __repr__(self):
        return (f"QuadTree(visible={len(self._visible_nodes)}, "
                f"partial={len(self._partially_visible_nodes)})")

    @property
    def visible_nodes(self) -> list[VNode]:
        return self._visible_nodes

    @property
    def partially_visible_nodes(self) -> list[tuple[VNode, int]]:
        return self._partially_visible_nodes

    @property
    def node_states(self) -> list[NodeState]:
        return self._node_states

    @property
    def last_camera_position(self) -> Optional[tuple[float, float, float]]:
        return self._last_camera_position

    def create_index_buffers(self) -> IndexBuffers:
        return create_index_buffers(self.heights_resolution)

    #------------------------------------------------
    # Per-frame updates
    #------------------------------------------------
    def update_priorities(self, camera) -> None:
        """Score every node reachable through above-cutoff ancestors

        Parameters
        ----------
        camera : array_like
            Camera position in ECEF meters

        Remarks
        -------
        Nothing is recomputed if `camera` is exactly the last position seen.
        """
        camera = tuple(float(c) for c in camera)
        if self._last_camera_position == camera:
            return
        self._last_camera_position = camera

        cutoff = Priority.cutoff()
        max_level = self.max_level
        priorities = self.node_priorities
        priorities.clear()

        def visit(node: VNode) -> bool:
            priority = node.priority(camera)
            priorities[node] = priority
            return priority >= cutoff and node.level < max_level

        VNode.breadth_first(visit, max_level)
        logger.debug("Scored %d nodes", len(priorities))

    def update_visibility(self, tile_cache=None) -> None:
        """Select the nodes to draw this frame

        Parameters
        ----------
        tile_cache : object, optional
            Anything with `contains(node, layer) -> bool`. When given, a node
            is only visible if all `required_layers` are resident.

        Remarks
        -------
        Pass one marks nodes visible: the roots always, others when above
        the cutoff and resident. Pass two keeps a visible node whole when
        none of its children are visible, records it with a mask of the
        missing children when only some are, and skips it when all are.
        """
        self._visible_nodes.clear()
        self._partially_visible_nodes.clear()

        cutoff = Priority.cutoff()
        max_level = self.max_level
        visibilities = {}

        def resident(node: VNode) -> bool:
            if tile_cache is None:
                return True
            return all(tile_cache.contains(node, layer) for layer in self.required_layers)

        def mark(node: VNode) -> bool:
            visible = node.level == 0 or (self.node_priority(node) >= cutoff and resident(node))
            visibilities[node] = visible
            return visible and node.level < max_level

        VNode.breadth_first(mark, max_level)

        def collapse(node: VNode) -> bool:
            if node.level < max_level and visibilities[node]:
                mask = 0
                for i, child in enumerate(node.children()):
                    if not visibilities[child]:
                        mask |= 1 << i

                if mask == FULL_MASK:
                    self._visible_nodes.append(node)
                elif mask > 0:
                    self._partially_visible_nodes.append((node, mask))
                return mask < FULL_MASK
            elif visibilities[node]:
                self._visible_nodes.append(node)
            return False

        VNode.breadth_first(collapse, max_level)

        self._node_states = [NodeState(node) for node in self._visible_nodes]
        self._node_states.extend(
            NodeState(node, mask) for node, mask in self._partially_visible_nodes
        )
        logger.debug("%d visible, %d partially visible",
                     len(self._visible_nodes), len(self._partially_visible_nodes))

    #------------------------------------------------
    # Queries
    #------------------------------------------------
    def node_priority(self, node: VNode) -> Priority:
        '''Priority from the last update, `Priority.none()` if never scored'''
        return self.node_priorities.get(node, Priority.none())

    def node_buffer_length(self) -> int:
        return len(self._node_states)

    def node_buffer(self) -> np.ndarray:
        """Pack the current node states for upload

        Returns
        -------
        buffer : np.ndarray
            Structured array of NODE_DTYPE, one record per rendered node
        """
        buffer = np.zeros(len(self._node_states), dtype=NODE_DTYPE)
        for i, state in enumerate(self._node_states):
            node = state.node
            buffer[i] = (node.face, node.level, node.x, node.y, state.mask)
        return buffer
