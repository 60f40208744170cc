import enum
import heapq
import logging
from collections import deque

from PySide6.QtCore import QObject, Signal, Slot

from pyterra.node import Priority, VNode

logger = logging.getLogger(__name__)


class LayerType(enum.IntEnum):
    '''Kinds of per-node tile data'''
    DISPLACEMENTS = 0
    ALBEDO = 1
    ROUGHNESS = 2
    NORMALS = 3
    HEIGHTMAPS = 4


class TileCache(QObject):
    '''Residency bookkeeping for streamed terrain tiles

    Remarks
    -------
    - Answers `contains(node, layer)` without blocking; the quadtree uses it
      as ground truth when deciding visibility
    - Keeps a queue of missing tiles sorted by node priority
    - Loaders call `mark_resident` when a tile's data has arrived
    - Evicts the lowest priority tiles once over capacity
    - Does no I/O itself

    Signals
    -------
    tileResident : VNode, LayerType
        A tile became resident
    tileEvicted : VNode, LayerType
        A tile was dropped from the cache
    '''

    tileResident = Signal(object, object)
    tileEvicted = Signal(object, object)

    def __init__(self, capacity: int = 4096, layers=tuple(LayerType), parent=None):
        '''
        Parameters
        ----------
        capacity : int
            Maximum number of resident tiles, across all layers
        layers : iterable of LayerType
            Layers requested for every node above the priority cutoff
        '''
        super().__init__(parent)
        if capacity < 1:
            raise ValueError(f"Invalid capacity: {capacity}")
        self.capacity = capacity
        self.layers = tuple(layers)
        self.resident = set()
        self.pending = deque()
        self.priorities = {}

    def __len__(self) -> int:
        return len(self.resident)

    def contains(self, node: VNode, layer: LayerType) -> bool:
        '''True if the tile for (node, layer) is resident'''
        return (node, layer) in self.resident

    @Slot(object, object)
    def mark_resident(self, node: VNode, layer: LayerType) -> None:
        """Record that a tile's data is now available

        Parameters
        ----------
        node : VNode
            Node the tile belongs to
        layer : LayerType
            Layer of the tile
        """
        key = (node, layer)
        if key in self.resident:
            return
        self.resident.add(key)
        self.tileResident.emit(node, layer)
        self._prune()

    def evict(self, node: VNode, layer: LayerType) -> None:
        '''Drop a tile, if resident'''
        key = (node, layer)
        if key not in self.resident:
            return
        self.resident.discard(key)
        logger.debug("Evicted %s %s", node, layer.name)
        self.tileEvicted.emit(node, layer)

    @Slot()
    def reset(self) -> None:
        """Forget all resident and pending tiles."""
        self.resident.clear()
        self.pending.clear()
        self.priorities.clear()

    def update_priorities(self, quadtree) -> None:
        """Rebuild the request queue from a quadtree's current priorities

        Parameters
        ----------
        quadtree : QuadTree
            Tree whose `update_priorities` has run for this frame

        Remarks
        -------
        Every node at or above the cutoff requests each missing layer. The
        queue is sorted most important first.
        """
        cutoff = Priority.cutoff()
        self.priorities = dict(quadtree.node_priorities)
        requests = [
            (node, layer)
            for node, priority in self.priorities.items()
            if priority >= cutoff
            for layer in self.layers
            if (node, layer) not in self.resident
        ]
        requests.sort(key=self._request_key)
        self.pending = deque(requests)
        self._prune()

    def next_request(self):
        '''Pop the most important missing (node, layer), or None

        Requests that became resident since the queue was built are skipped.
        '''
        while self.pending:
            node, layer = self.pending.popleft()
            if (node, layer) not in self.resident:
                return node, layer
        return None

    # ------------------------ private helpers ------------------------

    def _priority(self, node: VNode) -> Priority:
        return self.priorities.get(node, Priority.none())

    def _request_key(self, item):
        node, layer = item
        # Highest priority first, coarse before fine on ties
        return (-self._priority(node).value, node.level, int(layer))

    def _prune(self) -> None:
        '''Evict lowest priority tiles while over capacity'''
        excess = len(self.resident) - self.capacity
        if excess <= 0:
            return
        victims = heapq.nsmallest(
            excess,
            self.resident,
            key=lambda item: (self._priority(item[0]), -item[0].level,
                              item[0].face, item[0].y, item[0].x, int(item[1])),
        )
        for node, layer in victims:
            self.evict(node, layer)
