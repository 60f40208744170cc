# STDLIB Imports
import logging
import sys

import numpy as np

# Pyside Imports
from PySide6.QtWidgets import QApplication
from PySide6.QtOpenGLWidgets import QOpenGLWidget
from PySide6.QtCore import Qt, QTimer, Signal, Slot

# OpenGL Imports
from OpenGL.GL import *
from OpenGL.GLU import *

# This Project Imports
from pyterra.coordinates import CoordinateSystem
from pyterra.logging_config import setup_logging
from pyterra.node import VNode, node_outline
from pyterra.quadtree import QuadTree
from pyterra.tile_cache import LayerType, TileCache

logger = logging.getLogger(__name__)

# Line colour per quadtree level, cycled for deep levels
LEVEL_COLORS = np.array([
    (1.0, 1.0, 1.0),
    (1.0, 0.3, 0.3),
    (1.0, 0.6, 0.2),
    (1.0, 1.0, 0.2),
    (0.4, 1.0, 0.4),
    (0.2, 0.9, 0.9),
    (0.3, 0.5, 1.0),
    (0.8, 0.4, 1.0),
])


def clip_planes(altitude: float, planet_radius: float) -> tuple[float, float]:
    '''Near and far plane distances for a camera `altitude` meters above the sphere

    The near plane stays in front of the closest ground, the far plane
    behind the farthest side of the planet.
    '''
    altitude = max(float(altitude), 0.0)
    near = float(np.clip(0.5 * altitude, 1.0, 1.0e6))
    far = altitude + 2.0 * planet_radius
    return near, far


class QuadTreeWidget(QOpenGLWidget):
    '''PySide6 OpenGL Widget showing the quadtree's current node selection

    Remarks
    -------
    - Left drag orbits the camera, the wheel changes altitude
    - Visible nodes are drawn as line loops coloured by level
    - Partially visible nodes draw only the quadrants they still cover
    - A timer stands in for an asynchronous tile loader
    '''

    infoSig = Signal(dict)

    def __init__(self, parent=None, max_level: int = 12, heights_resolution: int = 64,
                 loads_per_tick: int = 8):
        super().__init__(parent)
        self.setMinimumSize(1000, 600)
        self.camera_distance = 20000000  # meters from center
        self.camera_lon = 0.0  # degrees
        self.camera_lat = 0.0  # degrees
        self.last_pos = None
        self.aspect = 1.0
        self.loads_per_tick = loads_per_tick

        self.coords = CoordinateSystem.from_reference(0.0, 0.0, 0.0)
        self.quadtree = QuadTree(heights_resolution, max_level=max_level)
        self.tile_cache = TileCache(capacity=4096, layers=(LayerType.HEIGHTMAPS,), parent=self)
        self.tile_cache.tileResident.connect(self.on_tile_resident)

        # Simulated loader
        self.load_timer = QTimer(self)
        self.load_timer.timeout.connect(self.load_pending_tiles)
        self.load_timer.start(20)

        # Publish info to display on a timer
        self.info_timer = QTimer(self)
        self.info_timer.timeout.connect(self.publish_display_info)
        self.info_timer.start(1000)

        self.visibility_dirty = True
        self.refresh_lod()

    def camera_ecef(self) -> np.ndarray:
        polar = (np.radians(self.camera_lat), np.radians(self.camera_lon),
                 self.camera_distance - self.coords.planet_radius)
        return self.coords.polar_to_ecef(polar)

    def refresh_lod(self) -> None:
        '''Recompute priorities for the current camera and requeue tiles'''
        self.quadtree.update_priorities(self.camera_ecef())
        self.tile_cache.update_priorities(self.quadtree)
        self.visibility_dirty = True
        self.update()

    def initializeGL(self):
        glEnable(GL_DEPTH_TEST)
        glEnable(GL_LINE_SMOOTH)
        glClearColor(0.0, 0.0, 0.1, 1.0)

    def resizeGL(self, w, h):
        glViewport(0, 0, w, h)
        self.aspect = w / h if h > 0 else 1.0

    def apply_projection(self) -> None:
        near, far = clip_planes(self.camera_distance - self.coords.planet_radius,
                                self.coords.planet_radius)
        glMatrixMode(GL_PROJECTION)
        glLoadIdentity()
        gluPerspective(45, self.aspect, near, far)
        glMatrixMode(GL_MODELVIEW)

    def paintGL(self):
        if self.visibility_dirty:
            self.quadtree.update_visibility(self.tile_cache)
            self.visibility_dirty = False

        glClear(GL_COLOR_BUFFER_BIT | GL_DEPTH_BUFFER_BIT)
        self.apply_projection()
        glLoadIdentity()

        cam_x, cam_y, cam_z = self.camera_ecef()
        gluLookAt(cam_x, cam_y, cam_z,
                  0, 0, 0,
                  0, 0, 1)

        for node in self.quadtree.visible_nodes:
            self.draw_outline(node)

        for node, mask in self.quadtree.partially_visible_nodes:
            for i, child in enumerate(node.children()):
                if mask & (1 << i):
                    self.draw_outline(child, node.level)

    def draw_outline(self, node: VNode, level: int = None) -> None:
        '''Draw one node border, coloured by `level` (defaults to the node's)'''
        if level is None:
            level = node.level
        glColor3f(*LEVEL_COLORS[level % len(LEVEL_COLORS)])
        glBegin(GL_LINE_LOOP)
        for px, py, pz in node_outline(node):
            glVertex3f(px, py, pz)
        glEnd()

    #-------------------------------------------------------
    # Tile loading
    #-------------------------------------------------------
    @Slot()
    def load_pending_tiles(self) -> None:
        '''Resolve a few pending requests, most important first'''
        for _ in range(self.loads_per_tick):
            request = self.tile_cache.next_request()
            if request is None:
                break
            self.tile_cache.mark_resident(*request)

    @Slot(object, object)
    def on_tile_resident(self, node, layer):
        self.visibility_dirty = True
        self.update()

    def publish_display_info(self) -> None:
        '''Emit debug info'''
        self.infoSig.emit({'visible': len(self.quadtree.visible_nodes),
                           'partially_visible': len(self.quadtree.partially_visible_nodes),
                           'scored': len(self.quadtree.node_priorities),
                           'resident': len(self.tile_cache),
                           'pending': len(self.tile_cache.pending)})

    #-------------------------------------------------------
    # EVENT HANDLERS
    #-------------------------------------------------------
    def mousePressEvent(self, event):
        self.last_pos = event.pos()

    def mouseMoveEvent(self, event):
        if self.last_pos is None:
            self.last_pos = event.pos()
            return

        dx = event.pos().x() - self.last_pos.x()
        dy = event.pos().y() - self.last_pos.y()

        # Slow down as the camera gets closer to the ground
        altitude = self.camera_distance - self.coords.planet_radius
        scale = np.clip(altitude / 1.0e7, 1e-5, 1.0)

        if event.buttons() & Qt.LeftButton:
            self.camera_lon -= dx * 0.5 * scale
            self.camera_lat = float(np.clip(self.camera_lat + dy * 0.5 * scale, -89, 89))
            self.refresh_lod()

        self.last_pos = event.pos()

    def mouseReleaseEvent(self, event):
        self.last_pos = None

    def wheelEvent(self, event):
        delta = event.angleDelta().y()
        if delta == 0:
            return

        zoom_factor = 0.9 if delta > 0 else 1.1
        radius = self.coords.planet_radius
        altitude = (self.camera_distance - radius) * zoom_factor
        self.camera_distance = radius + float(np.clip(altitude, 100.0, radius * 9))
        self.refresh_lod()

    def keyPressEvent(self, event):
        if event.key() == Qt.Key_R:
            self.camera_lon = 0
            self.camera_lat = 0
            self.camera_distance = 20000000
            self.tile_cache.reset()
            self.refresh_lod()


def main():
    setup_logging(logging.INFO)
    app = QApplication(sys.argv)
    widget = QuadTreeWidget()
    widget.setWindowTitle("pyterra quadtree")
    widget.infoSig.connect(lambda info: logger.info("%s", info))
    widget.show()
    logger.info("Viewer started")
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
