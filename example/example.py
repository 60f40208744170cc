import sys
import numpy as np
from PySide6.QtWidgets import QApplication, QMainWindow, QWidget, QHBoxLayout, QVBoxLayout, QLabel, QComboBox
from PySide6.QtCore import QTimer

from pyterra import viewer
from pyterra.logging_config import setup_logging

# Camera fly-over presets: (lat, lon, distance from planet center)
PRESETS = {
    "Orbit": (0.0, 0.0, 20000000.0),
    "Himalaya 200km": (28.0, 86.9, 6571000.0),
    "Alps 10km": (46.5, 8.0, 6381000.0),
}


class QuadTreeTestWidget(QWidget):

    def __init__(self):
        super().__init__()
        hbox = QHBoxLayout()
        vbox = QVBoxLayout()

        # Drop-down to select a camera preset
        self.preset_combo = QComboBox()
        self.preset_combo.addItems(list(PRESETS))
        self.preset_combo.currentIndexChanged.connect(self.on_preset_combo)
        vbox.addWidget(self.preset_combo)

        # Text area to print display debug output
        self.text = QLabel('Label')
        vbox.addWidget(self.text)
        hbox.addLayout(vbox)

        self.lod = viewer.QuadTreeWidget(self)
        hbox.addWidget(self.lod)
        self.lod.infoSig.connect(self.on_window)
        self.setLayout(hbox)

        # Slowly drift east to exercise the per-frame update
        self.move_timer = QTimer()
        self.move_timer.timeout.connect(self.on_timer)
        self.move_timer.start(100)

    def on_preset_combo(self):
        lat, lon, distance = PRESETS[self.preset_combo.currentText()]
        self.lod.camera_lat = lat
        self.lod.camera_lon = lon
        self.lod.camera_distance = distance
        self.lod.refresh_lod()

    def on_timer(self):
        altitude = self.lod.camera_distance - self.lod.coords.planet_radius
        self.lod.camera_lon += float(np.clip(altitude / 1.0e8, 1e-5, 0.05))
        if self.lod.camera_lon > 180:
            self.lod.camera_lon -= 360
        self.lod.refresh_lod()

    def on_window(self, info_dict: dict):
        s = f"Visible:   {info_dict['visible']}\n"
        s += f"Partial:   {info_dict['partially_visible']}\n"
        s += f"Scored:    {info_dict['scored']}\n\n"
        s += f"Resident:  {info_dict['resident']}\n"
        s += f"Pending:   {info_dict['pending']}\n\n"
        s += f"Lat:       {self.lod.camera_lat:.2f}\n"
        s += f"Lon:       {self.lod.camera_lon:.2f}\n"
        s += f"Alt:       {self.lod.camera_distance - self.lod.coords.planet_radius:.0f}\n"
        self.text.setText(s)

    def close(self):
        self.move_timer.stop()


class MainWindow(QMainWindow):

    def __init__(self):
        super().__init__()
        self.setWindowTitle("pyterra LOD quadtree")
        self.lod_widget = QuadTreeTestWidget()
        self.setCentralWidget(self.lod_widget)
        self.statusBar().showMessage('Left click/drag to move. Wheel to change altitude')

    def closeEvent(self, event):
        self.lod_widget.close()


if __name__ == '__main__':
    setup_logging()
    app = QApplication(sys.argv)
    window = MainWindow()
    window.resize(1200, 800)
    window.show()
    sys.exit(app.exec())
