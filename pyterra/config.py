"""
Planet and terrain constants
============================
Immutable values shared by the coordinate layer and the quadtree. Nothing in
here is mutated at runtime; alternative planets are expressed by building a
new `Ellipsoid` and passing it to `CoordinateSystem.from_reference`.
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class Ellipsoid:
    '''Reference ellipsoid used for geodetic conversions

    Parameters
    ----------
    semi_major_axis : float
        Equatorial radius in meters
    flattening : float
        (a - b) / a
    '''
    semi_major_axis: float
    flattening: float

    @property
    def semi_minor_axis(self) -> float:
        return self.semi_major_axis * (1.0 - self.flattening)

    @property
    def eccentricity_squared(self) -> float:
        return self.flattening * (2.0 - self.flattening)


WGS84 = Ellipsoid(semi_major_axis=6378137.0, flattening=1.0 / 298.257223563)

# Radius of the sphere used by the polar and warped approximations
PLANET_RADIUS: float = 6371000.0

# Range of terrain elevation used when bounding quadtree nodes
MIN_TERRAIN_HEIGHT: float = -500.0
MAX_TERRAIN_HEIGHT: float = 9000.0

# Texels along one side of a streamed tile
DEFAULT_TILE_RESOLUTION: int = 512
