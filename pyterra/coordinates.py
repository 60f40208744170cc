import logging

import numpy as np

from pyterra.config import PLANET_RADIUS, WGS84, Ellipsoid

logger = logging.getLogger(__name__)


def lla_to_ecef(lla, ellipsoid: Ellipsoid = WGS84) -> np.ndarray:
    """Convert geodetic latitude, longitude, altitude to ECEF coordinates

    Parameters
    ----------
    lla : array_like
        [latitude, longitude, altitude] in radians, radians, meters
    ellipsoid : Ellipsoid
        Reference ellipsoid

    Returns
    -------
    ecef : np.ndarray
        ECEF [x, y, z] in meters
    """
    lat, lon, alt = np.asarray(lla, dtype=np.float64)
    a = ellipsoid.semi_major_axis
    e2 = ellipsoid.eccentricity_squared

    sin_lat = np.sin(lat)
    cos_lat = np.cos(lat)

    # Prime vertical radius of curvature
    n = a / np.sqrt(1.0 - e2 * sin_lat * sin_lat)

    x = (n + alt) * cos_lat * np.cos(lon)
    y = (n + alt) * cos_lat * np.sin(lon)
    z = (n * (1.0 - e2) + alt) * sin_lat
    return np.array([x, y, z])


def ecef_to_lla(ecef, ellipsoid: Ellipsoid = WGS84) -> np.ndarray:
    """Convert ECEF coordinates to geodetic latitude, longitude, altitude

    Parameters
    ----------
    ecef : array_like
        ECEF [x, y, z] in meters
    ellipsoid : Ellipsoid
        Reference ellipsoid

    Returns
    -------
    lla : np.ndarray
        [latitude, longitude, altitude] in radians, radians, meters

    Remarks
    -------
    Fixed-point iteration on latitude. Altitude is taken from the projection
    onto the surface normal, which stays finite at the poles and at the
    planet centre.
    """
    x, y, z = np.asarray(ecef, dtype=np.float64)
    a = ellipsoid.semi_major_axis
    e2 = ellipsoid.eccentricity_squared

    lon = np.arctan2(y, x)
    p = np.hypot(x, y)

    lat = np.arctan2(z, p * (1.0 - e2))
    for _ in range(16):
        sin_lat = np.sin(lat)
        n = a / np.sqrt(1.0 - e2 * sin_lat * sin_lat)
        next_lat = np.arctan2(z + e2 * n * sin_lat, p)
        converged = abs(next_lat - lat) < 1e-15
        lat = next_lat
        if converged:
            break

    sin_lat = np.sin(lat)
    n = a / np.sqrt(1.0 - e2 * sin_lat * sin_lat)
    alt = p * np.cos(lat) + z * sin_lat - a * a / n
    return np.array([lat, lon, alt])


def get_ecef_to_ned_matrix(lat: float, lon: float) -> np.ndarray:
    """Get rotation matrix from ECEF to local NED frame

    Parameters
    ----------
    lat : float
        Latitude in radians
    lon : float
        Longitude in radians

    Returns
    -------
    R : np.ndarray
        3x3 Rotation Matrix, rows are the North, East, Down axes in ECEF
    """
    sin_lat = np.sin(lat)
    cos_lat = np.cos(lat)
    sin_lon = np.sin(lon)
    cos_lon = np.cos(lon)

    north = np.array([-sin_lat * cos_lon, -sin_lat * sin_lon, cos_lat])
    east = np.array([-sin_lon, cos_lon, 0.0])
    down = np.array([-cos_lat * cos_lon, -cos_lat * sin_lon, -sin_lat])

    R = np.vstack([north, east, down])
    return R


class CoordinateSystem:
    """Conversions between the coordinate frames used by the renderer

    Frames
    ------
    world
        Cartesian, meters, centered on the reference point. x points east,
        y points up and z points south.
    warped
        world with y shifted to approximate the curvature of the planet.
    ecef
        Earth-centered, earth-fixed cartesian, meters. x towards 0N 0E,
        y towards 0N 90E, z towards the north pole.
    ned
        North-east-down tangent plane at the reference point.
    lla
        Geodetic latitude and longitude in radians, altitude in meters.
    polar
        Same as lla but for a perfect sphere of `planet_radius`, which is
        much cheaper to compute.

    Remarks
    -------
    Instances are immutable and may be shared between threads. Inputs are
    not validated: NaN coordinates give NaN results.
    """

    def __init__(self, center_ecef, ecef_to_ned_matrix,
                 ellipsoid: Ellipsoid = WGS84, planet_radius: float = PLANET_RADIUS):
        self._center_ecef = np.array(center_ecef, dtype=np.float64)
        self._center_ecef.setflags(write=False)
        self._ecef_to_ned_matrix = np.array(ecef_to_ned_matrix, dtype=np.float64)
        self._ecef_to_ned_matrix.setflags(write=False)
        self._ellipsoid = ellipsoid
        self._planet_radius = float(planet_radius)

    @classmethod
    def from_reference(cls, lat: float, lon: float, alt: float,
                       ellipsoid: Ellipsoid = WGS84,
                       planet_radius: float = PLANET_RADIUS) -> "CoordinateSystem":
        """Build a coordinate system centered on a geodetic reference point

        Parameters
        ----------
        lat : float
            Reference latitude in radians
        lon : float
            Reference longitude in radians
        alt : float
            Reference altitude in meters

        Returns
        -------
        system : CoordinateSystem
        """
        center_ecef = lla_to_ecef((lat, lon, alt), ellipsoid)
        matrix = get_ecef_to_ned_matrix(lat, lon)
        logger.debug("Coordinate system at lat=%.6f lon=%.6f alt=%.1f", lat, lon, alt)
        return cls(center_ecef, matrix, ellipsoid, planet_radius)

    def __repr__(self):
        return f"CoordinateSystem(center_ecef={self._center_ecef.tolist()})"

    @property
    def center_ecef(self) -> np.ndarray:
        return self._center_ecef

    @property
    def ecef_to_ned_matrix(self) -> np.ndarray:
        return self._ecef_to_ned_matrix

    @property
    def ellipsoid(self) -> Ellipsoid:
        return self._ellipsoid

    @property
    def planet_radius(self) -> float:
        return self._planet_radius

    #------------------------------------------------
    # Geodetic
    #------------------------------------------------
    def ecef_to_lla(self, ecef) -> np.ndarray:
        return ecef_to_lla(ecef, self._ellipsoid)

    def lla_to_ecef(self, lla) -> np.ndarray:
        return lla_to_ecef(lla, self._ellipsoid)

    def ecef_to_polar(self, ecef) -> np.ndarray:
        x, y, z = np.asarray(ecef, dtype=np.float64)
        r = np.sqrt(x * x + y * y + z * z)
        with np.errstate(invalid='ignore', divide='ignore'):
            return np.array([np.arcsin(z / r), np.arctan2(y, x), r - self._planet_radius])

    def polar_to_ecef(self, polar) -> np.ndarray:
        lat, lon, height = np.asarray(polar, dtype=np.float64)
        r = self._planet_radius + height
        return np.array([
            r * np.cos(lat) * np.cos(lon),
            r * np.cos(lat) * np.sin(lon),
            r * np.sin(lat),
        ])

    #------------------------------------------------
    # Local frames
    #------------------------------------------------
    def ned_to_ecef(self, ned) -> np.ndarray:
        return self._ecef_to_ned_matrix.T @ np.asarray(ned, dtype=np.float64) + self._center_ecef

    def ecef_to_ned(self, ecef) -> np.ndarray:
        return self._ecef_to_ned_matrix @ (np.asarray(ecef, dtype=np.float64) - self._center_ecef)

    def world_to_ned(self, world) -> np.ndarray:
        w = np.asarray(world, dtype=np.float64)
        return np.array([-w[2], w[0], -w[1]])

    def ned_to_world(self, ned) -> np.ndarray:
        n = np.asarray(ned, dtype=np.float64)
        return np.array([n[1], -n[2], -n[0]])

    def _curvature_shift(self, x: float, z: float) -> float:
        # NOTE: x*x - z*z rather than x*x + z*z, kept as is.
        # NaN once the term under the root goes negative.
        r = self._planet_radius
        with np.errstate(invalid='ignore'):
            return r * (np.sqrt(1.0 - (x * x - z * z) / r) - 1.0)

    def warped_to_world(self, warped) -> np.ndarray:
        x, y, z = np.asarray(warped, dtype=np.float64)
        return np.array([x, y - self._curvature_shift(x, z), z])

    def world_to_warped(self, world) -> np.ndarray:
        x, y, z = np.asarray(world, dtype=np.float64)
        return np.array([x, y + self._curvature_shift(x, z), z])

    #------------------------------------------------
    # Composites
    #------------------------------------------------
    def world_to_ecef(self, world) -> np.ndarray:
        return self.ned_to_ecef(self.world_to_ned(world))

    def world_to_lla(self, world) -> np.ndarray:
        return self.ecef_to_lla(self.world_to_ecef(world))

    def world_to_polar(self, world) -> np.ndarray:
        return self.ecef_to_polar(self.world_to_ecef(world))

    def ecef_to_world(self, ecef) -> np.ndarray:
        return self.ned_to_world(self.ecef_to_ned(ecef))

    def lla_to_world(self, lla) -> np.ndarray:
        return self.ecef_to_world(self.lla_to_ecef(lla))

    def polar_to_world(self, polar) -> np.ndarray:
        return self.ecef_to_world(self.polar_to_ecef(polar))

    def lla_to_ned(self, lla) -> np.ndarray:
        return self.ecef_to_ned(self.lla_to_ecef(lla))

    def height_on_surface(self, world_xz) -> float:
        """World y coordinate of sea level below a horizontal world position

        Parameters
        ----------
        world_xz : array_like
            [x, z] in world coordinates

        Returns
        -------
        y : float
            World y of the ellipsoid surface

        Remarks
        -------
        Runs exactly five fixed-point iterations; no convergence test.
        """
        x, z = np.asarray(world_xz, dtype=np.float64)
        world = np.zeros(3)
        for _ in range(5):
            world[0] = x
            world[2] = z
            lla = self.world_to_lla(world)
            lla[2] = 0.0
            world = self.lla_to_world(lla)
        return float(world[1])
