"""
Geofence validation: great-circle distance from the office.

The boundary is inclusive: a point exactly ``radius`` meters away is inside.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from geoattend.core.exceptions import InvalidCoordinates

EARTH_RADIUS_METERS = 6_371_000.0


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class GeoVerdict:
    within_radius: bool
    distance_meters: float


def _check_point(lat: float, lng: float) -> None:
    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise InvalidCoordinates("Coordinates must be finite numbers")
    if not -90.0 <= lat <= 90.0:
        raise InvalidCoordinates(f"Latitude {lat} is outside [-90, 90]")
    if not -180.0 <= lng <= 180.0:
        raise InvalidCoordinates(f"Longitude {lng} is outside [-180, 180]")


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Distance in meters between two (lat, lng) points given in degrees."""
    _check_point(lat1, lng1)
    _check_point(lat2, lng2)
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def validate(
    office_lat: float,
    office_lng: float,
    radius_meters: float,
    point_lat: float,
    point_lng: float,
) -> GeoVerdict:
    if not math.isfinite(radius_meters) or radius_meters < 0:
        raise InvalidCoordinates("Radius must be a finite, non-negative number of meters")
    distance = haversine_distance(office_lat, office_lng, point_lat, point_lng)
    return GeoVerdict(within_radius=distance <= radius_meters, distance_meters=distance)


class GeoValidator:
    """Binds the configured office location and radius."""

    def __init__(self, office: Location, radius_meters: float) -> None:
        _check_point(office.latitude, office.longitude)
        self.office = office
        self.radius_meters = radius_meters

    def check(self, point: Location) -> GeoVerdict:
        return validate(
            self.office.latitude,
            self.office.longitude,
            self.radius_meters,
            point.latitude,
            point.longitude,
        )
