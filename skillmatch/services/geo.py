"""Great-circle distances between profile and requirement coordinates."""
from typing import Optional, Sequence, Tuple

import numpy as np

from skillmatch.utils.exceptions import ValidationError

EARTH_RADIUS_KM = 6371.0


def validate_coordinates(lat, lon, field: str = "coordinates") -> None:
    for name, value, bound in (("latitude", lat, 90.0), ("longitude", lon, 180.0)):
        if isinstance(value, bool) or not isinstance(value, (int, float, np.floating, np.integer)):
            raise ValidationError(f"{name} must be a number", field=f"{field}.{name}", value=value)
        if not -bound <= value <= bound:
            raise ValidationError(
                f"{name} must be within [-{bound:g}, {bound:g}]", field=f"{field}.{name}", value=value
            )


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in kilometres between two (lat, lon) points."""
    validate_coordinates(lat1, lon1, "origin")
    validate_coordinates(lat2, lon2, "destination")

    phi1, phi2 = np.radians(lat1), np.radians(lat2)
    d_phi = np.radians(lat2 - lat1)
    d_lambda = np.radians(lon2 - lon1)
    a = np.sin(d_phi / 2) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(d_lambda / 2) ** 2
    # rounding can push a a hair past 1 for antipodal points
    a = min(max(float(a), 0.0), 1.0)
    return float(EARTH_RADIUS_KM * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a)))


def distances_km(origin: Tuple[float, float], points: Sequence[Tuple[float, float]]) -> np.ndarray:
    """Vectorised haversine from one origin to many points."""
    lat0, lon0 = origin
    validate_coordinates(lat0, lon0, "origin")
    if len(points) == 0:
        return np.zeros(0, dtype=np.float64)
    for i, (lat, lon) in enumerate(points):
        validate_coordinates(lat, lon, f"points[{i}]")

    coords = np.radians(np.asarray(points, dtype=np.float64))
    phi0, lambda0 = np.radians(lat0), np.radians(lon0)
    d_phi = coords[:, 0] - phi0
    d_lambda = coords[:, 1] - lambda0
    a = np.sin(d_phi / 2) ** 2 + np.cos(phi0) * np.cos(coords[:, 0]) * np.sin(d_lambda / 2) ** 2
    a = np.clip(a, 0.0, 1.0)
    return EARTH_RADIUS_KM * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def distance_between(source, target) -> Optional[float]:
    """Distance between two records exposing latitude/longitude, or None if either lacks coordinates."""
    if source.latitude is None or source.longitude is None:
        return None
    if target.latitude is None or target.longitude is None:
        return None
    return haversine_km(source.latitude, source.longitude, target.latitude, target.longitude)
