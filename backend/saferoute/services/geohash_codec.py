"""Geohash cell identifiers for the safety grid.

Every producer and consumer of cell ids goes through this module so that the
grid used for route lookups and the cells stored in the database share one
precision. A mismatch is not detected at runtime: lookups simply miss.
"""

import re
from typing import List, Tuple

import geohash

# 7 characters ~ 153m x 153m at the equator
PRECISION = 7

_CELL_ID_PATTERN = re.compile(r"^[0-9b-hjkmnp-z]{%d}$" % PRECISION)


class CoordinateRangeError(ValueError):
    """Raised when a coordinate lies outside the valid lat/lng range."""
    pass


def encode(lat: float, lng: float) -> str:
    """Encode a coordinate to its cell id."""
    if not -90 <= lat <= 90:
        raise CoordinateRangeError(f"Latitude out of range: {lat}")
    if not -180 <= lng <= 180:
        raise CoordinateRangeError(f"Longitude out of range: {lng}")
    return geohash.encode(lat, lng, PRECISION)


def decode(area_id: str) -> Tuple[float, float]:
    """Return the (lat, lng) center of a cell."""
    lat, lng = geohash.decode(area_id)
    return lat, lng


def decode_bbox(area_id: str) -> Tuple[float, float, float, float]:
    """Return the cell bounds as (min_lat, min_lng, max_lat, max_lng)."""
    bbox = geohash.bbox(area_id)
    return bbox["s"], bbox["w"], bbox["n"], bbox["e"]


def bbox_center(area_id: str) -> Tuple[float, float]:
    """Midpoint of the cell bounding box."""
    min_lat, min_lng, max_lat, max_lng = decode_bbox(area_id)
    return (min_lat + max_lat) / 2, (min_lng + max_lng) / 2


def is_valid_cell_id(area_id: str) -> bool:
    """Check that an id is a lowercase geohash of the grid precision."""
    return bool(area_id) and _CELL_ID_PATTERN.match(area_id) is not None


def cell_polygon(area_id: str) -> List[List[float]]:
    """Closed GeoJSON ring ([lng, lat] pairs) outlining the cell."""
    min_lat, min_lng, max_lat, max_lng = decode_bbox(area_id)
    return [
        [min_lng, min_lat],
        [max_lng, min_lat],
        [max_lng, max_lat],
        [min_lng, max_lat],
        [min_lng, min_lat],
    ]
