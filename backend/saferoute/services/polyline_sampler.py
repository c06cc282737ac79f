"""Polyline decoding with recovery, point sampling and cell discretization."""

import codecs
import logging
import math
from typing import List, Optional, Sequence, Tuple

import polyline

from saferoute.services import geohash_codec

logger = logging.getLogger(__name__)

Point = Tuple[float, float]

# Google polylines use precision 5 (1e-5 degrees)
POLYLINE_PRECISION = 5

# Encoded polylines only use characters 63 ('?') through 126 ('~')
_MIN_POLYLINE_CHAR = 63
_MAX_POLYLINE_CHAR = 126


class PolylineDecodeError(ValueError):
    """Raised when a string is not a decodable polyline."""
    pass


def _decode_strict(encoded: str) -> List[Point]:
    """Decode one candidate string or raise PolylineDecodeError."""
    if not encoded:
        raise PolylineDecodeError("Empty polyline")
    if any(not _MIN_POLYLINE_CHAR <= ord(ch) <= _MAX_POLYLINE_CHAR for ch in encoded):
        raise PolylineDecodeError("Polyline contains characters outside the encoding alphabet")

    try:
        points = polyline.decode(encoded, POLYLINE_PRECISION)
    except (IndexError, ValueError, TypeError) as e:
        raise PolylineDecodeError(f"Truncated or malformed polyline: {e}") from e

    for lat, lng in points:
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            raise PolylineDecodeError(f"Decoded coordinate out of range: ({lat}, {lng})")

    return [(lat, lng) for lat, lng in points]


def _recovery_candidates(encoded: str):
    """Yield progressively more aggressive repairs of a malformed polyline."""
    stripped = encoded.strip().strip("{}")
    yield stripped

    unescaped = stripped.replace("\\\\", "\\")
    if unescaped != stripped:
        yield unescaped

    try:
        yield codecs.decode(unescaped, "unicode_escape")
    except UnicodeError:
        return


def decode_polyline(encoded: Optional[str]) -> List[Point]:
    """Decode an encoded polyline into (lat, lng) points.

    Payloads that arrive wrapped in braces or with JSON-escaped backslashes
    are repaired before giving up. An undecodable polyline yields an empty
    list and the route is treated as unscored.
    """
    if not encoded:
        return []

    try:
        return _decode_strict(encoded)
    except PolylineDecodeError as e:
        logger.debug(f"Direct polyline decode failed: {e}")

    for candidate in _recovery_candidates(encoded):
        try:
            points = _decode_strict(candidate)
        except PolylineDecodeError:
            continue
        if points:
            logger.info(f"Recovered malformed polyline ({len(points)} points)")
            return points

    logger.warning(f"Could not decode polyline (length={len(encoded)}), route will be unscored")
    return []


def sample_points(points: Sequence[Point], max_samples: Optional[int] = None) -> List[Point]:
    """Keep every ceil(n / max_samples)-th point. No cap keeps all points."""
    if not max_samples or len(points) <= max_samples:
        return list(points)
    stride = math.ceil(len(points) / max_samples)
    return list(points[::stride])


def cells_for_points(points: Sequence[Point]) -> List[str]:
    """Distinct cell ids covered by the points, in path order."""
    return list(dict.fromkeys(geohash_codec.encode(lat, lng) for lat, lng in points))
