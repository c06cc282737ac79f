"""Safety score aggregation and police proximity scoring."""

import math
from typing import Any, Dict, Mapping, Optional, Union

# Weights sum to 1.0
FACTOR_WEIGHTS: Dict[str, float] = {
    "lighting": 0.25,
    "crowd": 0.20,
    "police": 0.25,
    "incidents": 0.20,
    "accidents": 0.10,
}

# Higher values mean more risk, so their contribution is inverted
RISK_FACTORS = frozenset({"incidents", "accidents"})

DEFAULT_FACTOR_VALUE = 5.0
MIN_FACTOR_VALUE = 0.0
MAX_FACTOR_VALUE = 10.0

EARTH_RADIUS_METERS = 6371000

# (max distance in meters, police sub-factor), checked in order
POLICE_DISTANCE_STEPS = (
    (250, 10),
    (500, 8),
    (1000, 6),
    (2000, 4),
    (4000, 2),
)


def _clamp(value: float) -> float:
    return max(MIN_FACTOR_VALUE, min(MAX_FACTOR_VALUE, value))


def _as_mapping(factors: Any) -> Mapping[str, Any]:
    if factors is None:
        return {}
    if hasattr(factors, "model_dump"):
        return factors.model_dump()
    return factors


def compute_safety_score(factors: Optional[Union[Mapping[str, Any], Any]] = None) -> float:
    """Aggregate a (partial) factor record into a 0-10 safety score.

    Missing factors count as neutral (5). Every value is clamped to [0, 10]
    and the risk factors contribute ``10 - value``. The result is the
    weighted mean rounded to 2 decimals.

    Args:
        factors: Mapping or pydantic model with any of lighting, crowd,
            police, incidents, accidents

    Returns:
        Score in [0, 10]
    """
    values = _as_mapping(factors)
    total = 0.0
    weight_sum = 0.0

    for name, weight in FACTOR_WEIGHTS.items():
        raw = values.get(name)
        value = DEFAULT_FACTOR_VALUE if raw is None else _clamp(float(raw))
        if name in RISK_FACTORS:
            value = MAX_FACTOR_VALUE - value
        total += value * weight
        weight_sum += weight

    return round(_clamp(total / weight_sum), 2)


def default_factors() -> Dict[str, float]:
    """Neutral factor record for a newly referenced cell."""
    return {name: DEFAULT_FACTOR_VALUE for name in FACTOR_WEIGHTS}


def police_score_for_distance(distance_meters: float) -> int:
    """Map distance to the nearest police station onto the police sub-factor."""
    for max_distance, score in POLICE_DISTANCE_STEPS:
        if distance_meters <= max_distance:
            return score
    return 0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate great-circle distance in meters between two points."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c
