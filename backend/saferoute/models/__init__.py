# Database models
from saferoute.models.base import Base
from saferoute.models.safety_cell import SafetyCell
from saferoute.models.police_station import PoliceStation

__all__ = ["Base", "SafetyCell", "PoliceStation"]
