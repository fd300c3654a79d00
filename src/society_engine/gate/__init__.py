"""Vehicle gate logs: entry/exit tracking and derived daily views."""

from society_engine.gate.stats import DailyGateStats, active_logs, daily_stats, group_by_house
from society_engine.gate.tracker import GateLogTracker, normalize_vehicle_no

__all__ = [
    "DailyGateStats",
    "GateLogTracker",
    "active_logs",
    "daily_stats",
    "group_by_house",
    "normalize_vehicle_no",
]
