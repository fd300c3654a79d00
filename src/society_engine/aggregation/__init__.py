"""Live aggregation of partitioned collections."""

from society_engine.aggregation.dashboard import DashboardStats, build_dashboard, dashboard_stats
from society_engine.aggregation.directory import (
    DirectoryStats,
    build_user_directory,
    directory_stats,
    sorted_users,
)
from society_engine.aggregation.stats import count_by, count_by_day, count_by_partition, group_by
from society_engine.aggregation.view import (
    AggregationView,
    MergedView,
    merge_partition,
    repository_source,
)

__all__ = [
    "AggregationView",
    "DashboardStats",
    "DirectoryStats",
    "MergedView",
    "build_dashboard",
    "build_user_directory",
    "count_by",
    "count_by_day",
    "count_by_partition",
    "dashboard_stats",
    "directory_stats",
    "group_by",
    "merge_partition",
    "repository_source",
    "sorted_users",
]
