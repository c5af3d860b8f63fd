"""
Aggregation service: on-demand rollups over processed events.

Only `processed` normalized rows are counted, so duplicates and failed
events never contribute. Results are computed per call; nothing is
cached or pre-aggregated.
"""

from typing import Any, Dict, List

from models import EventFilters
from repo_events import EventRepo

BY_DAY_LIMIT = 30

# normalized timestamps are fixed-format UTC text, so the day is a prefix
_DAY_EXPR = "SUBSTR(ne.timestamp, 1, 10)"


class AggregationService:
    def __init__(self, repo: EventRepo):
        self.repo = repo

    def get_aggregations(self, filters: EventFilters | None = None) -> Dict[str, Any]:
        filters = filters or EventFilters()
        return {
            "summary": self.get_summary(filters),
            "by_client": self.get_by_client(filters),
            "by_metric": self.get_by_metric(filters),
            "by_day": self.get_by_day(filters),
            "time_range": self.repo.time_range(filters),
        }

    def get_summary(self, filters: EventFilters) -> Dict[str, Any]:
        summary = self.repo.summary(filters)
        summary["total_amount"] = summary.get("total_amount") or 0
        return summary

    def get_by_client(self, filters: EventFilters) -> List[Dict[str, Any]]:
        return self.repo.rollup([("ne.client_id", "client_id")], filters, with_range=True)

    def get_by_metric(self, filters: EventFilters) -> List[Dict[str, Any]]:
        return self.repo.rollup([("ne.metric", "metric")], filters)

    def get_by_day(self, filters: EventFilters) -> List[Dict[str, Any]]:
        return self.repo.rollup(
            [(_DAY_EXPR, "day")], filters, order_by="day DESC", limit=BY_DAY_LIMIT
        )

    def get_client_metric_breakdown(self, filters: EventFilters | None = None) -> List[Dict[str, Any]]:
        return self.repo.rollup(
            [("ne.client_id", "client_id"), ("ne.metric", "metric")], filters or EventFilters()
        )
