"""Tests for rollups over processed events."""

import pytest

from models import EventFilters
from service_aggregations import AggregationService
from service_events import EventService


@pytest.fixture
def populated(svc: EventService) -> EventService:
    for client, metric, amount, ts in [
        ("a", "revenue", 100, "2024-01-01T10:00:00Z"),
        ("a", "revenue", 50, "2024-01-02T10:00:00Z"),
        ("b", "cost", 30, "2024-01-02T12:00:00Z"),
        ("a", "cost", 20, "2024-01-03T09:00:00Z"),
    ]:
        svc.ingest_event({"source": client, "payload": {"metric": metric, "amount": amount, "timestamp": ts}})
    # neither of these may be counted
    svc.ingest_event({"source": "a", "payload": {"metric": "revenue", "amount": 100, "timestamp": "2024-01-01T10:00:00Z"}})
    svc.ingest_event({"source": "c", "payload": {"metric": "revenue", "amount": "n/a"}})
    return svc


def test_summary(populated: EventService):
    summary = AggregationService(populated.repo).get_aggregations()["summary"]

    assert summary["total_events"] == 4
    assert summary["total_amount"] == 200
    assert summary["min_amount"] == 20
    assert summary["max_amount"] == 100
    assert summary["unique_clients"] == 2
    assert summary["unique_metrics"] == 2


def test_summary_of_nothing(svc: EventService):
    summary = AggregationService(svc.repo).get_aggregations()["summary"]
    assert summary["total_events"] == 0
    assert summary["total_amount"] == 0


def test_by_client_and_metric(populated: EventService):
    result = AggregationService(populated.repo).get_aggregations()

    assert [(r["client_id"], r["total_amount"]) for r in result["by_client"]] == [("a", 170), ("b", 30)]
    assert result["by_client"][0]["first_event"] == "2024-01-01T10:00:00.000Z"
    assert result["by_client"][0]["last_event"] == "2024-01-03T09:00:00.000Z"
    assert [(r["metric"], r["event_count"]) for r in result["by_metric"]] == [("revenue", 2), ("cost", 2)]


def test_by_day_newest_first(populated: EventService):
    by_day = AggregationService(populated.repo).get_aggregations()["by_day"]
    assert [(r["day"], r["event_count"]) for r in by_day] == [
        ("2024-01-03", 1),
        ("2024-01-02", 2),
        ("2024-01-01", 1),
    ]


def test_filters(populated: EventService):
    service = AggregationService(populated.repo)

    only_b = service.get_aggregations(EventFilters(client_id="b"))
    assert only_b["summary"]["total_events"] == 1
    assert only_b["time_range"] == {
        "earliest_event": "2024-01-02T12:00:00.000Z",
        "latest_event": "2024-01-02T12:00:00.000Z",
    }

    january_2nd = service.get_aggregations(
        EventFilters(start_date="2024-01-02T00:00:00.000Z", end_date="2024-01-02T23:59:59.999Z")
    )
    assert january_2nd["summary"]["total_events"] == 2
    # the time range ignores the date window
    assert january_2nd["time_range"]["earliest_event"] == "2024-01-01T10:00:00.000Z"


def test_client_metric_breakdown(populated: EventService):
    rows = AggregationService(populated.repo).get_client_metric_breakdown()
    assert [(r["client_id"], r["metric"], r["total_amount"]) for r in rows] == [
        ("a", "revenue", 150),
        ("b", "cost", 30),
        ("a", "cost", 20),
    ]
