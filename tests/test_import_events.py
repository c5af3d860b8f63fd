"""Tests for the bulk import script."""

import json
from pathlib import Path

import pytest

import import_events
from service_events import EventService

EVENTS = [
    {"source": "a", "payload": {"metric": "revenue", "amount": 10, "timestamp": "2024-01-01"}},
    {"source": "a", "payload": {"metric": "revenue", "amount": 10, "timestamp": "2024-01-01"}},
    {"source": "b", "payload": {"metric": "cost", "amount": "nope"}},
]


def test_json_array(tmp_path: Path, svc: EventService):
    path = tmp_path / "events.json"
    path.write_text(json.dumps(EVENTS), encoding="utf-8")

    counts = import_events.main(str(path), svc)

    assert counts == {"created": 1, "duplicate": 1, "validation_failed": 1}


def test_json_lines_skips_blank_lines(tmp_path: Path, svc: EventService):
    path = tmp_path / "events.jsonl"
    path.write_text("\n".join(json.dumps(e) for e in EVENTS) + "\n\n", encoding="utf-8")

    assert list(import_events.iter_events(str(path))) == EVENTS

    counts = import_events.main(str(path), svc)
    assert counts["created"] == 1
    assert sum(counts.values()) == 3


def test_reimport_is_all_duplicates(tmp_path: Path, svc: EventService):
    path = tmp_path / "events.json"
    path.write_text(json.dumps(EVENTS), encoding="utf-8")

    import_events.main(str(path), svc)
    counts = import_events.main(str(path), svc)

    assert counts == {"duplicate": 3}
    assert svc.get_stats()["total_processed"] == 1


def test_invalid_line_reports_line_number(tmp_path: Path):
    path = tmp_path / "broken.jsonl"
    path.write_text('{"source": "a"}\n{not json\n', encoding="utf-8")

    with pytest.raises(ValueError, match="broken.jsonl:2"):
        list(import_events.iter_events(str(path)))
