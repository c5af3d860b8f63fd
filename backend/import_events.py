"""
Bulk import: push a file of raw events through the ingestion pipeline.

Accepts either a JSON array of event objects or JSON Lines (one object
per line). Every event goes through `EventService.ingest_event`, so
re-running an import is safe: already stored events come back as
duplicates.

Usage:
    python import_events.py <path_to_events.json|.jsonl>
"""

import json
import sys
from collections import Counter
from typing import Any, Iterator

from repo_events import EventRepo
from service_events import EventService


def iter_events(path: str) -> Iterator[Any]:
    with open(path, encoding="utf-8") as f:
        text = f.read()

    stripped = text.lstrip()
    if stripped.startswith("["):
        yield from json.loads(stripped)
        return

    for line_no, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError as e:
            raise ValueError(f"{path}:{line_no}: invalid JSON ({e.msg})") from e


def main(path: str, svc: EventService | None = None) -> Counter:
    if svc is None:
        repo = EventRepo()
        repo.init_schema()
        svc = EventService(repo)

    print(f"Importing events from: {path}")
    counts: Counter = Counter()

    for n, event in enumerate(iter_events(path), start=1):
        result = svc.ingest_event(event)
        counts[result.outcome.value] += 1
        if result.errors:
            print(f"  event {n}: {'; '.join(result.errors)}")
        if n % 1000 == 0:
            print(f"Processed {n} events...")

    print("Import complete.")
    for outcome, count in sorted(counts.items()):
        print(f"  {outcome}: {count}")
    return counts


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python import_events.py <path_to_events.json|.jsonl>")
        sys.exit(1)

    main(sys.argv[1])
