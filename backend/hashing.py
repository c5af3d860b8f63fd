"""
Content fingerprints for deduplication.

A fingerprint is the SHA-256 of a canonical JSON rendering of the event:
- mapping keys sorted at every level
- receipt metadata (`received_at`, `created_at`, `id`) dropped at any depth
- strings trimmed and lower-cased
- numbers (integral floats written as ints), booleans, null and list
  order left alone

When the normalizer's `FieldAliases` are supplied, the winning alias of
each canonical field is renamed to the canonical name, so `{"value": 5}`
and `{"amount": 5}` fingerprint the same.
"""

import hashlib
import json
from typing import Any, Optional

from normalizer import FieldAliases, PAYLOAD_FIELDS, PAYLOAD_KEY, ROOT_FIELDS, resolve_field

METADATA_KEYS = frozenset({"received_at", "created_at", "id"})


def canonicalize(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: canonicalize(value[key])
            for key in sorted(value)
            if key not in METADATA_KEYS
        }
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, float) and value.is_integer():
        # 1200.0 and 1200 are the same JSON number
        return int(value)
    return value


def _fold_aliases(obj: dict, fields, aliases: FieldAliases) -> dict:
    folded = dict(obj)
    for field in fields:
        name, _ = resolve_field(obj, aliases.aliases_for(field))
        if name is None or name == field:
            continue
        if field in folded:
            # the canonical name is taken by a losing (empty) value
            continue
        folded[field] = folded.pop(name)
    return folded


def fold_aliases(event: Any, aliases: FieldAliases) -> Any:
    """Rename winning aliases to canonical names; other keys are untouched."""
    if not isinstance(event, dict):
        return event
    folded = _fold_aliases(event, ROOT_FIELDS, aliases)
    if PAYLOAD_KEY in folded:
        if isinstance(folded[PAYLOAD_KEY], dict):
            folded[PAYLOAD_KEY] = _fold_aliases(folded[PAYLOAD_KEY], PAYLOAD_FIELDS, aliases)
    else:
        folded = _fold_aliases(folded, PAYLOAD_FIELDS, aliases)
    return folded


def fingerprint(raw_event: Any, aliases: Optional[FieldAliases] = None) -> str:
    """Deterministic content hash (64 hex chars) of `raw_event`."""
    canonical = canonicalize(raw_event)
    if aliases is not None:
        canonical = fold_aliases(canonical, aliases)
    content = json.dumps(canonical, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
