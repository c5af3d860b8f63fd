"""
Normalization layer.

Turns a raw, unreliable client event into a `CanonicalEvent`:
- resolves each canonical field from a list of accepted aliases
- coerces amounts and timestamps, reporting every rewrite as a warning
- reports unknown fields as warnings, never as errors
- never raises for malformed input; every problem ends up in `errors`

The alias table is an immutable `FieldAliases` value passed in at
construction. Extending it returns a new value:

    aliases = DEFAULT_ALIASES.with_alias("amount", "amt")
    normalizer = Normalizer(aliases)
"""

import math
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from models import CanonicalEvent, NormalizationResult

CANONICAL_FIELDS = ("client_id", "metric", "amount", "timestamp")

# client_id is resolved at the root, everything else inside `payload`.
ROOT_FIELDS = ("client_id",)
PAYLOAD_FIELDS = ("metric", "amount", "timestamp")

PAYLOAD_KEY = "payload"

_SLASH_YMD = re.compile(r"^(\d{4})/(\d{2})/(\d{2})$")
_SLASH_DMY = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")


@dataclass(frozen=True)
class FieldAliases:
    """Ordered accepted input names for each canonical field."""

    client_id: Tuple[str, ...] = ("source", "client", "client_id", "clientId", "sender")
    metric: Tuple[str, ...] = ("metric", "type", "event_type", "eventType", "name")
    amount: Tuple[str, ...] = ("amount", "value", "quantity", "total", "sum")
    timestamp: Tuple[str, ...] = (
        "timestamp", "time", "date", "created_at", "createdAt", "event_time",
    )

    def aliases_for(self, field: str) -> Tuple[str, ...]:
        if field not in CANONICAL_FIELDS:
            raise KeyError(f"Unknown canonical field: {field}")
        return getattr(self, field)

    def known_aliases(self) -> frozenset:
        return frozenset(a for f in CANONICAL_FIELDS for a in self.aliases_for(f))

    def with_alias(self, field: str, alias: str) -> "FieldAliases":
        """Return a copy with `alias` appended to `field`'s list."""
        current = self.aliases_for(field)
        if alias in current:
            return self
        return replace(self, **{field: current + (alias,)})

    @classmethod
    def parse(cls, text: str, base: Optional["FieldAliases"] = None) -> "FieldAliases":
        """Layer aliases from a `field=a,b;field2=c` string onto `base`.

        Raises `ValueError` for malformed entries or unknown fields.
        """
        aliases = base or cls()
        for entry in filter(None, (part.strip() for part in text.split(";"))):
            field, sep, names = entry.partition("=")
            field = field.strip()
            if not sep or field not in CANONICAL_FIELDS:
                raise ValueError(f"Invalid field alias entry: {entry!r}")
            for name in filter(None, (n.strip() for n in names.split(","))):
                aliases = aliases.with_alias(field, name)
        return aliases


DEFAULT_ALIASES = FieldAliases()


def resolve_field(obj: Dict[str, Any], names: Tuple[str, ...]) -> Tuple[Optional[str], Any]:
    """Return `(alias, value)` for the first present, non-null, non-empty alias."""
    for name in names:
        value = obj.get(name)
        if value is not None and value != "":
            return name, value
    return None, None


def payload_of(raw_event: Dict[str, Any]) -> Any:
    """The object holding metric/amount/timestamp: `payload`, or the event itself."""
    if PAYLOAD_KEY in raw_event:
        return raw_event[PAYLOAD_KEY]
    return raw_event


def format_timestamp(dt: datetime) -> str:
    """UTC ISO 8601 with millisecond precision and a `Z` suffix."""
    dt = dt.astimezone(timezone.utc)
    return (
        f"{dt.year:04d}-{dt.month:02d}-{dt.day:02d}T"
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d}.{dt.microsecond // 1000:03d}Z"
    )


def _display_number(value: float) -> str:
    return str(int(value)) if value.is_integer() else repr(value)


class Normalizer:
    """Maps arbitrary input shapes onto `CanonicalEvent`.

    Stateless apart from the injected alias configuration; one instance
    can be shared between requests.
    """

    def __init__(self, aliases: FieldAliases = DEFAULT_ALIASES):
        self.aliases = aliases

    def normalize(self, raw_event: Any) -> NormalizationResult:
        errors: List[str] = []
        warnings: List[str] = []

        if not isinstance(raw_event, dict):
            return NormalizationResult(ok=False, errors=["Event must be a JSON object"])

        payload = payload_of(raw_event)
        if not isinstance(payload, dict):
            errors.append(f'Field "{PAYLOAD_KEY}" must be a JSON object')
            payload = {}

        fields: Dict[str, Any] = {}

        _, client_id = resolve_field(raw_event, self.aliases.client_id)
        if client_id is None:
            errors.append("Missing required field: client_id (or equivalent)")
        else:
            fields["client_id"] = str(client_id)

        _, metric = resolve_field(payload, self.aliases.metric)
        if metric is None:
            errors.append("Missing required field: metric (or equivalent)")
        else:
            fields["metric"] = str(metric)

        _, amount = resolve_field(payload, self.aliases.amount)
        if amount is None:
            errors.append("Missing required field: amount (or equivalent)")
        else:
            parsed = self.parse_amount(amount)
            if parsed is None:
                errors.append(f"Invalid amount value: {amount} (cannot be converted to number)")
            elif parsed < 0:
                errors.append(f"Invalid amount value: {amount} (must be non-negative)")
            else:
                fields["amount"] = parsed
                if isinstance(amount, str):
                    warnings.append(
                        f'Amount was provided as string "{amount}", '
                        f"converted to {_display_number(parsed)}"
                    )

        _, raw_ts = resolve_field(payload, self.aliases.timestamp)
        if raw_ts is None:
            fields["timestamp"] = format_timestamp(datetime.now(timezone.utc))
            warnings.append("Missing timestamp field, using current time as fallback")
        else:
            parsed_ts = self.parse_timestamp(raw_ts)
            if parsed_ts is None:
                # rejected, but the fallback time is still reported
                errors.append(f"Invalid timestamp format: {raw_ts}")
                fields["timestamp"] = format_timestamp(datetime.now(timezone.utc))
                warnings.append("Using current time due to invalid timestamp")
            else:
                fields["timestamp"] = parsed_ts
                if parsed_ts != str(raw_ts):
                    warnings.append(f'Timestamp normalized from "{raw_ts}" to "{parsed_ts}"')

        warnings.extend(self._unknown_field_warnings(raw_event, payload))

        if errors:
            return NormalizationResult(ok=False, errors=errors, warnings=warnings)

        return NormalizationResult(
            ok=True, canonical=CanonicalEvent(**fields), warnings=warnings
        )

    def _unknown_field_warnings(self, raw_event: Dict[str, Any], payload: Dict[str, Any]) -> List[str]:
        known = self.aliases.known_aliases()
        out = [
            f"Unknown field at root level: {key}"
            for key in raw_event
            if key not in known and key != PAYLOAD_KEY
        ]
        if payload is not raw_event:
            out.extend(f"Unknown field in payload: {key}" for key in payload if key not in known)
        return out

    @staticmethod
    def parse_amount(value: Any) -> Optional[float]:
        """Parse a number, or a string like `"$1,200.50"`. None if impossible."""
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            try:
                number = float(value)
            except OverflowError:
                return None
        elif isinstance(value, str):
            cleaned = value.replace(",", "").replace("$", "").strip()
            # float() would read "1_000" as a digit group
            if "_" in cleaned:
                return None
            try:
                number = float(cleaned)
            except ValueError:
                return None
        else:
            return None
        return number if math.isfinite(number) else None

    @staticmethod
    def parse_timestamp(value: Any) -> Optional[str]:
        """Parse a timestamp and render it as UTC ISO 8601, or None.

        Order: ISO 8601 (naive values are taken as UTC), then `YYYY/MM/DD`,
        then `DD/MM/YYYY`, both at UTC midnight. Numbers are epoch
        milliseconds.
        """
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            try:
                dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                return None
            return format_timestamp(dt)
        if not isinstance(value, str):
            return None

        text = value.strip()
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00") if text.endswith("Z") else text)
        except ValueError:
            dt = None

        if dt is None:
            match = _SLASH_YMD.match(text)
            if match:
                year, month, day = match.groups()
            else:
                match = _SLASH_DMY.match(text)
                if not match:
                    return None
                day, month, year = match.groups()
            try:
                dt = datetime(int(year), int(month), int(day), tzinfo=timezone.utc)
            except ValueError:
                return None

        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        try:
            return format_timestamp(dt)
        except (OverflowError, ValueError):
            return None
