# authwatch/models.py
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Dict, Iterable, List, Tuple


# (identity, event kind)
GroupKey = Tuple[str, str]
EventGroups = Dict[GroupKey, List[datetime]]

DEDUP_SEPARATOR = "|"

# keeps latest - window inside the datetime range
MAX_WINDOW = timedelta(days=3650)

# fromisoformat keeps at most microseconds
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_instant(text: str) -> datetime:
    """Parse an ISO-8601 instant. Naive values are taken as UTC."""
    if not isinstance(text, str):
        raise ValueError(f"not a timestamp: {text!r}")
    value = text.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    value = _FRACTION_RE.sub(r"\1", value)
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def format_instant(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat()


@dataclass(frozen=True)
class NormalizedEvent:
    identity: str            # example "user:alice@10.0.0.5" or "role:Admin/session"
    event: str               # event kind, example "failed-password"
    timestamp: datetime      # timezone aware
    source: str = ""         # log family, example "cloud-audit" or "ssh-daemon"


def group_events(events: Iterable[NormalizedEvent]) -> EventGroups:
    """
    Group events by (identity, event kind).

    Keys keep the order they first appear in, timestamps keep input order.
    Identity and event strings are used as-is.
    """
    groups: EventGroups = {}
    for ev in events:
        groups.setdefault((ev.identity, ev.event), []).append(ev.timestamp)
    return groups


def merge_groups(target: EventGroups, groups: EventGroups) -> EventGroups:
    """Append every timestamp sequence of groups onto target."""
    for key, timestamps in groups.items():
        target.setdefault(key, []).extend(timestamps)
    return target


class Severity(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @classmethod
    def parse(cls, text: str) -> "Severity":
        try:
            return cls[str(text).strip().upper()]
        except KeyError:
            raise ValueError(f"unknown severity: {text!r}") from None

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class DetectionRule:
    name: str
    threshold: int           # fires when count > threshold
    window: timedelta
    severity: Severity = Severity.MEDIUM
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("rule name must not be empty")
        if isinstance(self.threshold, bool) or not isinstance(self.threshold, int):
            raise ValueError(f"rule {self.name}: threshold must be an integer")
        if self.threshold < 0:
            raise ValueError(f"rule {self.name}: threshold must be >= 0")
        if self.window < timedelta(0):
            raise ValueError(f"rule {self.name}: window must not be negative")
        if self.window > MAX_WINDOW:
            raise ValueError(f"rule {self.name}: window must not exceed {MAX_WINDOW.days} days")


def make_dedup_key(rule: str, identity: str, event: str) -> str:
    return DEDUP_SEPARATOR.join((rule, identity, event))


@dataclass(frozen=True)
class Finding:
    source: str
    rule: str
    severity: Severity
    identity: str
    event: str
    count: int               # events inside the fired window
    window: timedelta
    last_seen: datetime      # window anchor, latest event of the group

    def dedup_key(self) -> str:
        # severity, count and time stay out of the key so repeats collapse
        return make_dedup_key(self.rule, self.identity, self.event)

    @property
    def window_minutes(self) -> int:
        return int(self.window.total_seconds() // 60)
