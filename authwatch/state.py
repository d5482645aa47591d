# authwatch/state.py

import json
import logging
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .models import Finding, format_instant, parse_instant

logger = logging.getLogger(__name__)


class SeenState:
    """
    Dedup key -> instant the finding was last alerted.

    Persisted as {"seen": {"<rule>|<identity>|<event>": "<ISO-8601>"}}.
    All mutation is in memory; save() writes the whole document.
    """

    def __init__(self, seen: Optional[Dict[str, datetime]] = None) -> None:
        self.seen: Dict[str, datetime] = dict(seen or {})

    def __len__(self) -> int:
        return len(self.seen)

    def __contains__(self, key: str) -> bool:
        return key in self.seen

    @classmethod
    def load(cls, path) -> "SeenState":
        """
        Read the persisted state. A missing or corrupt file gives an
        empty state, detection must never be blocked by the cache.
        """
        path = Path(path)
        if not path.exists():
            return cls()

        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
            seen = data["seen"]
            if not isinstance(seen, dict):
                raise TypeError("'seen' is not a mapping")
            parsed = {str(key): parse_instant(value) for key, value in seen.items()}
        except (OSError, UnicodeDecodeError, ValueError, TypeError, KeyError, RecursionError) as e:
            logger.warning("Ignoring unreadable seen state %s: %s", path, e)
            return cls()

        logger.debug("Loaded %d seen entries from %s", len(parsed), path)
        return cls(parsed)

    def save(self, path) -> bool:
        """Write the full mapping to path. Returns False on failure."""
        path = Path(path)
        document = {
            "seen": {key: format_instant(ts) for key, ts in sorted(self.seen.items())}
        }
        tmp_path = path.with_name(path.name + ".tmp")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.write("\n")
            os.replace(tmp_path, path)
        except OSError as e:
            logger.warning("Could not save seen state to %s: %s", path, e)
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.debug("Could not remove %s: %s", tmp_path, cleanup_error)
            return False

        return True

    def is_new(self, key: str, now: datetime, ttl: timedelta) -> bool:
        last_seen = self.seen.get(key)
        if last_seen is None:
            return True
        # an age of exactly ttl is still suppressed
        return now - last_seen > ttl

    def mark_seen(self, key: str, now: datetime) -> None:
        self.seen[key] = now

    def filter_new(
        self, findings: Iterable[Finding], now: datetime, ttl: timedelta
    ) -> List[Finding]:
        """
        Keep the findings whose key is new and mark each one seen right
        away, so a key repeated later in the same batch is suppressed too.
        """
        fresh: List[Finding] = []
        for finding in findings:
            key = finding.dedup_key()
            if self.is_new(key, now, ttl):
                fresh.append(finding)
                self.mark_seen(key, now)
        return fresh
