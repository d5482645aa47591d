# authwatch/parsers.py
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from .errors import ParseError
from .models import EventGroups, NormalizedEvent, group_events, parse_instant

logger = logging.getLogger(__name__)

CLOUD_AUDIT = "cloud-audit"
SSH_DAEMON = "ssh-daemon"


@dataclass
class ParseResult:
    total_events: int = 0
    error_events: int = 0
    groups: EventGroups = field(default_factory=dict)


# ---------------- cloud audit trail (JSON) ----------------


def resolve_identity(user_identity: Any) -> str:
    """
    Turn a CloudTrail userIdentity block into an identity token.

    IAM users, assumed roles and AWS services are told apart so that a
    role session is not confused with the user who assumed it.
    """
    if not isinstance(user_identity, dict):
        return "identity:<missing>"

    identity_type = user_identity.get("type") or "Unknown"

    if identity_type == "IAMUser":
        name = user_identity.get("userName")
        return f"user:{name}" if name else "user:<unknown>"

    if identity_type == "AssumedRole":
        arn = user_identity.get("arn")
        # arn:aws:sts::ACCOUNT:assumed-role/ROLE/SESSION
        if isinstance(arn, str) and "assumed-role/" in arn:
            return f"role:{arn.split('assumed-role/', 1)[1]}"
        principal = user_identity.get("principalId")
        return f"role-session:{principal}" if principal else "role:<unknown>"

    if identity_type == "AWSService":
        invoked_by = user_identity.get("invokedBy")
        return f"service:{invoked_by}" if invoked_by else "service:<unknown>"

    return f"other:{user_identity.get('arn') or identity_type}"


def _cloudtrail_events(records: List[Any], result: ParseResult) -> Iterator[NormalizedEvent]:
    for record in records:
        result.total_events += 1

        # malformed record, skip it and keep going
        if not isinstance(record, dict):
            continue
        if record.get("errorCode") is None:
            continue

        result.error_events += 1

        event_name = record.get("eventName")
        if not isinstance(event_name, str) or not event_name:
            continue
        try:
            ts = parse_instant(record.get("eventTime"))
        except ValueError:
            # no usable time, cannot take part in window logic
            continue

        identity = (
            resolve_identity(record["userIdentity"])
            if "userIdentity" in record
            else "identity:<missing>"
        )
        yield NormalizedEvent(identity=identity, event=event_name, timestamp=ts, source=CLOUD_AUDIT)


def parse_cloudtrail_file(path) -> ParseResult:
    """
    Parse a CloudTrail JSON export ({"Records": [...]}).

    Only records carrying an errorCode are grouped for detection.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(path, f"cannot read file: {e}") from e
    except (json.JSONDecodeError, RecursionError) as e:
        raise ParseError(path, f"invalid JSON: {e}") from e

    result = ParseResult()
    records = data.get("Records") if isinstance(data, dict) else None
    if not isinstance(records, list):
        return result

    result.groups = group_events(_cloudtrail_events(records, result))
    return result


# ---------------- sshd journal (text) ----------------

# journalctl short format: "Jan 07 11:48:14 host sshd[123]: ..."
JOURNAL_TS_RE = re.compile(r"^(?P<ts>[A-Z][a-z]{2}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2})")

INVALID_USER_RE = re.compile(r"Invalid user (?P<user>\S+)")

FAILED_PASSWORD_RE = re.compile(r"Failed password for (?:invalid user )?(?P<user>\S+)")

SOURCE_RE = re.compile(r" from (?P<src>\S+)")


def classify_ssh_line(line: str) -> Optional[str]:
    if "Invalid user " in line:
        return "invalid-user"
    if "Failed password" in line:
        return "failed-password"
    return None


def parse_journal_timestamp(line: str, year: int) -> Optional[datetime]:
    """Journal lines carry no year, inject it and read the time as UTC."""
    m = JOURNAL_TS_RE.match(line)
    if not m:
        return None
    stamp = " ".join(m.group("ts").split())
    try:
        naive = datetime.strptime(f"{year} {stamp}", "%Y %b %d %H:%M:%S")
    except ValueError:
        return None
    return naive.replace(tzinfo=timezone.utc)


def parse_ssh_line(line: str, year: int) -> Optional[NormalizedEvent]:
    """
    Parse a single sshd journal line into an event.
    Returns None for lines that are not failed logins or have a bad timestamp.
    """
    event = classify_ssh_line(line)
    if event is None:
        return None

    ts = parse_journal_timestamp(line, year)
    if ts is None:
        logger.debug("Skipping sshd line with unparsable timestamp: %s", line)
        return None

    regex = INVALID_USER_RE if event == "invalid-user" else FAILED_PASSWORD_RE
    m = regex.search(line)
    user = m.group("user") if m else "unknown"
    m = SOURCE_RE.search(line)
    src = m.group("src") if m else "unknown"

    return NormalizedEvent(
        identity=f"user:{user}@{src}",
        event=event,
        timestamp=ts,
        source=SSH_DAEMON,
    )


def parse_ssh_journal(path, year: Optional[int] = None) -> ParseResult:
    path = Path(path)
    if year is None:
        year = datetime.now(timezone.utc).year

    try:
        with path.open("r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(path, f"cannot read file: {e}") from e

    result = ParseResult()
    events: List[NormalizedEvent] = []
    for line in lines:
        if not line.strip():
            continue
        result.total_events += 1

        if classify_ssh_line(line) is None:
            continue
        result.error_events += 1

        ev = parse_ssh_line(line, year)
        if ev is not None:
            events.append(ev)

    result.groups = group_events(events)
    return result


Parser = Callable[..., ParseResult]

PARSERS: Dict[str, Parser] = {
    CLOUD_AUDIT: parse_cloudtrail_file,
    SSH_DAEMON: parse_ssh_journal,
}


def parse_source(source: str, path, **options) -> ParseResult:
    """
    Main entry point: choose the right parser based on source key.
    """
    parser = PARSERS.get(source)
    if parser is None:
        raise ParseError(path, f"no parser for source {source!r}")
    if source == SSH_DAEMON:
        return parser(path, year=options.get("year"))
    return parser(path)
