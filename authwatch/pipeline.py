# authwatch/pipeline.py

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .config import DetectorConfig
from .errors import ParseError
from .log_ingestor import discover_sources
from .models import EventGroups, Finding, merge_groups
from .parsers import parse_source
from .rule_engine import RuleEngine
from .state import SeenState
from .storage import SQLiteStorage

logger = logging.getLogger(__name__)


@dataclass
class SourceReport:
    path: Path
    source: str
    total_events: int = 0
    error_events: int = 0
    error: Optional[str] = None      # set when the whole source was skipped


@dataclass
class RunReport:
    sources: List[SourceReport] = field(default_factory=list)
    findings: List[Finding] = field(default_factory=list)
    new_findings: List[Finding] = field(default_factory=list)
    state_saved: bool = True
    archived: Optional[bool] = None  # None when no database is configured

    @property
    def total_events(self) -> int:
        return sum(s.total_events for s in self.sources)

    @property
    def error_events(self) -> int:
        return sum(s.error_events for s in self.sources)

    @property
    def failed_sources(self) -> List[SourceReport]:
        return [s for s in self.sources if s.error is not None]

    @property
    def suppressed(self) -> int:
        return len(self.findings) - len(self.new_findings)


def collect_groups(config: DetectorConfig, report: RunReport) -> Dict[str, EventGroups]:
    """
    Parse every discovered input and merge its groups per source tag.

    Sources keep the order they are first seen in. An unreadable file is
    reported and skipped, the rest of the run carries on.
    """
    grouped: Dict[str, EventGroups] = {}

    for path, source in discover_sources(config.log_dir):
        entry = SourceReport(path=path, source=source)
        report.sources.append(entry)
        logger.info("Processing %s", path)

        try:
            result = parse_source(source, path, year=config.journal_year)
        except ParseError as e:
            entry.error = e.reason
            logger.warning("Failed to process %s: %s", path, e.reason)
            continue

        entry.total_events = result.total_events
        entry.error_events = result.error_events
        merge_groups(grouped.setdefault(source, {}), result.groups)

    return grouped


def archive_findings(db_path: str, findings: List[Finding]) -> bool:
    storage = SQLiteStorage(db_path)
    try:
        storage.connect()
        storage.init_db()
        for finding in findings:
            storage.insert_finding(finding)
    except (sqlite3.Error, OSError) as e:
        logger.warning("Could not archive findings to %s: %s", db_path, e)
        return False
    finally:
        storage.close()
    return True


def run_detection(
    config: DetectorConfig,
    now: Optional[datetime] = None,
    engine: Optional[RuleEngine] = None,
    state: Optional[SeenState] = None,
) -> RunReport:
    """
    One full batch pass: discover, parse, detect, suppress, persist.

    Raises InputDirectoryError when the input directory cannot be listed.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    if engine is None:
        engine = RuleEngine(rule_dir=config.rule_dir, default_rule=config.default_rule())
        engine.load_rules()

    report = RunReport()
    grouped = collect_groups(config, report)

    report.findings = engine.evaluate_sources(grouped.items())

    if state is None:
        state = SeenState.load(config.state_path)
    report.new_findings = state.filter_new(report.findings, now, config.ttl)
    logger.info(
        "%d finding(s), %d new, %d suppressed",
        len(report.findings),
        len(report.new_findings),
        report.suppressed,
    )

    report.state_saved = state.save(config.state_path)

    if config.db_path and report.new_findings:
        report.archived = archive_findings(config.db_path, report.new_findings)

    return report
