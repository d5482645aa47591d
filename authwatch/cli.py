# authwatch/cli.py

import argparse
import logging
import sys
from typing import List, Optional

from .config import load_config
from .errors import ConfigError, InputDirectoryError
from .models import Finding
from .pipeline import RunReport, run_detection

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


# ---------------- CLI ----------------

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="authwatch",
        description="Detect bursts of failed authentication events in audit logs",
    )
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--log-dir", dest="log_dir", help="Directory with input logs")
    parser.add_argument("--rules-dir", dest="rule_dir", help="Directory with YAML rules")
    parser.add_argument("--state", dest="state_path", help="Seen-state JSON file")
    parser.add_argument("--db", dest="db_path", help="SQLite file to archive new findings")
    parser.add_argument("--threshold", type=int, help="Default rule threshold")
    parser.add_argument("--window", dest="window_minutes", type=int, help="Default rule window (minutes)")
    parser.add_argument("--ttl", dest="ttl_minutes", type=int, help="Alert cooldown (minutes)")
    parser.add_argument("--year", dest="journal_year", type=int, help="Year for sshd journal timestamps")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


# ---------------- Output ----------------

def format_finding(finding: Finding) -> str:
    return (
        f" [{str(finding.severity).upper()}] {finding.rule} ({finding.source}) "
        f"{finding.identity} :: {finding.event} "
        f"({finding.count} events in {finding.window_minutes}m, "
        f"last {finding.last_seen.isoformat()})"
    )


def print_report(report: RunReport) -> None:
    for entry in report.sources:
        if entry.error is not None:
            print(f"[!] Failed to process {entry.path}: {entry.error}")
        else:
            print(f"[*] {entry.path}  Events: {entry.total_events}, Errors: {entry.error_events}")

    print("\n[+] Summary:")
    print(f"  Sources: {len(report.sources)} ({len(report.failed_sources)} failed)")
    print(f"  Total Events: {report.total_events}")
    print(f"  Error Events: {report.error_events}")

    print("\n[!] New Findings:")
    if not report.new_findings:
        print(" None")
    # high severity first, otherwise source order
    for finding in sorted(report.new_findings, key=lambda f: f.severity, reverse=True):
        print(format_finding(finding))

    if report.suppressed:
        print(f"\n[-] {report.suppressed} finding(s) suppressed by cooldown")
    if not report.state_saved:
        print("\n[!] Warning: seen state could not be saved")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = load_config(
            args.config,
            log_dir=args.log_dir,
            rule_dir=args.rule_dir,
            state_path=args.state_path,
            db_path=args.db_path,
            threshold=args.threshold,
            window_minutes=args.window_minutes,
            ttl_minutes=args.ttl_minutes,
            journal_year=args.journal_year,
        )
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    try:
        report = run_detection(config)
    except InputDirectoryError as e:
        logger.error("%s", e)
        return 2

    print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
