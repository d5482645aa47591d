# authwatch/storage.py

import os
import sqlite3
from typing import Dict, List, Optional

from .models import Finding, format_instant


class SQLiteStorage:
    """Archive of reported findings."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None

    def connect(self) -> None:
        parent = os.path.dirname(self.db_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def init_db(self) -> None:
        assert self.conn is not None
        cur = self.conn.cursor()

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS findings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                last_seen TEXT,
                source TEXT,
                rule_name TEXT,
                severity TEXT,
                identity TEXT,
                event TEXT,
                count INTEGER,
                window_minutes INTEGER,
                dedup_key TEXT
            )
            """
        )

        self.conn.commit()

    def insert_finding(self, finding: Finding) -> int:
        assert self.conn is not None
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT INTO findings (
                last_seen, source, rule_name, severity, identity,
                event, count, window_minutes, dedup_key
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                format_instant(finding.last_seen),
                finding.source,
                finding.rule,
                str(finding.severity),
                finding.identity,
                finding.event,
                finding.count,
                finding.window_minutes,
                finding.dedup_key(),
            ),
        )
        self.conn.commit()
        return cur.lastrowid

    def fetch_findings(
        self,
        severity: Optional[str] = None,
        limit: int = 500,
    ) -> List[Dict]:
        """
        Return findings as a list of dictionaries, newest first,
        optional severity filter.
        """
        assert self.conn is not None
        cur = self.conn.cursor()

        columns = (
            "last_seen, source, rule_name, severity, identity, "
            "event, count, window_minutes, dedup_key"
        )
        if severity:
            cur.execute(
                f"""
                SELECT {columns}
                FROM findings
                WHERE LOWER(severity) = LOWER(?)
                ORDER BY id DESC
                LIMIT ?
                """,
                (severity, limit),
            )
        else:
            cur.execute(
                f"""
                SELECT {columns}
                FROM findings
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            )

        return [dict(row) for row in cur.fetchall()]
