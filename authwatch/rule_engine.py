# authwatch/rule_engine.py

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import yaml

from .models import MAX_WINDOW, DetectionRule, EventGroups, Finding, Severity

logger = logging.getLogger(__name__)

RULE_SUFFIXES = (".yaml", ".yml")
REQUIRED_FIELDS = ("id", "threshold", "window_minutes")


def detect_with_rules(
    groups: Mapping[Tuple[str, str], Sequence],
    rules: Sequence[DetectionRule],
    source: str = "",
) -> List[Finding]:
    """
    Evaluate every rule against every (identity, event) group.

    The window of each group is anchored to that group's latest
    timestamp, never to the current time. A finding fires when the
    number of timestamps at or after latest - window is strictly
    greater than the rule threshold.
    """
    findings: List[Finding] = []

    for rule in rules:
        for (identity, event), timestamps in groups.items():
            if not timestamps:
                continue

            latest = max(timestamps)
            window_start = latest - rule.window
            count = sum(1 for ts in timestamps if ts >= window_start)

            if count > rule.threshold:
                findings.append(
                    Finding(
                        source=source,
                        rule=rule.name,
                        severity=rule.severity,
                        identity=identity,
                        event=event,
                        count=count,
                        window=rule.window,
                        last_seen=latest,
                    )
                )

    return findings


def detect_sources(
    grouped_sources: Iterable[Tuple[str, EventGroups]],
    rules: Sequence[DetectionRule],
) -> List[Finding]:
    """Run detection once per source and concatenate, in source order."""
    findings: List[Finding] = []
    for source, groups in grouped_sources:
        findings.extend(detect_with_rules(groups, rules, source))
    return findings


def rule_from_dict(data: Dict[str, Any]) -> DetectionRule:
    """Build a rule from a YAML mapping. Raises ValueError when invalid."""
    missing = [key for key in REQUIRED_FIELDS if key not in data]
    if missing:
        raise ValueError(f"missing required fields: {', '.join(missing)}")

    threshold = data["threshold"]
    window_minutes = data["window_minutes"]
    if isinstance(window_minutes, bool) or not isinstance(window_minutes, int):
        raise ValueError("window_minutes must be an integer")
    if window_minutes > MAX_WINDOW.total_seconds() // 60:
        raise ValueError(f"window_minutes must not exceed {MAX_WINDOW.days} days")

    return DetectionRule(
        name=str(data["id"]),
        threshold=threshold,
        window=timedelta(minutes=window_minutes),
        severity=Severity.parse(data.get("severity", "medium")),
        description=str(data.get("description") or ""),
    )


class RuleEngine:
    def __init__(
        self,
        rule_dir=None,
        default_rule: Optional[DetectionRule] = None,
    ):
        self.rule_dir = Path(rule_dir) if rule_dir is not None else None
        self.default_rule = default_rule
        self.rules: Tuple[DetectionRule, ...] = ()

    def load_rules(self) -> Tuple[DetectionRule, ...]:
        """Load all YAML rules from the rules directory."""
        loaded: List[DetectionRule] = []

        if self.rule_dir is not None and not self.rule_dir.is_dir():
            logger.warning("Rule directory does not exist: %s", self.rule_dir)
        elif self.rule_dir is not None:
            for path in sorted(self.rule_dir.iterdir()):
                if path.suffix not in RULE_SUFFIXES or not path.is_file():
                    continue
                loaded.extend(self._load_rule_file(path))

        names = set()
        unique: List[DetectionRule] = []
        for rule in loaded:
            if rule.name in names:
                logger.warning("Skipping duplicate rule id: %s", rule.name)
                continue
            names.add(rule.name)
            unique.append(rule)

        if not unique and self.default_rule is not None:
            logger.info("No rules loaded, using default rule %s", self.default_rule.name)
            unique.append(self.default_rule)

        self.rules = tuple(unique)
        return self.rules

    def _load_rule_file(self, path: Path) -> List[DetectionRule]:
        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            logger.warning("Error loading rule file %s: %s", path.name, e)
            return []

        # Skip empty or invalid YAML
        if not data:
            logger.warning("Skipping empty rule file: %s", path.name)
            return []
        if not isinstance(data, dict):
            logger.warning("Skipping non dict rule file: %s", path.name)
            return []

        entries = data["rules"] if "rules" in data else [data]
        if not isinstance(entries, list):
            logger.warning("Skipping rule file with non list 'rules': %s", path.name)
            return []

        rules: List[DetectionRule] = []
        for entry in entries:
            if not isinstance(entry, dict):
                logger.warning("Skipping non dict rule entry in %s", path.name)
                continue
            try:
                rule = rule_from_dict(entry)
            except ValueError as e:
                logger.warning("Skipping invalid rule in %s: %s", path.name, e)
                continue
            rules.append(rule)
            logger.debug("Loaded rule from %s: %s", path.name, rule.name)
        return rules

    def evaluate(self, groups: EventGroups, source: str = "") -> List[Finding]:
        """Return the findings for one source's event groups."""
        return detect_with_rules(groups, self.rules, source)

    def evaluate_sources(
        self, grouped_sources: Iterable[Tuple[str, EventGroups]]
    ) -> List[Finding]:
        return detect_sources(grouped_sources, self.rules)
