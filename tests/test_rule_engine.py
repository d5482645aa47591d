# tests/test_rule_engine.py
from datetime import datetime, timedelta, timezone

from authwatch.models import DetectionRule, Severity
from authwatch.rule_engine import RuleEngine, detect_sources, detect_with_rules

T0 = datetime(2026, 1, 7, 11, 0, tzinfo=timezone.utc)


def minutes(*offsets):
    return [T0 + timedelta(minutes=m) for m in offsets]


def burst_rule(threshold=3, window=5, name="Burst", severity=Severity.MEDIUM):
    return DetectionRule(
        name=name,
        threshold=threshold,
        window=timedelta(minutes=window),
        severity=severity,
    )


def test_burst_inside_window_fires_with_full_count():
    groups = {("user:alice@1.2.3.4", "failed-password"): minutes(0, 1, 2, 3, 4)}

    findings = detect_with_rules(groups, [burst_rule()], source="ssh-daemon")

    assert len(findings) == 1
    f = findings[0]
    assert f.count == 5
    assert f.rule == "Burst"
    assert f.identity == "user:alice@1.2.3.4"
    assert f.event == "failed-password"
    assert f.source == "ssh-daemon"
    assert f.severity == Severity.MEDIUM
    assert f.window == timedelta(minutes=5)
    assert f.last_seen == T0 + timedelta(minutes=4)


def test_events_spread_out_do_not_fire():
    groups = {("user:alice@1.2.3.4", "failed-password"): minutes(0, 10)}
    assert detect_with_rules(groups, [burst_rule()]) == []
    # with threshold 0 the single event in the window is the whole count
    findings = detect_with_rules(groups, [burst_rule(threshold=0)])
    assert [f.count for f in findings] == [1]


def test_threshold_is_strict():
    rule = burst_rule(threshold=3)
    exactly = {("id", "ev"): minutes(0, 1, 2)}
    one_more = {("id", "ev"): minutes(0, 1, 2, 3)}

    assert detect_with_rules(exactly, [rule]) == []
    assert len(detect_with_rules(one_more, [rule])) == 1


def test_window_start_is_inclusive():
    # minute 0 is exactly latest - window
    groups = {("id", "ev"): minutes(0, 5)}
    findings = detect_with_rules(groups, [burst_rule(threshold=1, window=5)])
    assert [f.count for f in findings] == [2]

    groups = {("id", "ev"): [T0, T0 + timedelta(minutes=5, seconds=1)]}
    assert detect_with_rules(groups, [burst_rule(threshold=1, window=5)]) == []


def test_window_anchored_to_latest_event_not_wall_clock():
    # a burst far in the past is still a burst
    past = datetime(2001, 3, 4, 5, 6, tzinfo=timezone.utc)
    groups = {("id", "ev"): [past + timedelta(seconds=s) for s in range(5)]}
    findings = detect_with_rules(groups, [burst_rule()])
    assert [f.count for f in findings] == [5]


def test_each_group_has_its_own_anchor():
    groups = {
        ("early", "ev"): minutes(0, 1, 2, 3),
        ("late", "ev"): minutes(100),
    }
    findings = detect_with_rules(groups, [burst_rule(threshold=3)])
    assert [f.identity for f in findings] == ["early"]
    assert findings[0].last_seen == T0 + timedelta(minutes=3)


def test_unordered_timestamps():
    groups = {("id", "ev"): minutes(4, 0, 20, 18, 17, 19)}
    findings = detect_with_rules(groups, [burst_rule(threshold=3)])
    assert findings[0].count == 4
    assert findings[0].last_seen == T0 + timedelta(minutes=20)


def test_empty_group_is_skipped():
    groups = {("id", "ev"): [], ("other", "ev"): minutes(0, 1)}
    assert detect_with_rules(groups, [burst_rule(threshold=0)])[0].identity == "other"
    assert detect_with_rules({("id", "ev"): []}, [burst_rule(threshold=0)]) == []


def test_every_rule_is_evaluated_against_every_group():
    rules = [
        burst_rule(threshold=2, window=5, name="Short", severity=Severity.LOW),
        burst_rule(threshold=3, window=60, name="Long", severity=Severity.HIGH),
    ]
    groups = {
        ("a", "ev"): minutes(0, 1, 2, 3),
        ("b", "ev"): minutes(0, 20, 40, 50),
    }

    findings = detect_with_rules(groups, rules)

    assert [(f.rule, f.identity) for f in findings] == [
        ("Short", "a"),
        ("Long", "a"),
        ("Long", "b"),
    ]


def test_case_sensitive_keys_stay_separate():
    groups = {
        ("user:Alice", "ev"): minutes(0, 1),
        ("user:alice", "ev"): minutes(0, 1),
    }
    findings = detect_with_rules(groups, [burst_rule(threshold=2)])
    assert findings == []


def test_detect_sources_keeps_source_order():
    rule = burst_rule(threshold=0)
    findings = detect_sources(
        [
            ("ssh-daemon", {("u", "failed-password"): minutes(0)}),
            ("cloud-audit", {("u", "ConsoleLogin"): minutes(0)}),
        ],
        [rule],
    )
    assert [f.source for f in findings] == ["ssh-daemon", "cloud-audit"]


def test_load_rules_from_directory(tmp_path):
    (tmp_path / "a_single.yaml").write_text(
        "id: SSH Burst\nthreshold: 5\nwindow_minutes: 10\nseverity: HIGH\n"
    )
    (tmp_path / "b_multi.yml").write_text(
        "rules:\n"
        "  - id: API Burst\n    threshold: 2\n    window_minutes: 1\n"
        "  - id: Broken\n    threshold: -1\n    window_minutes: 1\n"
    )
    (tmp_path / "c_empty.yaml").write_text("")
    (tmp_path / "d_list.yaml").write_text("- 1\n- 2\n")
    (tmp_path / "e_missing.yaml").write_text("id: NoWindow\nthreshold: 1\n")
    (tmp_path / "f_bad.yaml").write_text("id: [unclosed\n")
    (tmp_path / "notes.txt").write_text("id: Ignored\nthreshold: 1\nwindow_minutes: 1\n")

    engine = RuleEngine(rule_dir=tmp_path)
    rules = engine.load_rules()

    assert [r.name for r in rules] == ["SSH Burst", "API Burst"]
    assert rules[0].severity == Severity.HIGH
    assert rules[0].window == timedelta(minutes=10)
    assert rules[1].severity == Severity.MEDIUM
    assert engine.rules == rules


def test_default_rule_when_no_rules_found(tmp_path):
    default = burst_rule()
    engine = RuleEngine(rule_dir=tmp_path / "missing", default_rule=default)
    assert engine.load_rules() == (default,)

    groups = {("id", "ev"): minutes(0, 1, 2, 3)}
    assert [f.rule for f in engine.evaluate(groups, "ssh-daemon")] == ["Burst"]


def test_duplicate_rule_ids_keep_first(tmp_path):
    (tmp_path / "a.yaml").write_text("id: Same\nthreshold: 1\nwindow_minutes: 1\n")
    (tmp_path / "b.yaml").write_text("id: Same\nthreshold: 9\nwindow_minutes: 9\n")

    rules = RuleEngine(rule_dir=tmp_path).load_rules()

    assert len(rules) == 1
    assert rules[0].threshold == 1


def test_oversized_rule_window_is_skipped(tmp_path):
    (tmp_path / "huge.yaml").write_text(
        "rules:\n"
        "  - id: Forever\n    threshold: 1\n    window_minutes: 99999999999\n"
        "  - id: Decade\n    threshold: 1\n    window_minutes: 5256000\n"
    )

    rules = RuleEngine(rule_dir=tmp_path).load_rules()

    assert [r.name for r in rules] == ["Decade"]
    groups = {("id", "ev"): minutes(0, 1)}
    assert [f.count for f in detect_with_rules(groups, rules)] == [2]
