from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from app.services.rule_evaluator import (
    AutoApprovalRules,
    RuleVerdict,
    evaluate,
    parse_numeric,
    resolve_value,
    within_time_window,
)
from app.core.datetime_utils import parse_hhmm


def _steps(response="45", media=("https://files.example.com/p.jpg",)):
    return [
        {"step_id": "reading", "step_title": "Meter reading", "response_text": response, "media_urls": list(media)},
        {"step_id": "panel", "step_title": "Control panel", "response_text": "12.5 bar", "media_urls": []},
    ]


def _at(hour, minute=0):
    return datetime(2026, 3, 2, hour, minute, tzinfo=timezone.utc)


RULES = {
    "time_range_start": "08:00",
    "time_range_end": "18:00",
    "value_field": "meterReading",
    "min_value": 0,
    "max_value": 100,
    "require_photo": True,
}


def test_accepts_when_every_check_passes():
    result = evaluate(RULES, _steps(), 45, _at(10))

    assert result.applicable
    assert result.verdict == RuleVerdict.ACCEPT
    assert result.accepted
    assert result.value == 45
    assert result.reason == "All criteria met"


def test_disabled_gate_is_inapplicable():
    result = evaluate(RULES, _steps(), 45, _at(10), enabled=False)

    assert not result.applicable
    assert result.verdict is None
    assert not result.accepted


@pytest.mark.parametrize("rules", [
    None,
    "not-a-mapping",
    {"time_range_start": "8am"},
    {"time_range_end": "24:00"},
    {"min_value": 50, "max_value": 10},
    {"min_value": "lots"},
    {"max_value": float("inf")},
    {"value_field": "   "},
    {"frequency_limit": -1},
    {"frequency_period": "fortnight"},
])
def test_misconfigured_rules_are_inapplicable_not_errors(rules):
    result = evaluate(rules, _steps(), 45, _at(10))

    assert not result.applicable
    assert result.reason.startswith("Invalid rules")


def test_missing_keys_take_defaults():
    rules = AutoApprovalRules.from_mapping({})

    assert rules.time_range_start == parse_hhmm("00:00")
    assert rules.time_range_end == parse_hhmm("23:59")
    assert rules.value_field == "responseText"
    assert rules.require_photo is True
    assert rules.frequency_limit is None


def test_missing_media_is_inapplicable():
    result = evaluate(RULES, _steps(media=()), 45, _at(10))

    assert not result.applicable
    assert "media" in result.reason.lower()


def test_media_not_checked_when_photo_not_required():
    result = evaluate({**RULES, "require_photo": False}, _steps(media=()), 45, _at(10))

    assert result.accepted


def test_media_required_step_must_carry_its_own_media():
    definitions = [
        {"id": "reading", "title": "Meter reading", "media_required": False},
        {"id": "panel", "title": "Control panel", "media_required": True},
    ]
    result = evaluate(RULES, _steps(), 45, _at(10), step_definitions=definitions)

    assert not result.applicable
    assert "Control panel" in result.reason


def test_unresolvable_value_is_inapplicable():
    result = evaluate(RULES, _steps(), None, _at(10))

    assert not result.applicable
    assert "meterReading" in result.reason


@pytest.mark.parametrize("value,verdict", [
    (0, RuleVerdict.ACCEPT),
    (100, RuleVerdict.ACCEPT),
    (-0.5, RuleVerdict.REJECT),
    (150, RuleVerdict.REJECT),
])
def test_bounds_are_inclusive(value, verdict):
    result = evaluate(RULES, _steps(), value, _at(10))

    assert result.applicable
    assert result.verdict == verdict


def test_open_bounds_accept_any_value():
    rules = {**RULES, "min_value": None, "max_value": None}

    assert evaluate(rules, _steps(), -1e9, _at(10)).accepted
    assert evaluate(rules, _steps(), 1e9, _at(10)).accepted


@pytest.mark.parametrize("hour,minute,inside", [
    (7, 59, False),
    (8, 0, True),
    (18, 0, True),
    (18, 1, False),
])
def test_time_window_is_inclusive(hour, minute, inside):
    result = evaluate(RULES, _steps(), 45, _at(hour, minute))

    assert result.applicable
    assert result.accepted is inside


def test_time_window_ignores_seconds():
    submitted = datetime(2026, 3, 2, 18, 0, 59, tzinfo=timezone.utc)

    assert evaluate(RULES, _steps(), 45, submitted).accepted


def test_window_spanning_midnight():
    rules = {**RULES, "time_range_start": "22:00", "time_range_end": "02:00"}

    assert evaluate(rules, _steps(), 45, _at(23, 30)).accepted
    assert evaluate(rules, _steps(), 45, _at(1, 0)).accepted

    late_morning = evaluate(rules, _steps(), 45, _at(10, 0))
    assert late_morning.applicable
    assert late_morning.verdict == RuleVerdict.REJECT


def test_window_uses_inspection_local_zone():
    # 10:30 UTC is 16:00 in Kolkata
    rules = {**RULES, "time_range_start": "15:00", "time_range_end": "17:00"}

    assert not evaluate(rules, _steps(), 45, _at(10, 30)).accepted
    assert evaluate(rules, _steps(), 45, _at(10, 30), tz=ZoneInfo("Asia/Kolkata")).accepted


def test_identical_inputs_give_identical_results():
    first = evaluate(RULES, _steps(), 45, _at(10))
    second = evaluate(RULES, _steps(), 45, _at(10))

    assert first == second


def test_window_rejection_reports_local_time():
    result = evaluate(RULES, _steps(), 45, _at(20, 15))

    assert result.verdict == RuleVerdict.REJECT
    assert "20:15" in result.reason


class TestResolveValue:

    def test_first_response(self):
        assert resolve_value("responseText", _steps("72 psi"), None) == 72

    def test_meter_reading(self):
        assert resolve_value("meterReading", _steps(), 12.5) == 12.5

    def test_named_step_by_id_or_title(self):
        assert resolve_value("panel", _steps(), None) == 12.5
        assert resolve_value("Control panel", _steps(), None) == 12.5

    def test_unknown_field(self):
        assert resolve_value("pressure", _steps(), None) is None

    def test_no_steps(self):
        assert resolve_value("responseText", [], None) is None


@pytest.mark.parametrize("raw,expected", [
    ("45", 45.0),
    ("  -3.5 degrees", -3.5),
    (".5", 0.5),
    ("1e3", 1000.0),
    (7, 7.0),
    ("OK", None),
    ("", None),
    (None, None),
    (True, None),
    ("nan", None),
])
def test_parse_numeric(raw, expected):
    assert parse_numeric(raw) == expected


def test_within_time_window_same_start_and_end():
    noon = parse_hhmm("12:00")

    assert within_time_window(noon, noon, noon)
    assert not within_time_window(parse_hhmm("12:01"), noon, noon)
