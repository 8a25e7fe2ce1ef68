"""
Auto-Approval Rule Evaluator.

Pure function over a workflow's auto-approval rules and a submitted
inspection. It never raises and never touches the database: bad rule
parameters make the rule inapplicable, which routes the inspection to
manual approval.

Result semantics:
- applicable=False: the rule cannot be used (disabled, misconfigured,
  missing media, value not resolvable)
- verdict=ACCEPT: every check passed
- verdict=REJECT: the rule applies and disqualifies this submission
  (outside the time window, or value out of bounds)
"""
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, time, timezone, tzinfo
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from app.core.datetime_utils import ensure_utc, parse_hhmm
from app.models.workflow import DEFAULT_AUTO_APPROVAL_RULES, FrequencyPeriod


METER_READING_FIELD = "meterReading"
FIRST_RESPONSE_FIELD = "responseText"

# Leading number, like JavaScript's parseFloat ("45 km" -> 45)
_LEADING_NUMBER = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")

# None means "unbounded" / "no limit" for these, not "use the default"
_NULLABLE_RULE_KEYS = ("min_value", "max_value", "frequency_limit")


class RuleVerdict(str, Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"


@dataclass(frozen=True)
class AutoApprovalRules:
    """Validated auto-approval rule parameters."""
    time_range_start: time = time(0, 0)
    time_range_end: time = time(23, 59)
    value_field: str = FIRST_RESPONSE_FIELD
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    require_photo: bool = True
    frequency_limit: Optional[int] = None
    frequency_period: FrequencyPeriod = FrequencyPeriod.DAY

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "AutoApprovalRules":
        """
        Build rules from stored workflow JSON.

        Missing keys take the workflow defaults.

        Raises:
            ValueError: If any parameter is malformed
        """
        if data is None:
            raise ValueError("No rules defined")
        if not isinstance(data, Mapping):
            raise ValueError("Rules must be an object")

        merged = dict(DEFAULT_AUTO_APPROVAL_RULES)
        merged.update({
            key: value for key, value in data.items()
            if value is not None or key in _NULLABLE_RULE_KEYS
        })

        start = parse_hhmm(merged["time_range_start"])
        end = parse_hhmm(merged["time_range_end"])
        if start is None or end is None:
            raise ValueError("Time range must be HH:MM")

        min_value = _as_bound(merged["min_value"], "min_value")
        max_value = _as_bound(merged["max_value"], "max_value")
        if min_value is not None and max_value is not None and min_value > max_value:
            raise ValueError(f"min_value {min_value} exceeds max_value {max_value}")

        value_field = merged["value_field"]
        if not isinstance(value_field, str) or not value_field.strip():
            raise ValueError("value_field must be a non-empty string")

        frequency_limit = merged["frequency_limit"]
        if frequency_limit is not None:
            if isinstance(frequency_limit, bool) or not isinstance(frequency_limit, int) or frequency_limit < 0:
                raise ValueError("frequency_limit must be a non-negative integer")

        try:
            period = FrequencyPeriod(str(merged["frequency_period"]).lower())
        except ValueError:
            raise ValueError(f"Unknown frequency_period: {merged['frequency_period']!r}")

        return cls(
            time_range_start=start,
            time_range_end=end,
            value_field=value_field.strip(),
            min_value=min_value,
            max_value=max_value,
            require_photo=bool(merged["require_photo"]),
            frequency_limit=frequency_limit,
            frequency_period=period,
        )


@dataclass(frozen=True)
class RuleEvaluation:
    applicable: bool
    verdict: Optional[RuleVerdict]
    reason: str
    value: Optional[float] = None
    rules: Optional[AutoApprovalRules] = field(default=None, compare=False)

    @property
    def accepted(self) -> bool:
        return self.applicable and self.verdict == RuleVerdict.ACCEPT


def _as_bound(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"{name} must be numeric")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be numeric")
    if not math.isfinite(number):
        raise ValueError(f"{name} must be finite")
    return number


def parse_numeric(value: Any) -> Optional[float]:
    """Extract a finite number from a reading or free-text response."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _LEADING_NUMBER.match(str(value))
        if not match:
            return None
        number = float(match.group(0))
    return number if math.isfinite(number) else None


def resolve_value(
    value_field: str,
    filled_steps: Sequence[Mapping[str, Any]],
    meter_reading: Optional[float],
) -> Optional[float]:
    """Resolve the configured field to a number, or None."""
    if value_field == METER_READING_FIELD:
        return parse_numeric(meter_reading)

    if value_field == FIRST_RESPONSE_FIELD:
        if not filled_steps:
            return None
        return parse_numeric(filled_steps[0].get("response_text"))

    for step in filled_steps:
        if value_field in (str(step.get("step_id") or ""), step.get("step_title")):
            return parse_numeric(step.get("response_text"))
    return None


def within_time_window(moment: time, start: time, end: time) -> bool:
    """Inclusive [start, end]; a range with end < start spans midnight."""
    if start <= end:
        return start <= moment <= end
    return moment >= start or moment <= end


def _missing_required_media(
    filled_steps: Sequence[Mapping[str, Any]],
    step_definitions: Sequence[Mapping[str, Any]],
) -> Optional[str]:
    if not any(step.get("media_urls") for step in filled_steps):
        return "Required media not provided"

    for definition in step_definitions:
        if not definition.get("media_required"):
            continue
        matches = [
            step for step in filled_steps
            if (definition.get("id") and str(step.get("step_id")) == str(definition.get("id")))
            or step.get("step_title") == definition.get("title")
        ]
        if not any(step.get("media_urls") for step in matches):
            return f"Step '{definition.get('title')}' requires media"
    return None


def evaluate(
    rules: Optional[Mapping[str, Any]],
    filled_steps: Sequence[Mapping[str, Any]],
    meter_reading: Optional[float],
    submitted_at: datetime,
    *,
    enabled: bool = True,
    tz: Optional[tzinfo] = None,
    step_definitions: Sequence[Mapping[str, Any]] = (),
) -> RuleEvaluation:
    """
    Evaluate auto-approval rules for one submission.

    Args:
        rules: Stored rule parameters (workflow.auto_approval_rules)
        filled_steps: Filled step dicts (step_id, step_title, response_text, media_urls)
        meter_reading: Optional numeric reading submitted with the inspection
        submitted_at: Submission instant; compared in `tz` at minute resolution
        enabled: The workflow's auto-approval gate
        tz: Inspection-local zone for the time window (UTC if None)
        step_definitions: Workflow step definitions, for per-step media flags

    Returns:
        RuleEvaluation; deterministic for identical inputs
    """
    if not enabled:
        return RuleEvaluation(False, None, "Auto-approval disabled")

    try:
        parsed = AutoApprovalRules.from_mapping(rules)
    except ValueError as exc:
        return RuleEvaluation(False, None, f"Invalid rules: {exc}")

    if parsed.require_photo:
        media_problem = _missing_required_media(filled_steps, step_definitions)
        if media_problem:
            return RuleEvaluation(False, None, media_problem, rules=parsed)

    value = resolve_value(parsed.value_field, filled_steps, meter_reading)
    if value is None:
        return RuleEvaluation(
            False, None, f"Unable to resolve numeric value for '{parsed.value_field}'", rules=parsed
        )

    local = ensure_utc(submitted_at).astimezone(tz or timezone.utc)
    local_minute = time(local.hour, local.minute)
    if not within_time_window(local_minute, parsed.time_range_start, parsed.time_range_end):
        return RuleEvaluation(
            True, RuleVerdict.REJECT,
            f"Submitted at {local_minute:%H:%M}, outside allowed time range "
            f"{parsed.time_range_start:%H:%M}-{parsed.time_range_end:%H:%M}",
            value=value, rules=parsed,
        )

    if parsed.min_value is not None and value < parsed.min_value:
        return RuleEvaluation(
            True, RuleVerdict.REJECT, f"Value {value:g} below minimum {parsed.min_value:g}",
            value=value, rules=parsed,
        )
    if parsed.max_value is not None and value > parsed.max_value:
        return RuleEvaluation(
            True, RuleVerdict.REJECT, f"Value {value:g} above maximum {parsed.max_value:g}",
            value=value, rules=parsed,
        )

    return RuleEvaluation(True, RuleVerdict.ACCEPT, "All criteria met", value=value, rules=parsed)
