"""Pass/fail rules evaluated against the final metrics snapshot.

Keys follow k6: ``http_req_duration`` or ``read_latency_ms{phase:burst}``.
Expressions are ``<aggregation><operator><number>``, e.g. ``p(95)<300``,
``rate>0.95`` or ``count<50``.
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from loadsim.core.metrics import MetricsSnapshot, render_series_key
from loadsim.core.models import TagSet, normalize_tags
from loadsim.exceptions import ThresholdSyntaxError, ValidationError

_KEY_RE = re.compile(r"^\s*(?P<name>[A-Za-z_][\w.]*)\s*(?:\{(?P<tags>[^{}]*)\})?\s*$")
_EXPR_RE = re.compile(
    r"^\s*(?P<agg>p\(\s*(?P<param>\d+(?:\.\d+)?)\s*\)|avg|min|max|med|rate|count)"
    r"\s*(?P<op><=|>=|==|!=|<|>)\s*"
    r"(?P<value>-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s*$"
)

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

PASS = "pass"
FAIL = "fail"
NO_DATA = "no_data"
INVALID = "invalid"


@dataclass(frozen=True)
class ThresholdRule:
    metric: str
    tag_filter: TagSet
    aggregation: str
    operator: str
    value: float
    param: float | None = None

    @property
    def key(self) -> str:
        return render_series_key(self.metric, self.tag_filter)

    @property
    def expression(self) -> str:
        agg = f"p({_fmt(self.param)})" if self.aggregation == "p" else self.aggregation
        return f"{agg}{self.operator}{_fmt(self.value)}"

    def holds(self, actual: float) -> bool:
        return _OPERATORS[self.operator](actual, self.value)


def _fmt(number: float | None) -> str:
    if number is None:
        return ""
    return str(int(number)) if float(number).is_integer() else str(number)


def parse_metric_key(key: str) -> tuple[str, TagSet]:
    match = _KEY_RE.match(key)
    if not match:
        raise ThresholdSyntaxError("INVALID_THRESHOLD_KEY", "threshold key must be name or name{tag:value}", {
            "key": key,
        })

    tags: dict[str, str] = {}
    raw_tags = match.group("tags")
    if raw_tags is not None:
        for part in raw_tags.split(","):
            tag_key, sep, tag_value = part.partition(":")
            if not sep or not tag_key.strip() or not tag_value.strip():
                raise ThresholdSyntaxError("INVALID_THRESHOLD_KEY", "tag filters must be tag:value pairs", {
                    "key": key,
                    "part": part,
                })
            tags[tag_key.strip()] = tag_value.strip()
    return match.group("name"), normalize_tags(tags)


def parse_rule(key: str, expression: str) -> ThresholdRule:
    metric, tag_filter = parse_metric_key(key)
    match = _EXPR_RE.match(expression)
    if not match:
        raise ThresholdSyntaxError("INVALID_THRESHOLD_EXPRESSION", "cannot parse threshold expression", {
            "key": key,
            "expression": expression,
        })

    param: float | None = None
    aggregation = match.group("agg")
    if aggregation.startswith("p("):
        aggregation = "p"
        param = float(match.group("param"))
        if param > 100:
            raise ThresholdSyntaxError("INVALID_THRESHOLD_EXPRESSION", "percentile must be within 0..100", {
                "key": key,
                "expression": expression,
            })

    return ThresholdRule(
        metric=metric,
        tag_filter=tag_filter,
        aggregation=aggregation,
        operator=match.group("op"),
        value=float(match.group("value")),
        param=param,
    )


def parse_thresholds(thresholds: Mapping[str, Iterable[str] | str]) -> list[ThresholdRule]:
    """Parse a ``{key: [expression, ...]}`` mapping, preserving order."""
    rules: list[ThresholdRule] = []
    for key, expressions in thresholds.items():
        if isinstance(expressions, str):
            expressions = [expressions]
        for expression in expressions:
            if not isinstance(expression, str):
                raise ThresholdSyntaxError("INVALID_THRESHOLD_EXPRESSION", "threshold expressions must be strings", {
                    "key": key,
                    "expression": expression,
                })
            rules.append(parse_rule(key, expression))
    return rules


@dataclass(frozen=True)
class RuleResult:
    rule: ThresholdRule
    status: str
    actual: float | None
    reason: str | None = None

    def to_report(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "metric": self.rule.key,
            "expression": self.rule.expression,
            "status": self.status,
            "actual": self.actual,
        }
        if self.reason:
            out["reason"] = self.reason
        return out


@dataclass(frozen=True)
class ThresholdReport:
    results: tuple[RuleResult, ...]

    @property
    def passed(self) -> bool:
        # no_data is reported but never fails the run.
        return all(r.status in (PASS, NO_DATA) for r in self.results)

    @property
    def violations(self) -> list[RuleResult]:
        return [r for r in self.results if r.status in (FAIL, INVALID)]

    @property
    def no_data(self) -> list[RuleResult]:
        return [r for r in self.results if r.status == NO_DATA]

    def to_report(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "rules": [r.to_report() for r in self.results],
            "violations": [r.to_report() for r in self.violations],
            "no_data": [r.rule.key for r in self.no_data],
        }


def evaluate_rule(snapshot: MetricsSnapshot, rule: ThresholdRule) -> RuleResult:
    agg = snapshot.select(rule.metric, rule.tag_filter)
    if agg is None:
        return RuleResult(rule=rule, status=NO_DATA, actual=None)

    try:
        actual = agg.stat(rule.aggregation, rule.param)
    except ValidationError as exc:
        return RuleResult(rule=rule, status=INVALID, actual=None, reason=exc.message)

    if actual is None:
        return RuleResult(rule=rule, status=NO_DATA, actual=None)
    return RuleResult(rule=rule, status=PASS if rule.holds(actual) else FAIL, actual=actual)


def evaluate(snapshot: MetricsSnapshot, rules: Iterable[ThresholdRule]) -> ThresholdReport:
    """Evaluate every rule; all violations are reported, not just the first."""
    return ThresholdReport(results=tuple(evaluate_rule(snapshot, rule) for rule in rules))
