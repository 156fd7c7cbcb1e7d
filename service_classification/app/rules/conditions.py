"""
Condition evaluation: one atomic ``metric OP value`` comparison.

Metric names are parsed once into operands made of known ``MetricName``
terms or explicit unknown terms. Unknown terms resolve to 0 and unknown
operators evaluate to False; neither raises.
"""

import math
import operator as op
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple, Union

from .derivation import SkillMetrics
from .models import RuleCondition


class MetricName(str, Enum):
    """Metric names accepted in rule conditions."""
    HIGH_PERCENT = "high%"
    MEDIUM_PERCENT = "medium%"
    LOW_PERCENT = "low%"
    HIGH_COUNT = "highCount"
    MEDIUM_COUNT = "mediumCount"
    LOW_COUNT = "lowCount"
    # Raw field spellings, also accepted by older stored rules
    HIGH_PERCENT_FIELD = "highPercent"
    MEDIUM_PERCENT_FIELD = "mediumPercent"
    LOW_PERCENT_FIELD = "lowPercent"
    TOTAL = "totalSubskills"


METRIC_FIELDS: Dict[MetricName, str] = {
    MetricName.HIGH_PERCENT: "high_percent",
    MetricName.MEDIUM_PERCENT: "medium_percent",
    MetricName.LOW_PERCENT: "low_percent",
    MetricName.HIGH_COUNT: "high_count",
    MetricName.MEDIUM_COUNT: "medium_count",
    MetricName.LOW_COUNT: "low_count",
    MetricName.HIGH_PERCENT_FIELD: "high_percent",
    MetricName.MEDIUM_PERCENT_FIELD: "medium_percent",
    MetricName.LOW_PERCENT_FIELD: "low_percent",
    MetricName.TOTAL: "total_subskills",
}

COMPARATORS: Dict[str, Callable[[float, float], bool]] = {
    ">=": op.ge,
    ">": op.gt,
    "<=": op.le,
    "<": op.lt,
    "=": op.eq,
}

COMPOSITE_SEPARATOR = "+"


@dataclass(frozen=True)
class MetricTerm:
    """A single metric reference; ``name`` is None for unknown text."""
    text: str
    name: Optional[MetricName] = None

    @property
    def known(self) -> bool:
        return self.name is not None

    def resolve(self, metrics: SkillMetrics) -> float:
        if self.name is None:
            return 0
        return getattr(metrics, METRIC_FIELDS[self.name])


@dataclass(frozen=True)
class MetricOperand:
    """Sum of one or more metric terms."""
    terms: Tuple[MetricTerm, ...]

    @property
    def unknown_terms(self) -> Tuple[MetricTerm, ...]:
        return tuple(term for term in self.terms if not term.known)

    def resolve(self, metrics: SkillMetrics) -> float:
        return sum(term.resolve(metrics) for term in self.terms)

    def __str__(self) -> str:
        return " + ".join(term.text for term in self.terms)


@dataclass(frozen=True)
class ConstantOperand:
    value: float

    def resolve(self, metrics: SkillMetrics) -> float:
        return self.value

    def __str__(self) -> str:
        return f"{self.value:g}"


def constant_value(value) -> float:
    """
    Threshold of a condition as a float.

    Absent values read as 0 and numeric strings are parsed. Anything else
    becomes NaN, which makes every comparison against it false.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def parse_term(text: str) -> MetricTerm:
    """Map a metric name to a known term, or an unknown one."""
    text = text.strip()
    try:
        return MetricTerm(text, MetricName(text))
    except ValueError:
        return MetricTerm(text)


def parse_operand(text: str, allow_composite: bool = True) -> MetricOperand:
    """
    Parse a metric expression such as ``"high%"`` or ``"high% + medium%"``.

    With ``allow_composite`` False the whole text is a single name, so a
    ``+`` makes it unknown.
    """
    text = text or ""
    if allow_composite and COMPOSITE_SEPARATOR in text:
        return MetricOperand(tuple(parse_term(part) for part in text.split(COMPOSITE_SEPARATOR)))
    return MetricOperand((parse_term(text),))


@dataclass(frozen=True)
class Comparison:
    """A compiled condition without its sub-conditions."""
    left: MetricOperand
    operator: str
    right: Union[MetricOperand, ConstantOperand]

    @classmethod
    def from_condition(cls, condition: RuleCondition) -> "Comparison":
        if condition.metric2:
            right = parse_operand(condition.metric2, allow_composite=False)
        else:
            right = ConstantOperand(constant_value(condition.value))
        return cls(
            left=parse_operand(condition.metric),
            operator=condition.operator,
            right=right,
        )

    @property
    def known_operator(self) -> bool:
        return self.operator in COMPARATORS

    def evaluate(self, metrics: SkillMetrics) -> bool:
        comparator = COMPARATORS.get(self.operator)
        if comparator is None:
            return False
        return bool(comparator(self.left.resolve(metrics), self.right.resolve(metrics)))

    def __str__(self) -> str:
        return f"{self.left} {self.operator} {self.right}"


def evaluate_condition(condition: RuleCondition, metrics: SkillMetrics) -> bool:
    """Evaluate one condition's own comparison; sub-conditions are not consulted."""
    return Comparison.from_condition(condition).evaluate(metrics)
