"""
Grouping of a level's ordered condition list into an OR of AND-groups.

``combineWith`` on a condition describes its relation to the next
condition. A group closes after a condition whose ``combineWith`` is OR or
unset, and after the last condition whatever it carries. Sub-conditions are
always AND-ed with their parent; their own ``combineWith`` is ignored.

    [A(AND), B(OR), C(AND)]  ->  (A and B) or C
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .conditions import Comparison
from .derivation import SkillMetrics
from .models import CombineWith, RuleCondition


def closes_group(condition: RuleCondition) -> bool:
    """True when ``condition`` ends its AND-group (OR or no link)."""
    return condition.combine_with == CombineWith.OR.value or not condition.combine_with


def group_conditions(conditions: Sequence[RuleCondition]) -> List[List[RuleCondition]]:
    """Partition ``conditions`` into AND-groups, preserving order."""
    groups: List[List[RuleCondition]] = []
    current: List[RuleCondition] = []
    last_index = len(conditions) - 1

    for index, condition in enumerate(conditions):
        current.append(condition)
        if index == last_index or closes_group(condition):
            groups.append(current)
            current = []

    return groups


@dataclass(frozen=True)
class GroupedCondition:
    """A condition with its conjunctive sub-conditions."""
    comparison: Comparison
    sub_comparisons: Tuple[Comparison, ...] = ()

    @classmethod
    def from_condition(cls, condition: RuleCondition) -> "GroupedCondition":
        return cls(
            comparison=Comparison.from_condition(condition),
            sub_comparisons=tuple(Comparison.from_condition(sub) for sub in condition.sub_conditions),
        )

    def evaluate(self, metrics: SkillMetrics) -> bool:
        return self.comparison.evaluate(metrics) and all(
            sub.evaluate(metrics) for sub in self.sub_comparisons
        )

    def __str__(self) -> str:
        if not self.sub_comparisons:
            return str(self.comparison)
        subs = " AND ".join(str(sub) for sub in self.sub_comparisons)
        return f"{self.comparison} AND ({subs})"


@dataclass(frozen=True)
class AndGroup:
    conditions: Tuple[GroupedCondition, ...]

    def evaluate(self, metrics: SkillMetrics) -> bool:
        return all(condition.evaluate(metrics) for condition in self.conditions)

    def __str__(self) -> str:
        return "[" + " AND ".join(str(condition) for condition in self.conditions) + "]"


@dataclass(frozen=True)
class RuleExpression:
    """Compiled level rule: true when any group is fully true."""
    groups: Tuple[AndGroup, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.groups

    def evaluate(self, metrics: SkillMetrics) -> bool:
        return any(group.evaluate(metrics) for group in self.groups)

    def evaluate_groups(self, metrics: SkillMetrics) -> List[bool]:
        """Per-group results, for diagnostics."""
        return [group.evaluate(metrics) for group in self.groups]

    def __str__(self) -> str:
        return " OR ".join(str(group) for group in self.groups) or "<never>"


def compile_conditions(conditions: Sequence[RuleCondition]) -> RuleExpression:
    """Build the OR-of-AND-groups tree for a level's conditions."""
    return RuleExpression(tuple(
        AndGroup(tuple(GroupedCondition.from_condition(condition) for condition in group))
        for group in group_conditions(conditions)
    ))


def evaluate_level(conditions: Sequence[RuleCondition], metrics: SkillMetrics) -> bool:
    """Evaluate a level's conditions; an empty list never matches."""
    return compile_conditions(conditions).evaluate(metrics)
