"""
Save-time validation of rule conditions.

Evaluation stays lenient (unknown metrics read as 0, unknown operators
never match); this module reports those cases so a misconfigured rule can
be caught when it is written rather than silently never matching.
"""

import math
from dataclasses import dataclass
from typing import List, Sequence

from shared.errors import ValidationError
from shared.logging import get_logger
from .conditions import Comparison, constant_value, parse_operand
from .models import ClassificationRule, CombineWith, RuleCondition, Tier


logger = get_logger("classification.rule_validation")

COMBINE_VALUES = {c.value for c in CombineWith}


@dataclass(frozen=True)
class ValidationIssue:
    path: str
    message: str


def _validate_condition(condition: RuleCondition, path: str, issues: List[ValidationIssue]):
    for term in parse_operand(condition.metric).unknown_terms:
        issues.append(ValidationIssue(f"{path}.metric", f"Unknown metric '{term.text}'"))

    if not Comparison.from_condition(condition).known_operator:
        issues.append(ValidationIssue(f"{path}.operator", f"Unknown operator '{condition.operator}'"))

    if condition.metric2:
        for term in parse_operand(condition.metric2, allow_composite=False).unknown_terms:
            issues.append(ValidationIssue(f"{path}.metric2", f"Unknown metric '{term.text}'"))
    elif condition.value is None:
        issues.append(ValidationIssue(f"{path}.value", "Missing value; it will compare against 0"))
    elif math.isnan(constant_value(condition.value)):
        issues.append(ValidationIssue(f"{path}.value", f"Value must be numeric, got {condition.value!r}"))

    if condition.combine_with and condition.combine_with not in COMBINE_VALUES:
        issues.append(ValidationIssue(
            f"{path}.combineWith", f"combineWith must be AND or OR, got '{condition.combine_with}'"
        ))


def validate_conditions(conditions: Sequence[RuleCondition], path: str = "conditions") -> List[ValidationIssue]:
    """Return every issue found in a condition list and its sub-conditions."""
    issues: List[ValidationIssue] = []
    for index, condition in enumerate(conditions):
        condition_path = f"{path}[{index}]"
        _validate_condition(condition, condition_path, issues)
        for sub_index, sub in enumerate(condition.sub_conditions):
            sub_path = f"{condition_path}.subConditions[{sub_index}]"
            _validate_condition(sub, sub_path, issues)
            if sub.sub_conditions:
                issues.append(ValidationIssue(sub_path, "Nested sub-conditions are ignored"))
    return issues


def validate_rule(rule: ClassificationRule) -> List[ValidationIssue]:
    issues = []
    try:
        Tier(rule.level)
    except ValueError:
        issues.append(ValidationIssue("level", f"Unknown level '{rule.level}'"))
    if not rule.conditions and rule.is_active:
        issues.append(ValidationIssue("conditions", "Rule has no conditions and never matches"))
    issues.extend(validate_conditions(rule.conditions))
    return issues


def check_rule(rule: ClassificationRule, strict: bool = False) -> List[ValidationIssue]:
    """
    Validate a rule before it is saved.

    Issues are logged; in strict mode any issue rejects the rule.

    Raises:
        ValidationError: In strict mode, when the rule has issues
    """
    issues = validate_rule(rule)
    if not issues:
        return issues

    details = {"issues": [{"path": i.path, "message": i.message} for i in issues]}
    if strict:
        raise ValidationError("Rule failed validation", details=details)

    logger.warning("Rule saved with validation issues", rule_id=rule.rule_id, **details)
    return issues
