"""
Default classification rules, seeded when the rule store is empty.
"""

import uuid
from typing import List, Optional

from .models import ClassificationRule, RuleCondition, Tier


def _condition(metric, operator, value, combine_with=None, sub_conditions=None, note=None) -> RuleCondition:
    return RuleCondition(
        metric=metric,
        operator=operator,
        value=value,
        combine_with=combine_with,
        sub_conditions=sub_conditions or [],
        note=note,
    )


def default_conditions(level: Tier) -> List[RuleCondition]:
    """Seed conditions for one level."""
    if level == Tier.EXPERT:
        return [
            _condition("high%", ">=", 30, "OR"),
            _condition("high%", ">=", 20, "AND", [_condition("medium%", "<=", 40)]),
        ]
    if level == Tier.INTERMEDIATE:
        return [
            _condition("high%", ">=", 10, "AND", [_condition("medium%", ">=", 30)]),
            _condition("medium%", ">=", 20, "AND", [_condition("low%", ">=", 40)]),
            _condition("medium%", ">=", 50, "OR"),
            _condition("medium%", ">=", 30, "AND", [_condition("low%", ">=", 30)]),
            _condition("medium%", ">=", 40, "AND", [_condition("high%", "<", 20)]),
            _condition("high% + medium%", ">=", 50, "OR"),
        ]
    return [
        _condition("lowCount", ">=", 1, "AND", note="Applied when NOT Expert and NOT Intermediate"),
    ]


DISPLAY_ORDER = {Tier.EXPERT: 1, Tier.INTERMEDIATE: 2, Tier.BEGINNER: 3}


def default_rules(actor_id: Optional[str] = None) -> List[ClassificationRule]:
    """Build the three seed rules with fresh IDs."""
    return [
        ClassificationRule(
            rule_id=str(uuid.uuid4()),
            level=level,
            conditions=default_conditions(level),
            display_order=DISPLAY_ORDER[level],
            is_active=True,
            created_by=actor_id,
            updated_by=actor_id,
        )
        for level in (Tier.EXPERT, Tier.INTERMEDIATE, Tier.BEGINNER)
    ]
