"""
Rules engine package.

Defines the rule model and the tier classification engine used by the
Classification Service. Rules combine threshold conditions with AND/OR
grouping and conjunctive sub-conditions; levels are tried expert first and
the first match wins, with beginner as the default.

Modules of interest:
- models: Rule, condition, tier and API models.
- derivation: Counts to percentage metrics, with the zero-total policy.
- conditions: Metric parsing and single comparison evaluation.
- grouping: Condition list to OR-of-AND-groups expression.
- engine: Level priority and the loaded rule set.
- defaults: Seed rules.
- validation: Save-time checks for rule content.
"""

from .models import Tier, RuleCondition, ClassificationRule, ClassificationInput
from .derivation import SkillMetrics, ZeroTotalPolicy, derive_metrics
from .conditions import evaluate_condition
from .grouping import compile_conditions, evaluate_level, group_conditions
from .engine import ClassificationEngine, classify

__all__ = [
    "Tier",
    "RuleCondition",
    "ClassificationRule",
    "ClassificationInput",
    "SkillMetrics",
    "ZeroTotalPolicy",
    "derive_metrics",
    "evaluate_condition",
    "compile_conditions",
    "evaluate_level",
    "group_conditions",
    "ClassificationEngine",
    "classify",
]
