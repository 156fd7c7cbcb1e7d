"""
Tier classification engine for the Classification Service.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Sequence

from shared.logging import get_logger
from .derivation import SkillMetrics, ZeroTotalPolicy, derive_metrics
from .grouping import RuleExpression, compile_conditions
from .models import (
    ClassificationRule, ClassificationInput, Tier, TIER_PRIORITY, DEFAULT_TIER
)


logger = get_logger("classification.rule_engine")


@dataclass(frozen=True)
class CompiledRuleSet:
    """Immutable view of one loaded rule set."""
    rules: Dict[str, ClassificationRule] = field(default_factory=dict)
    by_level: Dict[Tier, ClassificationRule] = field(default_factory=dict)
    expressions: Dict[Tier, RuleExpression] = field(default_factory=dict)
    version: str = "empty"

    @classmethod
    def build(cls, rules: Sequence[ClassificationRule]) -> "CompiledRuleSet":
        """Compile active rules; the first active rule of each level wins."""
        by_level: Dict[Tier, ClassificationRule] = {}
        for rule in rules:
            if rule.is_active:
                by_level.setdefault(Tier(rule.level), rule)

        return cls(
            rules={rule.rule_id: rule for rule in rules},
            by_level=by_level,
            expressions={
                level: compile_conditions(rule.conditions)
                for level, rule in by_level.items()
            },
            version=rule_set_version(by_level.values()),
        )


def rule_set_version(rules) -> str:
    """Digest of the rules that take part in classification."""
    payload = sorted(
        (
            {
                "id": rule.rule_id,
                "level": Tier(rule.level).value,
                "conditions": [c.to_dict() for c in rule.conditions],
            }
            for rule in rules
        ),
        key=lambda item: item["level"],
    )
    if not payload:
        return "empty"
    encoded = json.dumps(payload, sort_keys=True, default=str).encode()
    return hashlib.sha256(encoded).hexdigest()[:16]


def classify_metrics(metrics: SkillMetrics, rule_set: CompiledRuleSet) -> Tier:
    """Try expert, intermediate, beginner in order; default beginner."""
    for level in TIER_PRIORITY:
        expression = rule_set.expressions.get(level)
        if expression is None:
            continue
        if expression.evaluate(metrics):
            logger.debug("Level matched", level=level.value, expression=str(expression))
            return level

    logger.debug("No level matched, using default", level=DEFAULT_TIER.value)
    return DEFAULT_TIER


def classify(
    high_count: float,
    medium_count: float,
    low_count: float,
    total: float,
    rules: Sequence[ClassificationRule],
    policy: ZeroTotalPolicy = ZeroTotalPolicy.NAN,
) -> Tier:
    """Classify raw counts against ``rules`` without a long-lived engine."""
    metrics = derive_metrics(high_count, medium_count, low_count, total, policy)
    return classify_metrics(metrics, CompiledRuleSet.build(rules))


class ClassificationEngine:
    """Holds a compiled rule set and classifies counts against it.

    Rules are compiled when loaded. ``load_rules`` swaps the whole compiled
    set in one assignment, so concurrent ``classify`` calls see either the
    old or the new set.
    """

    def __init__(
        self,
        rules: Optional[Sequence[ClassificationRule]] = None,
        zero_total_policy: ZeroTotalPolicy = ZeroTotalPolicy.NAN,
    ):
        self.logger = logger
        self.zero_total_policy = ZeroTotalPolicy(zero_total_policy)
        self._rule_set = CompiledRuleSet()
        if rules:
            self.load_rules(rules)

    @property
    def version(self) -> str:
        """Version of the loaded rule set, for memoization keys."""
        return self._rule_set.version

    @property
    def rules(self) -> List[ClassificationRule]:
        return list(self._rule_set.rules.values())

    def load_rules(self, rules: Sequence[ClassificationRule]) -> str:
        """Replace the loaded rule set and return its version."""
        rule_set = CompiledRuleSet.build(rules)
        self._rule_set = rule_set

        for level in TIER_PRIORITY:
            if level not in rule_set.by_level:
                self.logger.warning("No active rule for level", level=level.value)

        self.logger.info(
            "Rules loaded",
            total_rules=len(rule_set.rules),
            active_levels=[level.value for level in rule_set.by_level],
            version=rule_set.version,
        )
        return rule_set.version

    def get_rule(self, rule_id: str) -> Optional[ClassificationRule]:
        """Get a rule by ID."""
        return self._rule_set.rules.get(rule_id)

    def get_rule_for_level(self, level: Tier) -> Optional[ClassificationRule]:
        """Get the active rule used for a level."""
        return self._rule_set.by_level.get(Tier(level))

    def derive(self, high_count: float, medium_count: float, low_count: float, total: float) -> SkillMetrics:
        return derive_metrics(high_count, medium_count, low_count, total, self.zero_total_policy)

    def classify(self, high_count: float, medium_count: float, low_count: float, total: float) -> Tier:
        """Classify raw counts against the loaded rules."""
        metrics = self.derive(high_count, medium_count, low_count, total)
        tier = classify_metrics(metrics, self._rule_set)

        self.logger.debug(
            "Classification result",
            high_count=high_count,
            medium_count=medium_count,
            low_count=low_count,
            total=total,
            tier=tier.value,
            version=self._rule_set.version,
        )
        return tier

    def classify_input(self, counts: ClassificationInput) -> Tier:
        return self.classify(counts.high_count, counts.medium_count, counts.low_count, counts.total)

    def get_engine_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        rule_set = self._rule_set
        return {
            "total_rules": len(rule_set.rules),
            "active_rules": len([r for r in rule_set.rules.values() if r.is_active]),
            "levels": {
                level.value: {
                    "rule_id": rule.rule_id,
                    "conditions": len(rule.conditions),
                    "expression": str(rule_set.expressions[level]),
                }
                for level, rule in rule_set.by_level.items()
            },
            "version": rule_set.version,
            "zero_total_policy": self.zero_total_policy.value,
        }

    def clear_all_rules(self):
        """Clear all rules from the engine."""
        self._rule_set = CompiledRuleSet()
        self.logger.info("All rules cleared")
