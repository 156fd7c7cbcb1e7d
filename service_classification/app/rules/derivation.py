"""
Metric derivation: turns raw high/medium/low counts into percentages.

Percentages are computed in one place so the zero-total behaviour is a
single, explicit policy:

- ``ZeroTotalPolicy.NAN``: with a zero total every percentage is NaN. This
  includes a positive count over a zero total, which is not infinite. NaN
  compares false against anything, so every percentage condition fails and
  the entity falls through to the default tier.
- ``ZeroTotalPolicy.ZERO``: with a zero total every percentage is 0.0.

The two policies agree for ``>=``/``>`` thresholds against positive values
and diverge for ``<=``/``<``/``=`` comparisons against zero.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Union

from shared.errors import ValidationError


Number = Union[int, float]


class ZeroTotalPolicy(str, Enum):
    """Percentage value used when the total is zero."""
    NAN = "nan"
    ZERO = "zero"


@dataclass(frozen=True)
class SkillMetrics:
    """Metrics a rule condition can refer to. Never persisted."""
    high_count: Number
    medium_count: Number
    low_count: Number
    total_subskills: Number
    high_percent: float
    medium_percent: float
    low_percent: float


def percentage(count: Number, total: Number, policy: ZeroTotalPolicy = ZeroTotalPolicy.NAN) -> float:
    """Return ``count / total * 100`` under the given zero-total policy.

    Multiplies before dividing so that whole-number percentages are exact.
    """
    if total == 0:
        return math.nan if policy == ZeroTotalPolicy.NAN else 0.0
    return count * 100 / total


def derive_metrics(
    high_count: Number,
    medium_count: Number,
    low_count: Number,
    total: Number,
    policy: ZeroTotalPolicy = ZeroTotalPolicy.NAN,
) -> SkillMetrics:
    """
    Derive percentage metrics from raw counts.

    Args:
        high_count: Count in the "high" slot (high ratings or expert skills)
        medium_count: Count in the "medium" slot
        low_count: Count in the "low" slot
        total: Denominator for the percentages
        policy: Behaviour when ``total`` is zero

    Returns:
        SkillMetrics with counts and percentages

    Raises:
        ValidationError: If any input is negative
    """
    counts = {
        "high_count": high_count,
        "medium_count": medium_count,
        "low_count": low_count,
        "total": total,
    }
    negative = {name: value for name, value in counts.items() if value < 0}
    if negative:
        raise ValidationError("Counts must be non-negative", details=negative)

    policy = ZeroTotalPolicy(policy)
    return SkillMetrics(
        high_count=high_count,
        medium_count=medium_count,
        low_count=low_count,
        total_subskills=total,
        high_percent=percentage(high_count, total, policy),
        medium_percent=percentage(medium_count, total, policy),
        low_percent=percentage(low_count, total, policy),
    )
