"""
Rule data models for the Classification Service.
"""

from typing import Dict, Any, Optional, List, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Tier(str, Enum):
    """Classification tiers, highest first."""
    EXPERT = "expert"
    INTERMEDIATE = "intermediate"
    BEGINNER = "beginner"


# Order in which level rules are tried
TIER_PRIORITY = (Tier.EXPERT, Tier.INTERMEDIATE, Tier.BEGINNER)

DEFAULT_TIER = Tier.BEGINNER


class ComparisonOperator(str, Enum):
    """Comparison operators understood by the evaluator."""
    GREATER_OR_EQUAL = ">="
    GREATER_THAN = ">"
    LESS_OR_EQUAL = "<="
    LESS_THAN = "<"
    EQUALS = "="


class CombineWith(str, Enum):
    """Relation of a condition to the condition that follows it."""
    AND = "AND"
    OR = "OR"


class Rating(str, Enum):
    """Subskill rating values."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class RuleCondition:
    """One comparison in a level rule.

    Fields hold the raw strings as stored so that unknown metric names and
    operators survive a load/save cycle; interpretation happens when the rule
    is compiled.
    """
    metric: str
    operator: str
    value: Optional[float] = None
    metric2: Optional[str] = None
    combine_with: Optional[str] = None
    sub_conditions: List["RuleCondition"] = field(default_factory=list)
    note: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleCondition":
        """Build a condition from its stored JSON shape."""
        return cls(
            metric=data.get("metric", ""),
            operator=data.get("operator", ""),
            value=data.get("value"),
            metric2=data.get("metric2") or None,
            combine_with=data.get("combineWith") or None,
            sub_conditions=[cls.from_dict(sub) for sub in data.get("subConditions") or []],
            note=data.get("note"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the stored JSON shape, omitting unset keys."""
        data: Dict[str, Any] = {"metric": self.metric, "operator": self.operator}
        if self.value is not None:
            data["value"] = self.value
        if self.metric2:
            data["metric2"] = self.metric2
        if self.combine_with:
            data["combineWith"] = self.combine_with
        if self.sub_conditions:
            data["subConditions"] = [sub.to_dict() for sub in self.sub_conditions]
        if self.note:
            data["note"] = self.note
        return data


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ClassificationRule:
    """The ordered condition list that defines reaching one tier."""
    rule_id: str
    level: Tier
    conditions: List[RuleCondition] = field(default_factory=list)
    display_order: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None


@dataclass(frozen=True)
class ClassificationInput:
    """Named counts fed to the classifier.

    At skill level the slots hold subskill ratings (high/medium/low); at
    category level they hold skill tiers (expert/intermediate/beginner).
    """
    high_count: int
    medium_count: int
    low_count: int
    total: int

    @classmethod
    def from_ratings(cls, ratings: Iterable[str], total: Optional[int] = None) -> "ClassificationInput":
        """Count subskill ratings; ``total`` defaults to the number of ratings."""
        ratings = list(ratings)
        return cls(
            high_count=sum(1 for r in ratings if r == Rating.HIGH),
            medium_count=sum(1 for r in ratings if r == Rating.MEDIUM),
            low_count=sum(1 for r in ratings if r == Rating.LOW),
            total=len(ratings) if total is None else total,
        )

    @classmethod
    def from_tiers(cls, tiers: Iterable[str]) -> "ClassificationInput":
        """Count skill tiers, mapping expert/intermediate/beginner to high/medium/low."""
        tiers = list(tiers)
        return cls(
            high_count=sum(1 for t in tiers if t == Tier.EXPERT),
            medium_count=sum(1 for t in tiers if t == Tier.INTERMEDIATE),
            low_count=sum(1 for t in tiers if t == Tier.BEGINNER),
            total=len(tiers),
        )


# ============================================================================
# API models
# ============================================================================

class RuleConditionModel(BaseModel):
    """Transport shape of a rule condition (camelCase keys as stored)."""
    model_config = ConfigDict(populate_by_name=True)

    metric: str = Field(..., description="Metric name, e.g. 'high%' or 'high% + medium%'")
    operator: str = Field(..., description="One of >=, >, <=, <, =")
    value: Optional[float] = Field(None, description="Threshold compared against")
    metric2: Optional[str] = Field(None, description="Metric compared against instead of value")
    combine_with: Optional[CombineWith] = Field(None, alias="combineWith")
    sub_conditions: List["RuleConditionModel"] = Field(default_factory=list, alias="subConditions")
    note: Optional[str] = None

    def to_condition(self) -> RuleCondition:
        return RuleCondition(
            metric=self.metric,
            operator=self.operator,
            value=self.value,
            metric2=self.metric2,
            combine_with=self.combine_with.value if self.combine_with else None,
            sub_conditions=[sub.to_condition() for sub in self.sub_conditions],
            note=self.note,
        )


RuleConditionModel.model_rebuild()


class RuleCreateRequest(BaseModel):
    """Request model for creating a rule."""
    level: Tier
    conditions: List[RuleConditionModel] = Field(default_factory=list)
    display_order: int = Field(0, ge=0)
    is_active: bool = True


class RuleUpdateRequest(BaseModel):
    """Request model for updating a rule; conditions replace the whole list."""
    level: Optional[Tier] = None
    conditions: Optional[List[RuleConditionModel]] = None
    display_order: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class RuleResponse(BaseModel):
    """Response model for rule operations."""
    id: str
    level: Tier
    conditions: List[Dict[str, Any]]
    display_order: int
    is_active: bool
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str]
    updated_by: Optional[str]

    @classmethod
    def from_rule(cls, rule: ClassificationRule) -> "RuleResponse":
        return cls(
            id=rule.rule_id,
            level=rule.level,
            conditions=[c.to_dict() for c in rule.conditions],
            display_order=rule.display_order,
            is_active=rule.is_active,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
            created_by=rule.created_by,
            updated_by=rule.updated_by,
        )


class RuleListResponse(BaseModel):
    """Response model for rule list."""
    rules: List[RuleResponse]
    total: int
    version: str


class ReorderItem(BaseModel):
    id: str
    display_order: int = Field(..., ge=0)


class ReorderRequest(BaseModel):
    rules: List[ReorderItem]


class ValidateRequest(BaseModel):
    conditions: List[RuleConditionModel]


class ValidationIssueResponse(BaseModel):
    path: str
    message: str


class ValidateResponse(BaseModel):
    valid: bool
    issues: List[ValidationIssueResponse]


class ClassifyRequest(BaseModel):
    """Raw counts for one classification."""
    high_count: int = Field(..., ge=0)
    medium_count: int = Field(..., ge=0)
    low_count: int = Field(..., ge=0)
    total: int = Field(..., ge=0)


class MetricsResponse(BaseModel):
    """Derived metrics; percentages are null when undefined."""
    high_count: int
    medium_count: int
    low_count: int
    total_subskills: int
    high_percent: Optional[float]
    medium_percent: Optional[float]
    low_percent: Optional[float]


class ClassifyResponse(BaseModel):
    tier: Tier
    metrics: MetricsResponse
    rule_set_version: str
    cached: bool = False


class SkillClassifyRequest(BaseModel):
    """Ratings a user holds within one skill."""
    ratings: List[Rating]
    total_subskills: Optional[int] = Field(None, ge=0, description="Defaults to the number of ratings")


class CategoryClassifyRequest(BaseModel):
    """Tiers of the user's classified skills within one category."""
    skill_tiers: List[Tier]


class TierResponse(BaseModel):
    tier: Tier
    input: Dict[str, int]
    rule_set_version: str
