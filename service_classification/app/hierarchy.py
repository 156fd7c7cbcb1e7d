"""
Two-level classification: skills from subskill ratings, categories from
skill tiers, and the per-category dashboard grouping built on both.

Callers fetch all rows once; everything here iterates in memory.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from shared.logging import get_logger
from .rules.engine import ClassificationEngine
from .rules.models import ClassificationInput, Rating, Tier


logger = get_logger("classification.hierarchy")

APPROVED = "approved"


class SkillCategory(BaseModel):
    id: str
    name: str
    description: Optional[str] = None


class Skill(BaseModel):
    id: str
    name: str
    category_id: str


class Subskill(BaseModel):
    id: str
    name: str
    skill_id: str


class EmployeeRating(BaseModel):
    user_id: str
    subskill_id: Optional[str] = None
    skill_id: Optional[str] = None
    rating: Rating
    status: str = APPROVED


class UserProfile(BaseModel):
    user_id: str
    full_name: str
    email: str


class RatedSubskill(BaseModel):
    subskill_id: str
    subskill_name: str
    rating: Rating


class UserSkillDetail(BaseModel):
    skill_id: str
    skill_name: str
    classification: Tier
    subskills: List[RatedSubskill]


class ClassifiedUser(BaseModel):
    user_id: str
    full_name: str
    email: str
    classification: Tier
    percentage: float = Field(..., description="Rated subskills over subskills of the classified skills")
    skills: List[UserSkillDetail]


class CategoryStats(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    expert_users: List[ClassifiedUser] = Field(default_factory=list)
    intermediate_users: List[ClassifiedUser] = Field(default_factory=list)
    beginner_users: List[ClassifiedUser] = Field(default_factory=list)
    skill_count: int = 0


def classify_skill(
    engine: ClassificationEngine,
    ratings: Iterable[str],
    total_subskills: Optional[int] = None,
) -> Tier:
    """
    Classify one skill for one user from their subskill ratings.

    Args:
        engine: Engine holding the active rules
        ratings: Rating of each rated subskill
        total_subskills: Denominator; defaults to the number of ratings

    Returns:
        Skill tier
    """
    return engine.classify_input(ClassificationInput.from_ratings(ratings, total_subskills))


def classify_category(engine: ClassificationEngine, skill_tiers: Iterable[str]) -> Tier:
    """Classify a category from the tiers of the user's classified skills in it."""
    return engine.classify_input(ClassificationInput.from_tiers(skill_tiers))


class _Catalog:
    """Index of catalog and rating rows for one dashboard computation."""

    def __init__(
        self,
        skills: Sequence[Skill],
        subskills: Sequence[Subskill],
        ratings: Sequence[EmployeeRating],
    ):
        self.skills_by_category: Dict[str, List[Skill]] = defaultdict(list)
        for skill in skills:
            self.skills_by_category[skill.category_id].append(skill)

        self.subskills_by_skill: Dict[str, List[Subskill]] = defaultdict(list)
        for subskill in subskills:
            self.subskills_by_skill[subskill.skill_id].append(subskill)

        # First approved rating per (user, subskill)
        self.ratings: Dict[Tuple[str, str], Rating] = {}
        self.users_by_subskill: Dict[str, List[str]] = defaultdict(list)
        for rating in ratings:
            if rating.status != APPROVED or not rating.subskill_id:
                continue
            key = (rating.user_id, rating.subskill_id)
            if key in self.ratings:
                continue
            self.ratings[key] = rating.rating
            self.users_by_subskill[rating.subskill_id].append(rating.user_id)

    def users_in_category(self, category_id: str) -> List[str]:
        seen: Dict[str, None] = {}
        for skill in self.skills_by_category.get(category_id, []):
            for subskill in self.subskills_by_skill.get(skill.id, []):
                for user_id in self.users_by_subskill.get(subskill.id, []):
                    seen.setdefault(user_id, None)
        return list(seen)


def _classify_user_skills(
    engine: ClassificationEngine,
    catalog: _Catalog,
    user_id: str,
    skills: Sequence[Skill],
    count_unrated_subskills: bool,
) -> List[UserSkillDetail]:
    details = []
    for skill in skills:
        skill_subskills = catalog.subskills_by_skill.get(skill.id, [])
        rated = [
            RatedSubskill(subskill_id=sub.id, subskill_name=sub.name, rating=catalog.ratings[(user_id, sub.id)])
            for sub in skill_subskills
            if (user_id, sub.id) in catalog.ratings
        ]
        if not rated:
            continue

        total = len(skill_subskills) if count_unrated_subskills else None
        tier = classify_skill(engine, [r.rating for r in rated], total)
        details.append(UserSkillDetail(
            skill_id=skill.id,
            skill_name=skill.name,
            classification=tier,
            subskills=rated,
        ))
    return details


def build_category_stats(
    engine: ClassificationEngine,
    categories: Sequence[SkillCategory],
    skills: Sequence[Skill],
    subskills: Sequence[Subskill],
    ratings: Sequence[EmployeeRating],
    profiles: Sequence[UserProfile],
    count_unrated_subskills: bool = False,
) -> List[CategoryStats]:
    """
    Group every rated user of each category by their category tier.

    Args:
        engine: Engine holding the active rules
        categories: Categories to report, in output order
        skills: All skills
        subskills: All subskills
        ratings: Rating rows; only approved ones are used
        profiles: Users to report; rated users without a profile are skipped
        count_unrated_subskills: Use every subskill of a skill as the
            skill-level denominator instead of only the rated ones

    Returns:
        One CategoryStats per category
    """
    catalog = _Catalog(skills, subskills, ratings)
    profiles_by_user = {profile.user_id: profile for profile in profiles}
    stats = []

    for category in categories:
        category_skills = catalog.skills_by_category.get(category.id, [])
        entry = CategoryStats(
            id=category.id,
            name=category.name,
            description=category.description,
            skill_count=len(category_skills),
        )

        for user_id in catalog.users_in_category(category.id):
            profile = profiles_by_user.get(user_id)
            if profile is None:
                continue

            user_skills = _classify_user_skills(
                engine, catalog, user_id, category_skills, count_unrated_subskills
            )
            if not user_skills:
                continue

            tier = classify_category(engine, [s.classification for s in user_skills])

            subskill_total = sum(len(catalog.subskills_by_skill[s.skill_id]) for s in user_skills)
            rated_total = sum(len(s.subskills) for s in user_skills)
            coverage = rated_total / subskill_total * 100 if subskill_total > 0 else 0.0

            user = ClassifiedUser(
                user_id=user_id,
                full_name=profile.full_name,
                email=profile.email,
                classification=tier,
                percentage=coverage,
                skills=user_skills,
            )
            if tier == Tier.EXPERT:
                entry.expert_users.append(user)
            elif tier == Tier.INTERMEDIATE:
                entry.intermediate_users.append(user)
            else:
                entry.beginner_users.append(user)

        logger.debug(
            "Category classified",
            category_id=category.id,
            expert=len(entry.expert_users),
            intermediate=len(entry.intermediate_users),
            beginner=len(entry.beginner_users),
        )
        stats.append(entry)

    return stats
