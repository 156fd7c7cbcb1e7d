"""
Classification service for the Skill Matrix.
"""

import math
from dataclasses import asdict
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Body, Header
from pydantic import BaseModel, Field

from shared.base_service import BaseService
from shared.errors import AuthenticationError, RuleNotFoundError
from shared.logging import set_actor_context

from .cache.redis_cache import ClassificationCache
from .hierarchy import (
    CategoryStats, EmployeeRating, Skill, SkillCategory, Subskill, UserProfile,
    build_category_stats, classify_category, classify_skill,
)
from .persistence.postgres import ClassificationRuleStore
from .rules.derivation import ZeroTotalPolicy
from .rules.engine import ClassificationEngine
from .rules.models import (
    CategoryClassifyRequest, ClassificationInput, ClassificationRule, ClassifyRequest,
    ClassifyResponse, MetricsResponse, ReorderRequest, RuleCreateRequest, RuleListResponse,
    RuleResponse, RuleUpdateRequest, SkillClassifyRequest, TierResponse, ValidateRequest,
    ValidateResponse, ValidationIssueResponse,
)
from .rules.validation import check_rule, validate_conditions


class DashboardRequest(BaseModel):
    """Rows fetched once by the caller for a bulk dashboard computation."""
    categories: List[SkillCategory]
    skills: List[Skill]
    subskills: List[Subskill]
    ratings: List[EmployeeRating]
    profiles: List[UserProfile]
    count_unrated_subskills: bool = Field(False, description="Use all subskills of a skill as its total")


def _finite_or_none(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None


class ClassificationService(BaseService):
    """Classification service implementation."""

    def __init__(self):
        super().__init__("classification", 8013)

        self.rule_engine = ClassificationEngine(
            zero_total_policy=ZeroTotalPolicy(self.config.zero_total_policy)
        )
        self.store = ClassificationRuleStore(self.config.postgres_dsn)
        self.cache = ClassificationCache(self.config.redis_url, self.config.result_cache_ttl)

        self._setup_classification_routes()

    def _require_actor(self, actor_id: Optional[str]) -> str:
        if not actor_id:
            raise AuthenticationError()
        set_actor_context(actor_id)
        return actor_id

    async def _refresh_rules(self, operation: str):
        """Reload the engine from the store and drop cached decisions."""
        rules = await self.store.fetch_all()
        version = self.rule_engine.load_rules(rules)
        await self.cache.invalidate_all()
        self.metrics.record_rule_change(operation)
        self.logger.info("Rule set refreshed", operation=operation, version=version)

    def _setup_classification_routes(self):
        """Set up classification-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "classification",
                "message": "Skill Matrix - Classification Service",
                "version": "1.0.0",
                "capabilities": ["rule_engine", "caching", "persistence", "dashboard"]
            }

        @self.app.get("/classification/rules", response_model=RuleListResponse)
        async def get_rules():
            """Get active rules ordered by level and display order."""
            rules = await self.store.fetch_all()
            return RuleListResponse(
                rules=[RuleResponse.from_rule(rule) for rule in rules],
                total=len(rules),
                version=self.rule_engine.version,
            )

        @self.app.post("/classification/rules", response_model=RuleResponse, status_code=201)
        async def create_rule(
            request: RuleCreateRequest,
            x_user_id: Optional[str] = Header(None),
        ):
            """Create a new rule."""
            actor_id = self._require_actor(x_user_id)
            rule = ClassificationRule(
                rule_id="",
                level=request.level,
                conditions=[c.to_condition() for c in request.conditions],
                display_order=request.display_order,
                is_active=request.is_active,
            )
            check_rule(rule, strict=self.config.strict_rules)

            created = await self.store.create(rule, actor_id)
            await self._refresh_rules("create")
            return RuleResponse.from_rule(created)

        @self.app.put("/classification/rules/{rule_id}", response_model=RuleResponse)
        async def update_rule(
            rule_id: str,
            request: RuleUpdateRequest,
            x_user_id: Optional[str] = Header(None),
        ):
            """Update a rule; conditions are replaced as a whole."""
            actor_id = self._require_actor(x_user_id)
            existing = await self.store.get(rule_id)
            if existing is None:
                raise RuleNotFoundError(rule_id)

            updates = {}
            if request.conditions is not None:
                updates["conditions"] = [c.to_condition() for c in request.conditions]
            if request.display_order is not None:
                updates["display_order"] = request.display_order
            if request.is_active is not None:
                updates["is_active"] = request.is_active
            if request.level is not None:
                updates["level"] = request.level

            candidate = ClassificationRule(
                rule_id=rule_id,
                level=updates.get("level", existing.level),
                conditions=updates.get("conditions", existing.conditions),
                display_order=updates.get("display_order", existing.display_order),
                is_active=updates.get("is_active", existing.is_active),
            )
            check_rule(candidate, strict=self.config.strict_rules)

            updated = await self.store.update(rule_id, updates, actor_id)
            await self._refresh_rules("update")
            return RuleResponse.from_rule(updated)

        @self.app.delete("/classification/rules/{rule_id}")
        async def delete_rule(rule_id: str, x_user_id: Optional[str] = Header(None)):
            """Delete a rule."""
            self._require_actor(x_user_id)
            await self.store.delete(rule_id)
            await self._refresh_rules("delete")
            return {"success": True, "message": "Rule deleted successfully"}

        @self.app.post("/classification/rules/reorder")
        async def reorder_rules(request: ReorderRequest, x_user_id: Optional[str] = Header(None)):
            """Set display order for several rules."""
            actor_id = self._require_actor(x_user_id)
            await self.store.reorder([(item.id, item.display_order) for item in request.rules], actor_id)
            await self._refresh_rules("reorder")
            return {"success": True, "count": len(request.rules)}

        @self.app.post("/classification/rules/defaults")
        async def initialize_defaults(x_user_id: Optional[str] = Header(None)):
            """Seed the default rules if none exist."""
            actor_id = self._require_actor(x_user_id)
            created = await self.store.initialize_defaults(actor_id)
            if created:
                await self._refresh_rules("seed")
            return {"seeded": len(created), "rules": [RuleResponse.from_rule(r) for r in created]}

        @self.app.post("/classification/rules/validate", response_model=ValidateResponse)
        async def validate_rule_conditions(request: ValidateRequest):
            """Report problems in a condition list without saving it."""
            issues = validate_conditions([c.to_condition() for c in request.conditions])
            return ValidateResponse(
                valid=not issues,
                issues=[ValidationIssueResponse(path=i.path, message=i.message) for i in issues],
            )

        @self.app.post("/classification/classify", response_model=ClassifyResponse)
        async def classify_counts(request: ClassifyRequest):
            """Classify raw high/medium/low counts."""
            counts = ClassificationInput(
                high_count=request.high_count,
                medium_count=request.medium_count,
                low_count=request.low_count,
                total=request.total,
            )
            version = self.rule_engine.version
            policy = self.rule_engine.zero_total_policy.value
            metrics = self.rule_engine.derive(counts.high_count, counts.medium_count, counts.low_count, counts.total)

            with self.metrics.time_operation("classification_duration_seconds", scope="counts"):
                tier = None
                if self.config.result_cache_enabled:
                    tier = await self.cache.get_tier(version, policy, counts)
                    self.metrics.record_cache_lookup(tier is not None)
                cached = tier is not None

                if tier is None:
                    tier = self.rule_engine.classify_input(counts)
                    if self.config.result_cache_enabled:
                        await self.cache.set_tier(version, policy, counts, tier)

            self.metrics.record_classification("counts", tier.value)
            return ClassifyResponse(
                tier=tier,
                metrics=MetricsResponse(
                    high_count=metrics.high_count,
                    medium_count=metrics.medium_count,
                    low_count=metrics.low_count,
                    total_subskills=metrics.total_subskills,
                    high_percent=_finite_or_none(metrics.high_percent),
                    medium_percent=_finite_or_none(metrics.medium_percent),
                    low_percent=_finite_or_none(metrics.low_percent),
                ),
                rule_set_version=version,
                cached=cached,
            )

        @self.app.post("/classification/skills", response_model=TierResponse)
        async def classify_skill_ratings(request: SkillClassifyRequest):
            """Classify one skill from its subskill ratings."""
            counts = ClassificationInput.from_ratings(request.ratings, request.total_subskills)
            with self.metrics.time_operation("classification_duration_seconds", scope="skill"):
                tier = classify_skill(self.rule_engine, request.ratings, request.total_subskills)
            self.metrics.record_classification("skill", tier.value)
            return TierResponse(tier=tier, input=asdict(counts), rule_set_version=self.rule_engine.version)

        @self.app.post("/classification/categories", response_model=TierResponse)
        async def classify_category_tiers(request: CategoryClassifyRequest):
            """Classify one category from its skills' tiers."""
            counts = ClassificationInput.from_tiers(request.skill_tiers)
            with self.metrics.time_operation("classification_duration_seconds", scope="category"):
                tier = classify_category(self.rule_engine, request.skill_tiers)
            self.metrics.record_classification("category", tier.value)
            return TierResponse(tier=tier, input=asdict(counts), rule_set_version=self.rule_engine.version)

        @self.app.post("/classification/dashboard", response_model=List[CategoryStats])
        async def dashboard(request: DashboardRequest = Body(...)):
            """Group users per category by their category tier."""
            with self.metrics.time_operation("classification_duration_seconds", scope="dashboard"):
                stats = build_category_stats(
                    self.rule_engine,
                    request.categories,
                    request.skills,
                    request.subskills,
                    request.ratings,
                    request.profiles,
                    count_unrated_subskills=request.count_unrated_subskills,
                )
            self.logger.info(
                "Dashboard computed",
                categories=len(stats),
                users=sum(len(s.expert_users) + len(s.intermediate_users) + len(s.beginner_users) for s in stats),
            )
            return stats

        @self.app.get("/classification/stats")
        async def get_stats():
            """Get classification service statistics."""
            return {
                "engine": self.rule_engine.get_engine_stats(),
                "cache": await self.cache.get_cache_stats(),
                "persistence": await self.store.get_rule_stats() if self.store.pool else {},
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

    async def _check_dependencies(self):
        """Check classification service dependencies."""
        return {
            "redis": "ok" if await self.cache.health_check() else "error",
            "postgres": "ok" if await self.store.health_check() else "error",
        }

    async def start(self):
        """Start classification service components."""
        if self.config.metrics_port:
            self.metrics.start_metrics_server(self.config.metrics_port)

        await self.store.start()
        if self.config.result_cache_enabled:
            await self.cache.start()

        if self.config.seed_default_rules:
            await self.store.initialize_defaults(self.config.seed_actor_id)

        rules = await self.store.fetch_all()
        self.rule_engine.load_rules(rules)

        self.logger.info("Classification service started", rules=len(rules), version=self.rule_engine.version)

    async def stop(self):
        """Stop classification service components."""
        await self.store.stop()
        await self.cache.stop()

        self.logger.info("Classification service stopped")


def create_app():
    """Create classification service application."""
    service = ClassificationService()
    return service.app


if __name__ == "__main__":
    service = ClassificationService()
    service.run()
