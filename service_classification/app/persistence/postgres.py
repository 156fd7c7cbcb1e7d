"""
PostgreSQL rule store for the Classification Service.
"""

import json
import uuid
from typing import Dict, Any, Optional, List, Sequence, Tuple

import asyncpg

from shared.logging import get_logger
from shared.errors import PersistenceError, RuleNotFoundError
from ..rules.defaults import default_rules
from ..rules.models import ClassificationRule, RuleCondition, Tier


# Serializes default seeding across service instances
SEED_LOCK_KEY = 727001

DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError)

UPDATABLE_FIELDS = ("level", "conditions", "display_order", "is_active")


class ClassificationRuleStore:
    """PostgreSQL persistence for classification rules."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("classification.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the rule store."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30
            )

            await self._create_tables()

            self.logger.info("PostgreSQL rule store started")

        except DB_ERRORS + (OSError,) as e:
            self.logger.error("Failed to start PostgreSQL rule store", error=str(e))
            raise PersistenceError("Failed to start rule store", details={"error": str(e)})

    async def stop(self):
        """Stop the rule store."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL rule store stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS classification_rules (
                    id VARCHAR(64) PRIMARY KEY,
                    level VARCHAR(20) NOT NULL
                        CHECK (level IN ('expert', 'intermediate', 'beginner')),
                    conditions JSONB NOT NULL DEFAULT '[]',
                    display_order INTEGER NOT NULL DEFAULT 0,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    created_by VARCHAR(255),
                    updated_by VARCHAR(255)
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_classification_rules_active
                    ON classification_rules(is_active, level, display_order);
            """)

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise PersistenceError("Rule store not started")
        return self.pool

    async def fetch_all(self) -> List[ClassificationRule]:
        """Load active rules ordered by level, then display order."""
        try:
            async with self._require_pool().acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM classification_rules
                    WHERE is_active = TRUE
                    ORDER BY level ASC, display_order ASC
                """)
                return [self._row_to_rule(row) for row in rows]

        except DB_ERRORS as e:
            self.logger.error("Error loading rules", error=str(e))
            raise PersistenceError("Failed to load rules", details={"error": str(e)})

    async def get(self, rule_id: str) -> Optional[ClassificationRule]:
        """Load one rule, active or not."""
        try:
            async with self._require_pool().acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT * FROM classification_rules WHERE id = $1
                """, rule_id)
                return self._row_to_rule(row) if row else None

        except DB_ERRORS as e:
            self.logger.error("Error loading rule", rule_id=rule_id, error=str(e))
            raise PersistenceError("Failed to load rule", details={"error": str(e)})

    async def create(self, rule: ClassificationRule, actor_id: str) -> ClassificationRule:
        """Insert a rule; ``rule_id`` is generated when empty."""
        try:
            async with self._require_pool().acquire() as conn:
                created = await self._insert(conn, rule, actor_id)
                self.logger.info("Rule created", rule_id=created.rule_id, level=created.level.value)
                return created

        except DB_ERRORS as e:
            self.logger.error("Error creating rule", level=str(rule.level), error=str(e))
            raise PersistenceError("Failed to create rule", details={"error": str(e)})

    async def _insert(self, conn, rule: ClassificationRule, actor_id: Optional[str]) -> ClassificationRule:
        row = await conn.fetchrow("""
            INSERT INTO classification_rules (
                id, level, conditions, display_order, is_active, created_by, updated_by
            ) VALUES ($1, $2, $3::jsonb, $4, $5, $6, $6)
            RETURNING *
        """,
            rule.rule_id or str(uuid.uuid4()),
            Tier(rule.level).value,
            self._dump_conditions(rule.conditions),
            rule.display_order,
            rule.is_active,
            actor_id,
        )
        return self._row_to_rule(row)

    async def update(self, rule_id: str, updates: Dict[str, Any], actor_id: str) -> ClassificationRule:
        """
        Apply a partial update.

        Only keys present in ``updates`` change; ``conditions`` replaces the
        whole list.

        Raises:
            RuleNotFoundError: If no rule has ``rule_id``
        """
        assignments = []
        params: List[Any] = [rule_id, actor_id]
        for name in UPDATABLE_FIELDS:
            if name not in updates or updates[name] is None:
                continue
            value = updates[name]
            if name == "conditions":
                value = self._dump_conditions(value)
                placeholder = f"${len(params) + 1}::jsonb"
            else:
                placeholder = f"${len(params) + 1}"
                if name == "level":
                    value = Tier(value).value
            params.append(value)
            assignments.append(f"{name} = {placeholder}")

        assignments.extend(["updated_by = $2", "updated_at = NOW()"])

        try:
            async with self._require_pool().acquire() as conn:
                row = await conn.fetchrow(
                    f"UPDATE classification_rules SET {', '.join(assignments)} WHERE id = $1 RETURNING *",
                    *params
                )

        except DB_ERRORS as e:
            self.logger.error("Error updating rule", rule_id=rule_id, error=str(e))
            raise PersistenceError("Failed to update rule", details={"error": str(e)})

        if row is None:
            raise RuleNotFoundError(rule_id)

        self.logger.info("Rule updated", rule_id=rule_id, fields=[n for n in UPDATABLE_FIELDS if updates.get(n) is not None])
        return self._row_to_rule(row)

    async def delete(self, rule_id: str):
        """Delete a rule.

        Raises:
            RuleNotFoundError: If no rule has ``rule_id``
        """
        try:
            async with self._require_pool().acquire() as conn:
                result = await conn.execute("""
                    DELETE FROM classification_rules WHERE id = $1
                """, rule_id)

        except DB_ERRORS as e:
            self.logger.error("Error deleting rule", rule_id=rule_id, error=str(e))
            raise PersistenceError("Failed to delete rule", details={"error": str(e)})

        if result != "DELETE 1":
            self.logger.warning("Rule not found for deletion", rule_id=rule_id)
            raise RuleNotFoundError(rule_id)

        self.logger.info("Rule deleted", rule_id=rule_id)

    async def reorder(self, orders: Sequence[Tuple[str, int]], actor_id: str):
        """Set display order for several rules in one transaction."""
        try:
            async with self._require_pool().acquire() as conn:
                async with conn.transaction():
                    for rule_id, display_order in orders:
                        await conn.execute("""
                            UPDATE classification_rules
                            SET display_order = $2, updated_by = $3, updated_at = NOW()
                            WHERE id = $1
                        """, rule_id, display_order, actor_id)

        except DB_ERRORS as e:
            self.logger.error("Error reordering rules", error=str(e))
            raise PersistenceError("Failed to reorder rules", details={"error": str(e)})

        self.logger.info("Rules reordered", count=len(orders))

    async def count(self) -> int:
        """Get total number of rules, active or not."""
        try:
            async with self._require_pool().acquire() as conn:
                count = await conn.fetchval("SELECT COUNT(*) FROM classification_rules")
                return count or 0
        except DB_ERRORS as e:
            self.logger.error("Error getting rule count", error=str(e))
            raise PersistenceError("Failed to count rules", details={"error": str(e)})

    async def initialize_defaults(self, actor_id: Optional[str]) -> List[ClassificationRule]:
        """Seed the default rules if the store holds no rule at all.

        Returns the created rules, or an empty list when nothing was seeded.
        """
        if not actor_id:
            self.logger.info("Skipping default rule seeding without an acting user")
            return []

        try:
            async with self._require_pool().acquire() as conn:
                async with conn.transaction():
                    await conn.execute("SELECT pg_advisory_xact_lock($1)", SEED_LOCK_KEY)
                    existing = await conn.fetchval("SELECT id FROM classification_rules LIMIT 1")
                    if existing:
                        return []

                    created = [await self._insert(conn, rule, actor_id) for rule in default_rules(actor_id)]

        except DB_ERRORS as e:
            self.logger.error("Error seeding default rules", error=str(e))
            raise PersistenceError("Failed to seed default rules", details={"error": str(e)})

        self.logger.info("Default rules seeded", count=len(created))
        return created

    async def get_rule_stats(self) -> Dict[str, Any]:
        """Get rule statistics."""
        try:
            async with self._require_pool().acquire() as conn:
                stats = await conn.fetchrow("""
                    SELECT
                        COUNT(*) as total_rules,
                        COUNT(*) FILTER (WHERE is_active = TRUE) as active_rules,
                        COUNT(DISTINCT level) FILTER (WHERE is_active = TRUE) as active_levels,
                        MAX(updated_at) as last_updated
                    FROM classification_rules
                """)
                return dict(stats)

        except DB_ERRORS as e:
            self.logger.error("Error getting rule stats", error=str(e))
            return {}

    @staticmethod
    def _dump_conditions(conditions: Sequence[Any]) -> str:
        return json.dumps([
            c.to_dict() if isinstance(c, RuleCondition) else c
            for c in conditions
        ])

    def _row_to_rule(self, row) -> ClassificationRule:
        """Convert database row to ClassificationRule object."""
        conditions = row['conditions']
        if isinstance(conditions, str):
            conditions = json.loads(conditions)

        return ClassificationRule(
            rule_id=row['id'],
            level=Tier(row['level']),
            conditions=[RuleCondition.from_dict(c) for c in conditions or []],
            display_order=row['display_order'],
            is_active=row['is_active'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
            created_by=row['created_by'],
            updated_by=row['updated_by'],
        )

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except DB_ERRORS + (OSError,):
            return False
