"""
Unit tests for the PostgreSQL rule store.
"""

import json
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import asyncpg

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import PersistenceError, RuleNotFoundError
from service_classification.app.persistence.postgres import ClassificationRuleStore, SEED_LOCK_KEY
from service_classification.app.rules.models import ClassificationRule, RuleCondition, Tier


NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_row(rule_id="r1", level="expert", conditions=None, display_order=1, is_active=True, actor="u1"):
    return {
        "id": rule_id,
        "level": level,
        "conditions": conditions if conditions is not None else [{"metric": "high%", "operator": ">=", "value": 30}],
        "display_order": display_order,
        "is_active": is_active,
        "created_at": NOW,
        "updated_at": NOW,
        "created_by": actor,
        "updated_by": actor,
    }


def row_from_insert(query, rule_id, level, conditions, display_order, is_active, actor):
    return make_row(rule_id, level, conditions, display_order, is_active, actor)


@pytest.fixture
def conn():
    conn = AsyncMock()
    conn.transaction = MagicMock()
    conn.transaction.return_value.__aexit__.return_value = False
    return conn


@pytest.fixture
def store(conn):
    store = ClassificationRuleStore("postgresql://localhost/test")
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    pool.acquire.return_value.__aexit__.return_value = False
    store.pool = pool
    return store


class TestClassificationRuleStore:
    """Test cases for ClassificationRuleStore."""

    @pytest.mark.asyncio
    async def test_fetch_all(self, store, conn):
        """Test rows are converted to rules, JSON text or decoded."""
        conn.fetch.return_value = [
            make_row("r1", "expert"),
            make_row("r2", "beginner", json.dumps([{"metric": "lowCount", "operator": ">=", "value": 1}])),
        ]

        rules = await store.fetch_all()

        assert [r.rule_id for r in rules] == ["r1", "r2"]
        assert rules[0].level == Tier.EXPERT
        assert rules[1].conditions[0].metric == "lowCount"
        assert "is_active = TRUE" in conn.fetch.call_args[0][0]

    @pytest.mark.asyncio
    async def test_get_missing(self, store, conn):
        """Test a missing rule returns None."""
        conn.fetchrow.return_value = None

        assert await store.get("nope") is None

    @pytest.mark.asyncio
    async def test_create(self, store, conn):
        """Test creating a rule stores conditions as JSON."""
        conn.fetchrow.side_effect = row_from_insert
        rule = ClassificationRule(
            rule_id="",
            level=Tier.INTERMEDIATE,
            conditions=[RuleCondition(metric="medium%", operator=">=", value=50, combine_with="OR")],
            display_order=2,
        )

        created = await store.create(rule, "admin")

        args = conn.fetchrow.call_args[0]
        assert "INSERT INTO classification_rules" in args[0]
        assert args[1]
        assert args[2] == "intermediate"
        assert json.loads(args[3]) == [{"metric": "medium%", "operator": ">=", "value": 50, "combineWith": "OR"}]
        assert args[6] == "admin"
        assert created.created_by == "admin"
        assert created.conditions[0].combine_with == "OR"

    @pytest.mark.asyncio
    async def test_update_partial(self, store, conn):
        """Test only supplied fields are written."""
        conn.fetchrow.return_value = make_row(display_order=5, actor="editor")
        conditions = [RuleCondition(metric="high%", operator=">=", value=25)]

        updated = await store.update("r1", {"conditions": conditions, "display_order": 5, "level": None}, "editor")

        query, *params = conn.fetchrow.call_args[0]
        assert "conditions = $3::jsonb" in query
        assert "display_order = $4" in query
        assert "level =" not in query
        assert "updated_by = $2" in query
        assert params[:2] == ["r1", "editor"]
        assert json.loads(params[2]) == [{"metric": "high%", "operator": ">=", "value": 25}]
        assert updated.updated_by == "editor"

    @pytest.mark.asyncio
    async def test_update_missing(self, store, conn):
        """Test updating an unknown rule raises RuleNotFoundError."""
        conn.fetchrow.return_value = None

        with pytest.raises(RuleNotFoundError):
            await store.update("nope", {"is_active": False}, "editor")

    @pytest.mark.asyncio
    async def test_delete(self, store, conn):
        conn.execute.return_value = "DELETE 1"

        await store.delete("r1")

        assert conn.execute.call_args[0][1] == "r1"

    @pytest.mark.asyncio
    async def test_delete_missing(self, store, conn):
        """Test deleting an unknown rule raises RuleNotFoundError."""
        conn.execute.return_value = "DELETE 0"

        with pytest.raises(RuleNotFoundError):
            await store.delete("nope")

    @pytest.mark.asyncio
    async def test_reorder(self, store, conn):
        """Test reordering updates each rule inside one transaction."""
        await store.reorder([("r1", 2), ("r2", 1)], "admin")

        conn.transaction.assert_called_once()
        assert conn.execute.call_count == 2
        assert conn.execute.call_args_list[1][0][1:] == ("r2", 1, "admin")

    @pytest.mark.asyncio
    async def test_initialize_defaults_empty_store(self, store, conn):
        """Test seeding an empty store inserts one rule per level."""
        conn.fetchval.return_value = None
        conn.fetchrow.side_effect = row_from_insert

        created = await store.initialize_defaults("admin")

        assert [r.level for r in created] == [Tier.EXPERT, Tier.INTERMEDIATE, Tier.BEGINNER]
        assert conn.fetchrow.call_count == 3
        conn.execute.assert_called_once_with("SELECT pg_advisory_xact_lock($1)", SEED_LOCK_KEY)

    @pytest.mark.asyncio
    async def test_initialize_defaults_existing_rules(self, store, conn):
        """Test seeding is a no-op when any rule exists."""
        conn.fetchval.return_value = "r1"

        created = await store.initialize_defaults("admin")

        assert created == []
        conn.fetchrow.assert_not_called()

    @pytest.mark.asyncio
    async def test_initialize_defaults_without_actor(self, store, conn):
        """Test seeding is skipped without an acting user."""
        created = await store.initialize_defaults(None)

        assert created == []
        store.pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_database_error_wrapped(self, store, conn):
        """Test driver errors surface as PersistenceError."""
        conn.fetch.side_effect = asyncpg.InterfaceError("connection is closed")

        with pytest.raises(PersistenceError):
            await store.fetch_all()

    @pytest.mark.asyncio
    async def test_not_started(self):
        """Test operations fail cleanly before start."""
        store = ClassificationRuleStore("postgresql://localhost/test")

        with pytest.raises(PersistenceError):
            await store.fetch_all()
        assert await store.health_check() is False

    @pytest.mark.asyncio
    async def test_count(self, store, conn):
        conn.fetchval.return_value = 3

        assert await store.count() == 3

    @pytest.mark.asyncio
    async def test_health_check(self, store, conn):
        conn.fetchval.return_value = 1

        assert await store.health_check() is True
