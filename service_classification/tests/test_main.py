"""
Unit tests for Classification main service.
"""

import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_classification.app.main import ClassificationService
from service_classification.app.rules.defaults import default_rules
from service_classification.app.rules.models import ClassificationRule, RuleCondition, Tier


class TestClassificationService:
    """Test cases for ClassificationService."""

    @pytest.fixture
    def seed_rules(self):
        return default_rules("seed")

    @pytest.fixture
    def service(self, seed_rules):
        """Create a service with seeded rules and a mocked store."""
        service = ClassificationService()
        service.rule_engine.load_rules(seed_rules)
        service.store.fetch_all = AsyncMock(return_value=seed_rules)
        return service

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        return TestClient(service.app)

    @pytest.fixture
    def headers(self):
        return {"X-User-Id": "admin-1"}

    @pytest.fixture
    def mock_rule_create_request(self):
        """Mock rule creation request."""
        return {
            "level": "expert",
            "conditions": [
                {"metric": "high%", "operator": ">=", "value": 40, "combineWith": "OR"},
                {
                    "metric": "high%",
                    "operator": ">=",
                    "value": 25,
                    "subConditions": [{"metric": "low%", "operator": "<=", "value": 10}],
                },
            ],
            "display_order": 1,
        }

    def test_root_endpoint(self, client):
        """Test root endpoint."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "classification"
        assert "rule_engine" in data["capabilities"]

    def test_health_endpoint(self, client):
        """Test health reports unstarted dependencies."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["dependencies"] == {"redis": "error", "postgres": "error"}

    def test_request_id_header(self, client):
        """Test the request ID is echoed back."""
        response = client.get("/", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    def test_classify_expert(self, client, service):
        """Test classifying raw counts."""
        response = client.post("/classification/classify", json={
            "high_count": 3, "medium_count": 1, "low_count": 0, "total": 10
        })

        assert response.status_code == 200
        data = response.json()
        assert data["tier"] == "expert"
        assert data["metrics"]["high_percent"] == 30
        assert data["rule_set_version"] == service.rule_engine.version
        assert data["cached"] is False

    def test_classify_zero_total(self, client):
        """Test undefined percentages are returned as null."""
        response = client.post("/classification/classify", json={
            "high_count": 0, "medium_count": 0, "low_count": 0, "total": 0
        })

        assert response.status_code == 200
        data = response.json()
        assert data["tier"] == "beginner"
        assert data["metrics"]["high_percent"] is None

    def test_classify_with_text_threshold_in_store(self, client, service):
        """Test a stored rule with a non-numeric threshold does not break classification."""
        service.rule_engine.load_rules([ClassificationRule(
            rule_id="r-text",
            level=Tier.EXPERT,
            conditions=[RuleCondition.from_dict({"metric": "high%", "operator": ">=", "value": "abc"})],
        )])

        response = client.post("/classification/classify", json={
            "high_count": 3, "medium_count": 1, "low_count": 0, "total": 10
        })

        assert response.status_code == 200
        assert response.json()["tier"] == "beginner"

    def test_classify_negative_rejected(self, client):
        response = client.post("/classification/classify", json={
            "high_count": -1, "medium_count": 0, "low_count": 0, "total": 1
        })

        assert response.status_code == 422

    def test_classify_cache_hit(self, client, service):
        """Test a cached decision is returned without evaluation."""
        with patch.object(service.cache, "get_tier", AsyncMock(return_value=Tier.INTERMEDIATE)), \
             patch.object(service.rule_engine, "classify_input") as mock_classify:
            response = client.post("/classification/classify", json={
                "high_count": 3, "medium_count": 1, "low_count": 0, "total": 10
            })

        data = response.json()
        assert data["tier"] == "intermediate"
        assert data["cached"] is True
        mock_classify.assert_not_called()

    def test_classify_cache_disabled(self, client, service):
        service.config.result_cache_enabled = False

        with patch.object(service.cache, "get_tier", AsyncMock()) as mock_get:
            response = client.post("/classification/classify", json={
                "high_count": 3, "medium_count": 1, "low_count": 0, "total": 10
            })

        assert response.json()["tier"] == "expert"
        mock_get.assert_not_called()

    def test_classify_skill(self, client):
        """Test classifying a skill from ratings."""
        response = client.post("/classification/skills", json={
            "ratings": ["high", "high", "medium", "low"]
        })

        assert response.status_code == 200
        data = response.json()
        assert data["tier"] == "expert"
        assert data["input"] == {"high_count": 2, "medium_count": 1, "low_count": 1, "total": 4}

    def test_classify_skill_with_total(self, client):
        response = client.post("/classification/skills", json={
            "ratings": ["high"], "total_subskills": 10
        })

        assert response.json()["tier"] == "beginner"

    def test_classify_skill_bad_rating(self, client):
        response = client.post("/classification/skills", json={"ratings": ["excellent"]})

        assert response.status_code == 422

    def test_classify_category(self, client):
        """Test classifying a category from skill tiers."""
        response = client.post("/classification/categories", json={
            "skill_tiers": ["intermediate", "intermediate", "beginner", "beginner"]
        })

        assert response.status_code == 200
        data = response.json()
        assert data["tier"] == "intermediate"
        assert data["input"]["medium_count"] == 2

    def test_dashboard(self, client):
        """Test the dashboard groups users by category tier."""
        response = client.post("/classification/dashboard", json={
            "categories": [{"id": "c1", "name": "Backend"}],
            "skills": [{"id": "s1", "name": "Python", "category_id": "c1"}],
            "subskills": [
                {"id": "a1", "name": "asyncio", "skill_id": "s1"},
                {"id": "a2", "name": "typing", "skill_id": "s1"},
            ],
            "ratings": [
                {"user_id": "u1", "subskill_id": "a1", "rating": "high"},
                {"user_id": "u2", "subskill_id": "a1", "rating": "low"},
            ],
            "profiles": [
                {"user_id": "u1", "full_name": "Ada", "email": "ada@example.com"},
                {"user_id": "u2", "full_name": "Bo", "email": "bo@example.com"},
            ],
        })

        assert response.status_code == 200
        backend = response.json()[0]
        assert backend["skill_count"] == 1
        assert [u["user_id"] for u in backend["expert_users"]] == ["u1"]
        assert [u["user_id"] for u in backend["beginner_users"]] == ["u2"]
        assert backend["expert_users"][0]["percentage"] == 50

    def test_get_rules(self, client, seed_rules):
        """Test listing rules."""
        response = client.get("/classification/rules")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert data["rules"][0]["id"] == seed_rules[0].rule_id
        assert data["rules"][0]["conditions"][0] == {
            "metric": "high%", "operator": ">=", "value": 30, "combineWith": "OR"
        }

    def test_create_rule_requires_user(self, client, mock_rule_create_request):
        """Test rule writes without an acting user are rejected."""
        response = client.post("/classification/rules", json=mock_rule_create_request)

        assert response.status_code == 401
        assert response.json()["code"] == "AUTHENTICATION_ERROR"

    def test_create_rule(self, client, service, headers, mock_rule_create_request, seed_rules):
        """Test creating a rule reloads the engine."""
        created = ClassificationRule(
            rule_id="new-rule",
            level=Tier.EXPERT,
            conditions=[RuleCondition(metric="high%", operator=">=", value=40)],
            created_by="admin-1",
            updated_by="admin-1",
        )
        service.store.create = AsyncMock(return_value=created)
        service.store.fetch_all = AsyncMock(return_value=[created] + seed_rules[1:])
        old_version = service.rule_engine.version

        with patch.object(service.cache, "invalidate_all", AsyncMock(return_value=0)) as mock_invalidate:
            response = client.post("/classification/rules", json=mock_rule_create_request, headers=headers)

        assert response.status_code == 201
        assert response.json()["id"] == "new-rule"
        mock_invalidate.assert_called_once()

        rule, actor_id = service.store.create.call_args[0]
        assert actor_id == "admin-1"
        assert rule.conditions[0].combine_with == "OR"
        assert rule.conditions[1].sub_conditions[0].metric == "low%"
        assert service.rule_engine.version != old_version
        assert service.rule_engine.get_rule_for_level(Tier.EXPERT).rule_id == "new-rule"

    def test_create_rule_strict_rejects(self, client, service, headers):
        """Test strict mode rejects rules with unknown metrics."""
        service.config.strict_rules = True
        service.store.create = AsyncMock()

        response = client.post("/classification/rules", headers=headers, json={
            "level": "expert",
            "conditions": [{"metric": "expertise", "operator": ">=", "value": 1}],
        })

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"
        service.store.create.assert_not_called()

    def test_create_rule_lenient_accepts(self, client, service, headers):
        """Test lenient mode stores rules with unknown operators."""
        created = ClassificationRule(
            rule_id="r-odd",
            level=Tier.EXPERT,
            conditions=[RuleCondition(metric="high%", operator="!=", value=1)],
        )
        service.store.create = AsyncMock(return_value=created)

        response = client.post("/classification/rules", headers=headers, json={
            "level": "expert",
            "conditions": [{"metric": "high%", "operator": "!=", "value": 1}],
        })

        assert response.status_code == 201

    def test_update_rule_not_found(self, client, service, headers):
        service.store.get = AsyncMock(return_value=None)

        response = client.put("/classification/rules/missing", headers=headers, json={"is_active": False})

        assert response.status_code == 404
        assert response.json()["code"] == "RULE_NOT_FOUND"

    def test_update_rule(self, client, service, headers, seed_rules):
        """Test conditions are replaced as a whole."""
        existing = seed_rules[0]
        service.store.get = AsyncMock(return_value=existing)
        service.store.update = AsyncMock(return_value=existing)

        response = client.put(f"/classification/rules/{existing.rule_id}", headers=headers, json={
            "conditions": [{"metric": "high%", "operator": ">=", "value": 35}],
        })

        assert response.status_code == 200
        rule_id, updates, actor_id = service.store.update.call_args[0]
        assert rule_id == existing.rule_id
        assert list(updates) == ["conditions"]
        assert updates["conditions"][0].value == 35
        assert actor_id == "admin-1"

    def test_delete_rule(self, client, service, headers):
        service.store.delete = AsyncMock()

        response = client.delete("/classification/rules/r1", headers=headers)

        assert response.status_code == 200
        assert response.json()["success"] is True
        service.store.delete.assert_called_once_with("r1")
        service.store.fetch_all.assert_called()

    def test_reorder_rules(self, client, service, headers):
        service.store.reorder = AsyncMock()

        response = client.post("/classification/rules/reorder", headers=headers, json={
            "rules": [{"id": "r1", "display_order": 2}, {"id": "r2", "display_order": 1}]
        })

        assert response.status_code == 200
        service.store.reorder.assert_called_once_with([("r1", 2), ("r2", 1)], "admin-1")

    def test_initialize_defaults(self, client, service, headers, seed_rules):
        service.store.initialize_defaults = AsyncMock(return_value=seed_rules)

        response = client.post("/classification/rules/defaults", headers=headers)

        assert response.status_code == 200
        assert response.json()["seeded"] == 3
        service.store.initialize_defaults.assert_called_once_with("admin-1")

    def test_initialize_defaults_noop(self, client, service, headers):
        service.store.initialize_defaults = AsyncMock(return_value=[])

        response = client.post("/classification/rules/defaults", headers=headers)

        assert response.json() == {"seeded": 0, "rules": []}
        service.store.fetch_all.assert_not_called()

    def test_validate_conditions(self, client):
        """Test condition validation without saving."""
        response = client.post("/classification/rules/validate", json={
            "conditions": [
                {"metric": "high% + experts", "operator": ">=", "value": 50},
                {"metric": "low%", "operator": "<", "metric2": "high%"},
            ]
        })

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is False
        assert data["issues"] == [
            {"path": "conditions[0].metric", "message": "Unknown metric 'experts'"}
        ]

    def test_stats(self, client):
        response = client.get("/classification/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["engine"]["total_rules"] == 3
        assert data["persistence"] == {}

    def test_metrics_endpoint(self, client):
        """Test classification counters are exported."""
        client.post("/classification/skills", json={"ratings": ["low"]})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert 'classifications_total{scope="skill",tier="beginner"} 1.0' in response.text
