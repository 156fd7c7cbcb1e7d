"""
Classification Service package for the Skill Matrix.

This package assigns expert / intermediate / beginner tiers to a user's
skills and categories from editable threshold rules. It provides:

- app.main: API surface for rule management, classification and health.
- app.rules: Rule model, condition grouping and the classification engine.
- app.hierarchy: Skill and category classification and dashboard grouping.
- app.cache: Redis-backed caching of tier decisions.
- app.persistence: PostgreSQL storage for rules.

Guidelines:
- The engine is pure; all I/O lives in the store, cache and routes.
- Reload the engine and clear the cache after every rule change.
"""
