"""
Rule store: PostgreSQL persistence of classification rules.
"""
