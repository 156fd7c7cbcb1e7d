"""
Result cache for tier decisions, keyed by rule-set version and counts.
"""
