"""Local rules, AI classification and report aggregation."""
