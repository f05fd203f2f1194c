"""Domain services: visibility policy, grouping, catalog, and plan reconciliation."""
