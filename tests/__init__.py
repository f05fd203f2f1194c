"""
Ordinance Portal Test Suite

Tests are organized by concern:
- test_visibility_policy_service.py: Tier-gated visibility decisions
- test_ordinance_grouping.py: Department grouping and municipality exemplars
- test_plan_reconciliation_service.py: Optimistic plan changes, verification, push
- test_record_store.py: SQLAlchemy record store and tier change feed
- test_*_routes.py: HTTP endpoints
"""
