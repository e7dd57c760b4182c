"""Refund Review Service.

This service lets role-scoped reviewers:
- View machine-flagged refund transactions inside their warehouse or region
- Record decisions, feedback, notes and escalations with an audit trail
- Follow a live feed of high-risk notifications
"""

__version__ = "0.1.0"
