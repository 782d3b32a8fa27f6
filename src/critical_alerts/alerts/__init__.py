"""
Critical Alerts Module
======================

Bounded context for deriving time-sensitive alerts from tasks and users and
recording escalations.

Responsibilities:
- Evaluate overdue, approaching-deadline, end-of-day and performance-flag rules
- Rank alerts by severity and recency
- Keep a deduplicated escalation ledger of critical alerts
- Record dismissals so suppressed conditions stay suppressed
- Re-evaluate on fact changes and on a fixed tick
"""

__version__ = "1.0.0"
