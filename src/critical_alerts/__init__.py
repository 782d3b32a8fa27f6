"""
Critical Alerts
===============

Critical alert generation and escalation ledger service.
"""

__version__ = "1.0.0"
