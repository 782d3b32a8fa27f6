"""
Alert Interfaces Layer
======================

Interface adapters (controllers) for the critical alert module.

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from critical_alerts.alerts.interfaces.controllers import alerts_router

__all__ = ["alerts_router"]
