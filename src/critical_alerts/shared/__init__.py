"""
Shared Kernel Module
====================

Generic infrastructure used by the alert bounded context and the
application shell: structured logging and API middleware.

DO NOT add alert evaluation or ledger logic to the shared kernel.
"""

__version__ = "1.0.0"
