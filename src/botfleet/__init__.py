"""botfleet: multi-tenant bot process orchestrator.

Provisions, starts, stops and monitors one isolated worker process per
customer bot, enforces per-plan limits, and keeps each worker's desired
and observed state consistent when the process supervisor fails.
"""

__version__ = "0.1.0"
