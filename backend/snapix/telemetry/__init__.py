"""
Telemetry Module
================

Error tracking for the Snapix backend.

Components:
- sentry.py: Error tracking and performance monitoring

Environment Variables:
- SENTRY_DSN: Sentry project DSN (tracking is disabled when unset)
- ENVIRONMENT: Environment name reported with every event

Usage:
    from snapix.telemetry import init_sentry, capture_exception

Related modules:
- snapix/main.py: Initializes Sentry on startup
- snapix/services/campaign_sync_service.py: Reports unexpected sync faults
- snapix/workers/arq_worker.py: Reports failed cache sweeps
"""

from snapix.telemetry.sentry import (
    init_sentry,
    set_user_context,
    capture_exception,
)


__all__ = [
    "init_sentry",
    "set_user_context",
    "capture_exception",
]
