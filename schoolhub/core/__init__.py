"""
Core package — cross-cutting concerns.

Modules:
    config          — layered configuration snapshot
    logging_config  — JSON / console logging with request context
    errors          — exception hierarchy & handlers
    middleware      — request context, tenant tagging, access log
    database        — async SQL engine and sessions
    cache           — typed cache-aside accessors
"""
