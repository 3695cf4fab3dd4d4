"""
Core package — cross-cutting concerns.

Modules:
    config         — process settings (pydantic-settings)
    configuration  — layered configuration loader and view
    logging_config — structured console logging
    errors         — exception hierarchy & handlers
    middleware     — request correlation and timing
    health         — health check aggregation
"""
