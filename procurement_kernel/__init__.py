"""
Procurement kernel -- shared infrastructure for supplier ordering subsystems.

Provides the pieces every subsystem builds on:

    - ``db``: declarative base, portable column types, engine/session helpers
    - ``domain.clock``: injectable time source
    - ``exceptions``: typed error hierarchy with machine-readable codes
    - ``logging_config``: structured JSON logging with context propagation
    - ``services.sequence_service``: persistence-backed monotonic counters
    - ``utils.idempotency``: idempotency key construction
"""

__version__ = "0.3.0"
