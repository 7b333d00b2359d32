"""
POS Kernel - shared runtime plumbing for the POS ingestion pipeline.

Provides:
- Structured JSON logging with context propagation
- An injectable clock
- The typed exception hierarchy
- SQLAlchemy declarative base, column types and engine/session helpers
- RuntimeContext, the explicit process-wide dependency holder
"""

__version__ = "0.1.0"
