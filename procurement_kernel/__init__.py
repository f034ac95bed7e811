"""
Procurement Kernel

Shared infrastructure for the purchase order workflow engine:
- Structured JSON logging
- Typed exceptions with machine-readable codes
- SQLAlchemy base classes, engine and session scope
- Append-only enforcement for workflow history
- Atomic sequence counters
"""

__version__ = "0.1.0"
