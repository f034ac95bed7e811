"""
Pure domain layer.

Nothing here touches the ORM, the database or I/O, apart from SystemClock
reading the wall clock.
"""

from procurement_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = ["Clock", "DeterministicClock", "SystemClock"]
