"""
Module ORM Registry (``procurement_modules._orm_registry``).

Responsibility
--------------
Ensure every SQLAlchemy ORM model is imported so that ``Base.metadata``
contains its table definition before tables are created.

Architecture position
---------------------
**Modules layer** -- utility.  Imports from ``procurement_modules`` and from
``procurement_kernel`` (allowed: modules -> kernel).  The kernel reaches it
only through a deferred import inside ``create_tables()``.

Usage
-----
Scripts and ``tests/conftest.py`` call ``create_all_tables()``.
"""


def import_all_orm_models() -> None:
    """Import kernel and module ORM modules.  Idempotent."""
    # fmt: off
    import procurement_kernel.services.sequence_service  # noqa: F401  # sequence_counters
    import procurement_modules.purchase_orders.orm  # noqa: F401
    # fmt: on


def create_all_tables(install_listeners: bool = True) -> None:
    """Create every table, then optionally register the append-only listeners.

    Preconditions:
        Engine must be initialized via ``init_engine_from_url()``.
    """
    from procurement_kernel.db.engine import create_tables
    from procurement_kernel.db.immutability import register_immutability_listeners

    import_all_orm_models()
    create_tables()
    if install_listeners:
        register_immutability_listeners()
