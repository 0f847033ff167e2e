"""
Module ORM Registry (``treasury_modules._orm_registry``).

Responsibility
--------------
Ensure every module-level SQLAlchemy ORM model is imported so that
``Base.metadata`` holds their tables (and their immutability declarations
are made) before tables are created or listeners registered.

Architecture position
---------------------
**Modules layer** -- utility.  Imported lazily by
``treasury_kernel.db.engine.create_tables`` and by application start-up.
"""

from treasury_kernel.db.immutability import register_immutability_listeners


def import_all_orm_models() -> None:
    """Import every ``treasury_modules.*.orm`` module.  Idempotent."""
    import treasury_modules.smart_payment.orm  # noqa: F401


def create_all_tables() -> None:
    """Import module models, create every table and enable immutability."""
    from treasury_kernel.db.engine import create_tables

    create_tables()
    register_immutability_listeners()
