"""
Module ORM Registry (``procurement_modules._orm_registry``).

Responsibility
--------------
Ensure all SQLAlchemy ORM models are imported so that ``Base.metadata``
contains their table definitions before tables are created.

Architecture position
---------------------
**Modules layer** -- utility.  Imported lazily by
``procurement_kernel.db.engine.create_tables``; nothing else in the kernel
imports it.

Usage
-----
Entrypoints and ``tests/conftest.py`` call ``create_tables()``, which calls
``import_all_orm_models()`` first.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``procurement_modules.*.orm`` module.

    Idempotent -- repeated calls are harmless.
    """
    # Kernel tables first (outbox, sequence counters)
    import procurement_kernel.models  # noqa: F401
    import procurement_kernel.services.sequence_service  # noqa: F401
    # fmt: off
    import procurement_modules.material_requests.orm  # noqa: F401
    # fmt: on
