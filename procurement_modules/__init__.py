"""
Procurement Modules.

Thin orchestration layers over the procurement kernel.  Each module
contains:
- Domain models (the nouns)
- ORM persistence
- Workflows (state machines) and their guards
- A service facade owning the transaction boundary
- A selector for reads

Modules:
- Material Requests: requisitions from draft through approval, supplier
  dispatch, payment and delivery to completion
"""

from procurement_modules import material_requests

__all__ = [
    "material_requests",
]
