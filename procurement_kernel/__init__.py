"""
Procurement Kernel

Shared infrastructure for the procurement workflow modules:
- Locked-counter sequence allocation
- Append-only audit history enforcement
- Transactional outbox for domain events
- Structured logging and typed errors
- Fixed-point money arithmetic
"""

__version__ = "0.1.0"
