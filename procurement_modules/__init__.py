"""
Procurement Modules.

Orchestration layers over the procurement kernel and engines.  Each module
contains:
- Domain models (the nouns)
- ORM persistence models
- Workflows (state machines)
- A service facade that owns the transaction boundary

Modules:
- Purchase orders: creation, stage-gated editing, multi-level approval,
  rejection, numbering, audit trail, order notification
"""
