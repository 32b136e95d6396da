"""
SQLFlow Kernel - SQL-change approval workflow engine

A durable, multi-stage approval state machine for SQL change requests:
- Templates of ordered review steps bound to database instances
- Per-step, per-role authorisation of approvals and rejections
- Versioned records across reject / re-submit
- Scheduled execution through an external task runner
"""

__version__ = "0.1.0"
