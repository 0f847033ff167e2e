"""
Treasury business modules.

Each module packages its records, ORM models, selectors, workflows and a
service that owns the transaction boundary for its write operations.
"""
