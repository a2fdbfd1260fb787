"""
Accounts module.

Read-only view of staff accounts used to attribute stock movements.
"""
