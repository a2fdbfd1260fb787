"""
Inventory module.

Stock ledger per location, atomic transfers between locations, stock
receiving, and the combined inventory view of ledger rows and devices.
"""
