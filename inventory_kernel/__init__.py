"""
Inventory Kernel

A multi-warehouse stock ledger with:
- Atomic stock movements (inbound, transfer, sale, return, write-off, donation, adjustment)
- Append-only transaction history
- Non-negative stock levels under concurrent writers
- Read-side snapshots and sales analytics derived from the ledger
"""

__version__ = "0.1.0"
