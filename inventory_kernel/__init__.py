"""
Inventory Kernel

A transactional stock ledger with:
- One authoritative record per (product, warehouse)
- Append-only movement ledger with post-change snapshots
- Row-locked, all-or-nothing purchase/sale/adjustment operations
- Edge-triggered stock alerts
- Ordered real-time event fan-out to subscribed connections
"""

__version__ = "0.1.0"
