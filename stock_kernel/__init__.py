"""
Stock Kernel - inventory stock ledger

A transactional, append-only stock ledger with:
- Per (product, location) balances kept consistent with the movement log
- Row-level locking and bounded conflict retry
- Goods Received Note workflow (Draft -> Posted / Cancelled)
- Reservation contract for order and job flows
- Read-only query facade
"""

__version__ = "0.1.0"
