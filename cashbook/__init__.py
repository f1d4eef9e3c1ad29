"""
Cashbook - Source Package

Daily cash ledger for AE / AE-QT work income, USDT conversion,
withdrawals and household expenses, plus a small P2P rate proxy.

DESIGN PRINCIPLES:
1. Formulas are data, evaluated without native eval
2. Every cell edit recalculates only the fields that depend on it
3. Rejected input never touches the stored row
4. Every edit is auditable
5. Storage layer is swappable (local JSON files, cloud sync on top)
"""

__version__ = "1.0.0"
__author__ = "Cashbook Team"
