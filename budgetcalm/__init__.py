"""
BudgetCalm - Data and Sync Layer

Local-first storage for monthly budgets and expenses, with optional
replication to a remote store for cross-device sync.

DESIGN PRINCIPLES:
1. Every write is validated and normalized before it reaches the store
2. Expenses always resolve to a budget of their month
3. Sync never blocks or fails local work
4. One owned connection handle per storage file
"""

__version__ = "1.0.0"
__author__ = "BudgetCalm Team"
