"""
Expense Kernel - approval workflow core

A persistence-backed expense approval kernel with:
- Rule-driven approval sequences
- Sequential, percentage, specific-approver and hybrid strategies
- Compare-and-swap protected decisions
- Append-only audit trail
"""

__version__ = "0.1.0"
