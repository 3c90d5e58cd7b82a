"""
Branchbook Kernel

Multi-tenant bookkeeping core with:
- Closed role model with a single capability table
- Owner team graph and branch delegate (PIC) assignment
- Access resolution for every branch-scoped operation
- Subscription-gated branch limits
- Owner-ratified edit workflow for recorded transactions
"""

__version__ = "0.1.0"
