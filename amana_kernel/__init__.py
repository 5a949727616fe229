"""
Amana Kernel - credit and settlement core

A cost-plus (Murabaha) trade-finance engine with:
- Trust scoring and cached credit limits
- Deferred debt recognition at goods receipt
- Two-phase order settlement through field agents
- Agent-assisted purchases with a hard disbursement window
- Idempotent payment reconciliation
"""

__version__ = "0.1.0"
