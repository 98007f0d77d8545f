from billing_core.ledger.models import (
    CostTransaction,
    CreditBalance,
    CreditTransaction,
    ProfitBreakdown,
    ProfitSummary,
    ReconciliationReport,
)

__all__ = [
    "CostTransaction",
    "CreditBalance",
    "CreditTransaction",
    "ProfitBreakdown",
    "ProfitSummary",
    "ReconciliationReport",
]
