from .ledger import BalanceView, CreditLedger, next_month_start
from .renewal import RenewalSummary, renew_free_credits

__all__ = [
    "BalanceView",
    "CreditLedger",
    "RenewalSummary",
    "next_month_start",
    "renew_free_credits",
]
