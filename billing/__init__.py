from .events import CREDIT_PACKS, BillingEvent, handle_billing_event

__all__ = [
    "CREDIT_PACKS",
    "BillingEvent",
    "handle_billing_event",
]
