from billing_core.workflows.models import PriceChangeRequest, Referral, new_referral_code

__all__ = ["PriceChangeRequest", "Referral", "new_referral_code"]
