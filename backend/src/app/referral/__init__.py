"""Referral system module.

Multi-level referral tree:
- Each user is referred at most once, by a referral code
- Edges cache their level and ancestor chain
- Completed investments credit every referrer above at a decaying rate
"""

from app.referral.models import CommissionPayout, Referral, ReferralStatus
from app.referral.service import ReferralService, referral_service

__all__ = ["CommissionPayout", "Referral", "ReferralStatus", "ReferralService", "referral_service"]
