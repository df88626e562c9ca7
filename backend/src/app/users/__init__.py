"""User directory module.

KYC registration, wallet lookups and referral code allocation.
"""

from app.users.models import User

__all__ = ["User"]
