"""poolvest backend: referral tree and commission engine."""

__version__ = "1.0.0"
