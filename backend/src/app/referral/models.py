"""Referral system database models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Column, DateTime, Enum as SQLEnum, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.storage.db import Base


class ReferralStatus(str, Enum):
    """Referral edge lifecycle states."""
    INITIATED = "Initiated"  # Edge created, nothing settled yet
    PENDING = "Pending"      # Commission accrued through distribution
    COMPLETED = "Completed"  # Settled; completing funds the chain above


class Referral(Base):
    """One referrer -> referee edge of the referral tree.

    Each referee has at most one edge. ``ancestors`` caches the ids of every
    edge above this one, oldest first, so ``level == len(ancestors) + 1``.
    """
    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True)
    referrer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    referee_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    referral_code = Column(String(20), nullable=False, index=True)  # Code used at creation

    # Hierarchy
    level = Column(Integer, nullable=False, default=1)
    ancestors = Column(JSON, nullable=False, default=list)

    # Money
    commission = Column(Float, nullable=False, default=0.0)  # Settled amount, funds the chain on completion
    commission_earned = Column(Float, nullable=False, default=0.0)  # Received from distributions

    status = Column(SQLEnum(ReferralStatus), nullable=False, default=ReferralStatus.INITIATED)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    referrer = relationship("User", foreign_keys=[referrer_id], back_populates="referrals")
    referee = relationship("User", foreign_keys=[referee_id])
    payouts = relationship("CommissionPayout", back_populates="referral", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Referral(id={self.id}, referrer={self.referrer_id}, referee={self.referee_id}, level={self.level})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "referrer_id": self.referrer_id,
            "referee_id": self.referee_id,
            "referral_code": self.referral_code,
            "level": self.level,
            "ancestors": list(self.ancestors or []),
            "commission": self.commission,
            "commission_earned": self.commission_earned,
            "status": self.status.value if self.status else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class CommissionPayout(Base):
    """One credited level of a commission distribution."""
    __tablename__ = "commission_payouts"

    id = Column(Integer, primary_key=True)
    referral_id = Column(Integer, ForeignKey("referrals.id"), nullable=False, index=True)
    source_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # Whose investment
    beneficiary_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # Edge referrer

    level = Column(Integer, nullable=False)  # 1 = direct referrer of the source
    rate = Column(Float, nullable=False)
    base_amount = Column(Float, nullable=False)
    amount = Column(Float, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    referral = relationship("Referral", back_populates="payouts")

    def __repr__(self):
        return f"<CommissionPayout(referral={self.referral_id}, level={self.level}, amount={self.amount})>"
