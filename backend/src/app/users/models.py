"""User directory database models."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String
from sqlalchemy.orm import relationship

from app.storage.db import Base


class User(Base):
    """Platform user who went through KYC registration.

    A user can refer many others (outgoing referral edges) and can be
    referred exactly once (at most one incoming edge).
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)

    # Identity
    full_name = Column(String(255), nullable=False)
    username = Column(String(100), unique=True, nullable=True)
    email = Column(String(255), nullable=False, index=True)

    # KYC
    gender = Column(String(20), nullable=False)
    phone = Column(String(32), nullable=False)  # E.164
    country = Column(String(100), nullable=False)
    address = Column(String(500), nullable=True)
    agree_to_terms = Column(Boolean, default=False)

    # Wallet
    wallet_address = Column(String(128), unique=True, nullable=False, index=True)

    # Referral
    referral_code = Column(String(20), unique=True, nullable=True, index=True)  # Generated on first profile fetch
    total_commission = Column(Float, default=0.0)  # Cache, recomputed on read

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    referrals = relationship(
        "Referral",
        foreign_keys="Referral.referrer_id",
        back_populates="referrer",
        order_by="Referral.created_at.desc()",
    )

    def __repr__(self):
        return f"<User(id={self.id}, wallet={self.wallet_address})>"

    def to_profile(self) -> dict:
        """Short public profile used in referral listings and trees."""
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
        }
