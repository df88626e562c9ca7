"""Data access for referral edges and the user profiles they link."""

from typing import Iterable, Iterator, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.referral.models import Referral
from app.users.models import User

# Keeps IN (...) lists under SQLite's bound-parameter limit
IN_CHUNK_SIZE = 500


def _chunked(values: Sequence[int], size: int = IN_CHUNK_SIZE) -> Iterator[Sequence[int]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class ReferralRepository:
    """Repository for Referral edges."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, referral_id: int) -> Referral | None:
        """Get edge by ID."""
        return self.session.get(Referral, referral_id)

    def get_by_referee(self, referee_id: int) -> Referral | None:
        """Get the single incoming edge of a user, if any."""
        return self.session.scalars(
            select(Referral).where(Referral.referee_id == referee_id)
        ).first()

    def get_many(self, referral_ids: Iterable[int]) -> dict[int, Referral]:
        """Bulk-load edges keyed by id. Unknown ids are absent from the result."""
        ids = list(dict.fromkeys(referral_ids))
        found: dict[int, Referral] = {}
        for chunk in _chunked(ids):
            for edge in self.session.scalars(select(Referral).where(Referral.id.in_(chunk))):
                found[edge.id] = edge
        return found

    def referred_by(self, referrer_ids: Iterable[int]) -> list[Referral]:
        """Outgoing edges of a set of users, oldest first."""
        ids = list(dict.fromkeys(referrer_ids))
        edges: list[Referral] = []
        for chunk in _chunked(ids):
            edges.extend(self.session.scalars(
                select(Referral)
                .where(Referral.referrer_id.in_(chunk))
                .order_by(Referral.created_at, Referral.id)
            ))
        return edges

    def list_all(self) -> list[Referral]:
        """All edges, newest first."""
        return list(self.session.scalars(
            select(Referral).order_by(Referral.created_at.desc(), Referral.id.desc())
        ))

    def list_for_referrer(self, referrer_id: int) -> list[Referral]:
        """Edges created by one referrer, newest first."""
        return list(self.session.scalars(
            select(Referral)
            .where(Referral.referrer_id == referrer_id)
            .order_by(Referral.created_at.desc(), Referral.id.desc())
        ))

    def count_since(self, since) -> int:
        """Number of edges created at or after ``since``."""
        return self.session.scalar(
            select(func.count(Referral.id)).where(Referral.created_at >= since)
        ) or 0

    def total_commission_for(self, referrer_id: int) -> float:
        """Sum of settled commission across a referrer's edges."""
        return float(self.session.scalar(
            select(func.coalesce(func.sum(Referral.commission), 0.0))
            .where(Referral.referrer_id == referrer_id)
        ) or 0.0)

    def profiles(self, user_ids: Iterable[int]) -> dict[int, User]:
        """Bulk-load users keyed by id. Deleted users are absent from the result."""
        ids = list(dict.fromkeys(user_ids))
        found: dict[int, User] = {}
        for chunk in _chunked(ids):
            for user in self.session.scalars(select(User).where(User.id.in_(chunk))):
                found[user.id] = user
        return found
