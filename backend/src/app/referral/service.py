"""Referral service: creating, updating and restructuring referral edges."""

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import BadRequestError, ConflictError, NotFoundError
from app.logging_config import get_logger
from app.referral.commission import CommissionDistributor, DistributionResult, to_amount
from app.referral.graph import ReferralGraphBuilder
from app.referral.models import Referral, ReferralStatus
from app.referral.repository import ReferralRepository
from app.settings import settings
from app.storage.db import db
from app.users.models import User

logger = get_logger(__name__)


def normalize_code(code: str | None) -> str:
    return (code or "").upper().strip()


def _find_user_by_wallet(session: Session, wallet_address: str) -> User | None:
    return session.query(User).filter(User.wallet_address == wallet_address.strip()).first()


def _find_user_by_code(session: Session, code: str) -> User | None:
    return session.query(User).filter(User.referral_code == code).first()


class ReferralService:
    """Service for referral edges and the invariants that hold between them.

    - A user is referred at most once.
    - Nobody refers themselves.
    - ``level == len(ancestors) + 1`` and ``ancestors`` lists the edges above,
      oldest first.
    """

    def __init__(self, distributor: CommissionDistributor | None = None):
        self.logger = get_logger(__name__)
        self._distributor = distributor

    @property
    def distributor(self) -> CommissionDistributor:
        # Built lazily so settings overrides in tests take effect
        return self._distributor or CommissionDistributor()

    # ==================== CREATE ====================

    def check_referral_code(self, code: str, wallet_address: str | None = None) -> User:
        """Validate a referral code and return its owner.

        Args:
            code: Referral code entered by the user
            wallet_address: Wallet of the user about to be referred, if known

        Returns:
            The referrer

        Raises:
            BadRequestError: Empty code or the wallet owns the code
            NotFoundError: No user owns the code
        """
        code = normalize_code(code)
        if not code:
            raise BadRequestError("Referral code is required.")

        with db.session() as session:
            referrer = _find_user_by_code(session, code)
            if referrer is None:
                raise NotFoundError("Referral code not found.")

            if wallet_address and referrer.wallet_address == wallet_address.strip():
                raise BadRequestError("Referrer and referee cannot be the same user.")

            return referrer

    def link(self, session: Session, referrer: User, referee: User, referral_code: str) -> Referral:
        """Create the edge ``referrer -> referee`` inside an open transaction.

        Raises:
            BadRequestError: Self-referral
            ConflictError: The referee already has a referrer
        """
        if referrer.id == referee.id:
            raise BadRequestError("Referrer and referee cannot be the same user.")

        repo = ReferralRepository(session)
        if repo.get_by_referee(referee.id) is not None:
            raise ConflictError("Referee has already been referred.")

        parent = repo.get_by_referee(referrer.id)
        if parent is not None and referee.id in self._chain_users(repo, parent):
            # The referee sits above the referrer already
            raise BadRequestError("Referral would create a cycle.")

        referral = Referral(
            referrer_id=referrer.id,
            referee_id=referee.id,
            referral_code=normalize_code(referral_code),
            level=parent.level + 1 if parent else 1,
            ancestors=[*(parent.ancestors or []), parent.id] if parent else [],
            status=ReferralStatus.INITIATED,
            commission=0.0,
            commission_earned=0.0,
        )
        session.add(referral)
        try:
            session.flush()
        except IntegrityError as e:
            # Concurrent creation for the same referee
            raise ConflictError("Referee has already been referred.") from e

        self.logger.info(
            "referral_created",
            referral_id=referral.id,
            referrer_id=referrer.id,
            referee_id=referee.id,
            level=referral.level,
        )
        return referral

    def create_referral(self, referrer_id: int, referee_id: int, referral_code: str) -> Referral:
        """Create a referral edge between two known users.

        Raises:
            BadRequestError: Missing fields or self-referral
            NotFoundError: Unknown referrer or referee
            ConflictError: Referee already referred
        """
        if not referrer_id or not referee_id or not normalize_code(referral_code):
            raise BadRequestError("All fields are required.")
        if referrer_id == referee_id:
            raise BadRequestError("Referrer and referee cannot be the same user.")

        with db.session() as session:
            referrer = session.get(User, referrer_id)
            if referrer is None:
                raise NotFoundError("Referrer not found.")
            referee = session.get(User, referee_id)
            if referee is None:
                raise NotFoundError("Referee not found.")

            return self.link(session, referrer, referee, referral_code)

    def create_referral_by_wallet(self, referral_code: str, wallet_address: str) -> Referral:
        """Link the user owning ``wallet_address`` under the owner of ``referral_code``.

        Raises:
            BadRequestError: Missing fields or self-referral
            NotFoundError: Unknown wallet or code
            ConflictError: Referee already referred
        """
        code = normalize_code(referral_code)
        if not code or not (wallet_address or "").strip():
            raise BadRequestError("Referral code and wallet address are required.")

        with db.session() as session:
            referee = _find_user_by_wallet(session, wallet_address)
            if referee is None:
                raise NotFoundError("Referee not found.")
            referrer = _find_user_by_code(session, code)
            if referrer is None:
                raise NotFoundError("Referrer not found.")

            return self.link(session, referrer, referee, code)

    # ==================== READ ====================

    def list_referrals(self) -> dict[str, Any]:
        """All edges with profiles, total count and recent growth percentage."""
        since = datetime.utcnow() - timedelta(days=settings.referral_growth_window_days)

        with db.session() as session:
            repo = ReferralRepository(session)
            edges = repo.list_all()
            recent = repo.count_since(since)
            profiles = repo.profiles(
                [e.referrer_id for e in edges] + [e.referee_id for e in edges]
            )

            total = len(edges)
            growth = round(recent / total * 100, 2) if total else 0.0

            return {
                "referrals": [self._with_profiles(edge, profiles) for edge in edges],
                "total_referrals": total,
                "growth": growth,
            }

    def list_referrals_by_user(self, user_id: int) -> list[dict[str, Any]]:
        """Edges where ``user_id`` is the referrer, newest first."""
        with db.session() as session:
            repo = ReferralRepository(session)
            edges = repo.list_for_referrer(user_id)
            profiles = repo.profiles(e.referee_id for e in edges)
            return [self._with_profiles(edge, profiles, referrer=False) for edge in edges]

    def list_referrals_by_wallet(self, wallet_address: str) -> dict[str, Any]:
        """Referral code and outgoing edges of the user owning a wallet.

        Raises:
            NotFoundError: Unknown wallet
        """
        with db.session() as session:
            user = _find_user_by_wallet(session, wallet_address)
            if user is None:
                raise NotFoundError("User not found.")
            user_id, code = user.id, user.referral_code

        return {
            "referral_code": code,
            "referrals": self.list_referrals_by_user(user_id),
        }

    def get_tree(self, user_id: int) -> dict[str, Any]:
        """Ancestors and descendants of a user."""
        with db.session() as session:
            return ReferralGraphBuilder(session).build_full_tree(user_id)

    def get_tree_by_wallet(self, wallet_address: str) -> dict[str, Any]:
        """Ancestors and descendants of the user owning a wallet."""
        with db.session() as session:
            user = _find_user_by_wallet(session, wallet_address)
            if user is None:
                raise NotFoundError("User not found.")
            return ReferralGraphBuilder(session).build_full_tree(user.id)

    # ==================== UPDATE ====================

    def update_referral(
        self,
        referral_id: int,
        status: ReferralStatus | None = None,
        commission: float | None = None,
        require_status: bool = True,
    ) -> Referral:
        """Update status and/or settled commission of an edge.

        Moving into ``Completed`` distributes the commission stored on the edge
        before this update up the chain, once. The transition is claimed with a
        conditional UPDATE so concurrent or repeated completions distribute only
        for the first caller. A new ``commission`` is applied afterwards.

        Args:
            referral_id: Edge to update
            status: New status
            commission: New settled commission
            require_status: Full update semantics, status is mandatory

        Raises:
            BadRequestError: Missing status, nothing to update, invalid commission
            NotFoundError: Unknown edge
        """
        if require_status and status is None:
            raise BadRequestError("Status is required.")
        if status is None and commission is None:
            raise BadRequestError("No fields provided for update.")
        if commission is not None:
            commission = float(to_amount(commission, "Commission"))

        with db.session() as session:
            referral = session.get(Referral, referral_id)
            if referral is None:
                raise NotFoundError("Referral not found.")

            settled = referral.commission or 0.0

            distribution: DistributionResult | None = None
            if status == ReferralStatus.COMPLETED:
                completed = session.query(Referral).filter(Referral.id == referral_id)
                claimed = completed.filter(
                    Referral.status != ReferralStatus.COMPLETED,
                ).update({Referral.status: ReferralStatus.COMPLETED}, synchronize_session=False)

                if claimed:
                    distribution = self.distributor.distribute(referral.referee_id, settled, session=session)
                    # The walk starts at this edge and marks it Pending
                    completed.update({Referral.status: ReferralStatus.COMPLETED}, synchronize_session=False)
            elif status is not None:
                referral.status = status

            if commission is not None:
                referral.commission = commission

            session.flush()
            session.refresh(referral)

            self.logger.info(
                "referral_updated",
                referral_id=referral_id,
                status=referral.status.value,
                commission=referral.commission,
                distributed=distribution is not None,
            )
            return referral

    def distribute_by_wallet(self, wallet_address: str, investment_amount: float) -> DistributionResult:
        """Distribute commissions for an investment made by the owner of a wallet.

        Raises:
            BadRequestError: Missing wallet or non-positive amount
            NotFoundError: Unknown wallet
        """
        if not (wallet_address or "").strip() or not investment_amount:
            raise BadRequestError("Wallet address and investment amount are required.")
        if investment_amount < 0:
            raise BadRequestError("Investment amount cannot be negative.")

        with db.session() as session:
            referee = _find_user_by_wallet(session, wallet_address)
            if referee is None:
                raise NotFoundError("Referee not found.")
            referee_id = referee.id

        return self.distributor.distribute(referee_id, investment_amount)

    # ==================== RESTRUCTURE ====================

    def reparent_referral(self, referral_id: int, new_parent_referral_id: int) -> Referral:
        """Move an edge (and its subtree) under another edge.

        The edge's referrer becomes the new parent's referee. Level and
        ancestors are recomputed for the edge and every edge below it.

        Raises:
            BadRequestError: Missing ids, or the new parent lies inside the moved subtree
            NotFoundError: Unknown edge or parent
        """
        if not referral_id or not new_parent_referral_id:
            raise BadRequestError("Referral ID and new parent referral ID are required.")

        with db.session() as session:
            repo = ReferralRepository(session)
            referral = repo.get_by_id(referral_id)
            if referral is None:
                raise NotFoundError("Referral not found.")
            parent = repo.get_by_id(new_parent_referral_id)
            if parent is None:
                raise NotFoundError("New parent referral not found.")

            if parent.id == referral.id or referral.referee_id in self._chain_users(repo, parent):
                raise BadRequestError("New parent lies inside the moved subtree.")

            old_referrer_id = referral.referrer_id
            referral.referrer_id = parent.referee_id
            referral.level = parent.level + 1
            referral.ancestors = [*(parent.ancestors or []), parent.id]
            session.flush()

            updated = self._rebuild_subtree(repo, referral)

            self.logger.info(
                "referral_reparented",
                referral_id=referral.id,
                old_referrer_id=old_referrer_id,
                new_referrer_id=referral.referrer_id,
                level=referral.level,
                descendants_updated=updated,
            )
            return referral

    def delete_referral(self, referral_id: int) -> None:
        """Remove an edge. Its referee becomes the root of their own subtree.

        Raises:
            NotFoundError: Unknown edge
        """
        with db.session() as session:
            repo = ReferralRepository(session)
            referral = repo.get_by_id(referral_id)
            if referral is None:
                raise NotFoundError("Referral not found.")

            referee_id = referral.referee_id
            session.delete(referral)
            session.flush()

            updated = 0
            for child in repo.referred_by([referee_id]):
                child.level = 1
                child.ancestors = []
                updated += 1 + self._rebuild_subtree(repo, child)

            self.logger.warning(
                "referral_deleted",
                referral_id=referral_id,
                referee_id=referee_id,
                descendants_updated=updated,
            )

    # ==================== HELPERS ====================

    @staticmethod
    def _chain_users(repo: ReferralRepository, edge: Referral) -> set[int]:
        """Users on the path from the root down to ``edge.referee``."""
        users = {edge.referrer_id, edge.referee_id}
        for ancestor in repo.get_many(edge.ancestors or []).values():
            users.add(ancestor.referrer_id)
            users.add(ancestor.referee_id)
        return users

    def _rebuild_subtree(self, repo: ReferralRepository, root: Referral) -> int:
        """Recompute level and ancestors below ``root``. Returns edges updated."""
        seen = {root.referee_id}
        frontier = [root]
        updated = 0

        while frontier:
            by_referee = {edge.referee_id: edge for edge in frontier}
            next_frontier = []
            for child in repo.referred_by(by_referee):
                if child.referee_id in seen:
                    self.logger.warning("referral_cycle_skipped", referral_id=child.id)
                    continue
                seen.add(child.referee_id)
                parent = by_referee[child.referrer_id]
                child.level = parent.level + 1
                child.ancestors = [*(parent.ancestors or []), parent.id]
                next_frontier.append(child)
                updated += 1
            repo.session.flush()
            frontier = next_frontier

        return updated

    @staticmethod
    def _with_profiles(edge: Referral, profiles: dict[int, User], referrer: bool = True) -> dict[str, Any]:
        data = edge.to_dict()
        referee = profiles.get(edge.referee_id)
        data["referee"] = referee.to_profile() if referee else None
        if referrer:
            owner = profiles.get(edge.referrer_id)
            data["referrer"] = owner.to_profile() if owner else None
        return data


# Singleton instance
referral_service = ReferralService()
