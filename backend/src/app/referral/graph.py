"""Referral tree traversal.

Ancestors come from the ``ancestors`` cache on the user's incoming edge.
Descendants are discovered breadth-first with one bulk query per tree layer,
then assembled in memory. A visited set bounds the walk by the number of
edges even if stored data were to contain a cycle.
"""

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from app.errors import NotFoundError
from app.logging_config import get_logger
from app.referral.models import Referral
from app.referral.repository import ReferralRepository
from app.users.models import User

logger = get_logger(__name__)


@dataclass
class DescendantNode:
    """A referred user and everyone below them."""
    id: int
    full_name: str
    email: str
    level: int
    commission: float
    referrals: list["DescendantNode"] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "level": self.level,
            "commission": self.commission,
            "referrals": [child.to_dict() for child in self.referrals],
        }

    def walk(self):
        """Yield this node and every node below it."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.referrals))


class ReferralGraphBuilder:
    """Builds ancestor chains and descendant trees for a user."""

    def __init__(self, session: Session):
        self.session = session
        self.repo = ReferralRepository(session)

    def build_ancestors(self, user_id: int) -> list[dict[str, Any]]:
        """Upward chain from the most distant ancestor to the direct referrer.

        Args:
            user_id: User whose referrers to list

        Returns:
            Profiles ``{id, full_name, email}``, oldest first. Empty for a root user.
        """
        edge = self.repo.get_by_referee(user_id)
        if edge is None:
            return []

        ancestor_ids = list(edge.ancestors or [])
        ancestor_edges = self.repo.get_many(ancestor_ids)

        referrer_ids = []
        for ancestor_id in ancestor_ids:
            ancestor = ancestor_edges.get(ancestor_id)
            if ancestor is None:
                logger.warning("ancestor_edge_missing", referral_id=edge.id, ancestor_id=ancestor_id)
                continue
            referrer_ids.append(ancestor.referrer_id)
        referrer_ids.append(edge.referrer_id)

        profiles = self.repo.profiles(referrer_ids)
        chain = []
        for referrer_id in referrer_ids:
            user = profiles.get(referrer_id)
            if user is None:
                logger.warning("ancestor_user_missing", referral_id=edge.id, user_id=referrer_id)
                continue
            chain.append(user.to_profile())
        return chain

    def build_descendants(self, user_id: int) -> list[DescendantNode]:
        """Downward tree of everyone referred directly or indirectly by a user.

        Edges whose referee no longer exists are skipped together with their
        subtree.

        Args:
            user_id: Root of the tree

        Returns:
            Direct referrals, each carrying its own ``referrals`` subtree
        """
        layers: list[list[Referral]] = []
        seen = {user_id}
        frontier = [user_id]

        while frontier:
            layer = []
            for edge in self.repo.referred_by(frontier):
                if edge.referee_id in seen:
                    logger.warning(
                        "referral_cycle_skipped",
                        referral_id=edge.id,
                        referee_id=edge.referee_id,
                    )
                    continue
                seen.add(edge.referee_id)
                layer.append(edge)
            if layer:
                layers.append(layer)
            frontier = [edge.referee_id for edge in layer]

        profiles = self.repo.profiles(seen - {user_id})

        # Parents are attached before children because layers are in BFS order
        children_of: dict[int, list[DescendantNode]] = {user_id: []}
        for layer in layers:
            for edge in layer:
                siblings = children_of.get(edge.referrer_id)
                if siblings is None:
                    # Parent branch was dropped
                    continue
                referee = profiles.get(edge.referee_id)
                if referee is None:
                    logger.warning(
                        "referral_referee_missing",
                        referral_id=edge.id,
                        referee_id=edge.referee_id,
                    )
                    continue
                node = DescendantNode(
                    id=referee.id,
                    full_name=referee.full_name,
                    email=referee.email,
                    level=edge.level or 1,
                    commission=edge.commission or 0.0,
                )
                siblings.append(node)
                children_of[referee.id] = node.referrals

        return children_of[user_id]

    def build_full_tree(self, user_id: int) -> dict[str, Any]:
        """Ancestors and descendants of a user.

        Raises:
            NotFoundError: If the user does not exist
        """
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found.")

        return {
            "user": user.to_profile(),
            "ancestors": self.build_ancestors(user_id),
            "descendants": [node.to_dict() for node in self.build_descendants(user_id)],
        }
