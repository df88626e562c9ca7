"""Tests for ancestor chains and descendant trees."""

import pytest

from app.errors import NotFoundError
from app.referral.graph import DescendantNode, ReferralGraphBuilder
from app.referral.models import Referral
from app.referral.service import referral_service
from app.storage.db import db
from app.users.models import User


@pytest.fixture
def family(make_user):
    """root -> a, root -> b, a -> c, c -> d, b -> e."""
    users = {name: make_user(full_name=name) for name in ["root", "a", "b", "c", "d", "e"]}
    for parent, child in [("root", "a"), ("root", "b"), ("a", "c"), ("c", "d"), ("b", "e")]:
        referral_service.create_referral(users[parent].id, users[child].id, users[parent].referral_code)
    return users


def _names(nodes: list[DescendantNode]) -> list[str]:
    return [node.full_name for node in nodes]


def _all_ids(nodes: list[DescendantNode]) -> list[int]:
    return [n.id for node in nodes for n in node.walk()]


class TestAncestors:

    def test_root_has_no_ancestors(self, family):
        with db.session() as session:
            assert ReferralGraphBuilder(session).build_ancestors(family["root"].id) == []

    def test_chain_is_oldest_first(self, family):
        with db.session() as session:
            chain = ReferralGraphBuilder(session).build_ancestors(family["d"].id)

        assert [p["full_name"] for p in chain] == ["root", "a", "c"]
        assert chain[0] == {"id": family["root"].id, "full_name": "root", "email": family["root"].email}

    def test_missing_ancestor_edge_is_skipped(self, family):
        with db.session() as session:
            edge = session.query(Referral).filter(Referral.referee_id == family["a"].id).one()
            # Drop the root -> a edge without touching the cached chains below it
            session.delete(edge)

        with db.session() as session:
            chain = ReferralGraphBuilder(session).build_ancestors(family["d"].id)

        assert [p["full_name"] for p in chain] == ["a", "c"]


class TestDescendants:

    def test_tree_shape(self, family):
        with db.session() as session:
            tree = ReferralGraphBuilder(session).build_descendants(family["root"].id)

        assert _names(tree) == ["a", "b"]
        a, b = tree
        assert _names(a.referrals) == ["c"]
        assert _names(a.referrals[0].referrals) == ["d"]
        assert _names(b.referrals) == ["e"]
        assert a.level == 1
        assert a.referrals[0].referrals[0].level == 3

    def test_every_reachable_user_exactly_once(self, family):
        with db.session() as session:
            tree = ReferralGraphBuilder(session).build_descendants(family["root"].id)

        ids = _all_ids(tree)
        expected = {family[name].id for name in ["a", "b", "c", "d", "e"]}
        assert len(ids) == len(expected)
        assert set(ids) == expected

    def test_leaf_has_no_descendants(self, family):
        with db.session() as session:
            assert ReferralGraphBuilder(session).build_descendants(family["d"].id) == []

    def test_deleted_referee_branch_is_omitted(self, family):
        with db.session() as session:
            session.query(User).filter(User.id == family["c"].id).delete()

        with db.session() as session:
            tree = ReferralGraphBuilder(session).build_descendants(family["root"].id)

        assert _names(tree) == ["a", "b"]
        assert tree[0].referrals == []
        assert family["d"].id not in _all_ids(tree)

    def test_cycle_in_stored_data_terminates(self, make_user):
        x, y = make_user(full_name="x"), make_user(full_name="y")
        with db.session() as session:
            session.add_all([
                Referral(referrer_id=x.id, referee_id=y.id, referral_code="X", level=1, ancestors=[]),
                Referral(referrer_id=y.id, referee_id=x.id, referral_code="Y", level=1, ancestors=[]),
            ])

        with db.session() as session:
            tree = ReferralGraphBuilder(session).build_descendants(x.id)

        assert _names(tree) == ["y"]
        assert tree[0].referrals == []

    def test_to_dict(self, family):
        with db.session() as session:
            tree = ReferralGraphBuilder(session).build_descendants(family["b"].id)

        assert tree[0].to_dict() == {
            "id": family["e"].id,
            "full_name": "e",
            "email": family["e"].email,
            "level": 2,
            "commission": 0.0,
            "referrals": [],
        }


class TestFullTree:

    def test_full_tree(self, family):
        tree = referral_service.get_tree(family["c"].id)

        assert tree["user"]["full_name"] == "c"
        assert [p["full_name"] for p in tree["ancestors"]] == ["root", "a"]
        assert [n["full_name"] for n in tree["descendants"]] == ["d"]

    def test_by_wallet(self, family):
        tree = referral_service.get_tree_by_wallet(family["a"].wallet_address)

        assert tree["user"]["id"] == family["a"].id

    def test_unknown_user(self):
        with pytest.raises(NotFoundError):
            referral_service.get_tree(999)

    def test_unknown_wallet(self):
        with pytest.raises(NotFoundError):
            referral_service.get_tree_by_wallet("0xnobody")
