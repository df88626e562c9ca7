"""Tests for the referral lifecycle: creation, updates and restructuring."""

from datetime import datetime, timedelta

import pytest

from app.errors import BadRequestError, ConflictError, NotFoundError
from app.referral.commission import CommissionDistributor
from app.referral.models import CommissionPayout, Referral, ReferralStatus
from app.referral.service import ReferralService, referral_service
from app.storage.db import db


class CountingDistributor(CommissionDistributor):
    """Distributor that records every call."""

    def __init__(self):
        super().__init__()
        self.calls = []

    def distribute(self, referee_id, base_amount, session=None):
        self.calls.append((referee_id, base_amount))
        return super().distribute(referee_id, base_amount, session=session)


def _all_edges() -> list[Referral]:
    with db.session() as session:
        return session.query(Referral).order_by(Referral.id).all()


class TestCreateReferral:

    def test_root_edge(self, make_user):
        referrer, referee = make_user(), make_user()

        referral = referral_service.create_referral(referrer.id, referee.id, referrer.referral_code)

        assert referral.level == 1
        assert referral.ancestors == []
        assert referral.status == ReferralStatus.INITIATED
        assert referral.referral_code == referrer.referral_code

    def test_level_invariant_along_chain(self, make_chain):
        _, edges = make_chain(5)

        for depth, edge in enumerate(edges, start=1):
            assert edge.level == depth
            assert len(edge.ancestors) == edge.level - 1
        assert edges[3].ancestors == [edges[0].id, edges[1].id, edges[2].id]

    def test_referee_referred_once(self, make_user):
        a, b, c = make_user(), make_user(), make_user()
        referral_service.create_referral(a.id, c.id, a.referral_code)

        with pytest.raises(ConflictError):
            referral_service.create_referral(b.id, c.id, b.referral_code)
        assert len(_all_edges()) == 1

    def test_self_referral(self, make_user):
        user = make_user()

        with pytest.raises(BadRequestError):
            referral_service.create_referral(user.id, user.id, user.referral_code)

    def test_cannot_refer_own_ancestor(self, make_chain):
        users, _ = make_chain(3)

        # users[0] is the root of the chain and has no referrer yet
        with pytest.raises(BadRequestError):
            referral_service.create_referral(users[2].id, users[0].id, users[2].referral_code)

    def test_unknown_users(self, make_user):
        user = make_user()

        with pytest.raises(NotFoundError):
            referral_service.create_referral(user.id, 999, user.referral_code)
        with pytest.raises(NotFoundError):
            referral_service.create_referral(999, user.id, "CODE")

    def test_missing_fields(self, make_user):
        a, b = make_user(), make_user()

        with pytest.raises(BadRequestError):
            referral_service.create_referral(a.id, b.id, "  ")

    def test_by_wallet(self, make_user):
        referrer, referee = make_user(), make_user()

        referral = referral_service.create_referral_by_wallet(
            referrer.referral_code.lower(), referee.wallet_address
        )

        assert referral.referrer_id == referrer.id
        assert referral.referee_id == referee.id
        assert referral.referral_code == referrer.referral_code

    def test_by_wallet_errors(self, make_user):
        user = make_user()

        with pytest.raises(NotFoundError):
            referral_service.create_referral_by_wallet(user.referral_code, "0xunknown")
        with pytest.raises(NotFoundError):
            referral_service.create_referral_by_wallet("NOPE", user.wallet_address)
        with pytest.raises(BadRequestError):
            referral_service.create_referral_by_wallet(user.referral_code, user.wallet_address)
        with pytest.raises(BadRequestError):
            referral_service.create_referral_by_wallet("", user.wallet_address)


class TestCheckReferralCode:

    def test_valid_code(self, make_user):
        owner = make_user(referral_code="ABCD2345")

        assert referral_service.check_referral_code(" abcd2345 ").id == owner.id

    def test_unknown_code(self):
        with pytest.raises(NotFoundError):
            referral_service.check_referral_code("ZZZZ9999")

    def test_empty_code(self):
        with pytest.raises(BadRequestError):
            referral_service.check_referral_code("")

    def test_own_code(self, make_user):
        owner = make_user()

        with pytest.raises(BadRequestError):
            referral_service.check_referral_code(owner.referral_code, owner.wallet_address)


class TestListing:

    def test_list_with_growth(self, make_chain):
        _, edges = make_chain(3)
        with db.session() as session:
            session.get(Referral, edges[0].id).created_at = datetime.utcnow() - timedelta(days=30)

        listing = referral_service.list_referrals()

        assert listing["total_referrals"] == 2
        assert listing["growth"] == 50.0
        newest = listing["referrals"][0]
        assert newest["id"] == edges[1].id
        assert newest["referrer"]["id"] == edges[1].referrer_id
        assert newest["referee"]["id"] == edges[1].referee_id

    def test_empty_listing(self):
        assert referral_service.list_referrals() == {"referrals": [], "total_referrals": 0, "growth": 0.0}

    def test_by_user_and_wallet(self, make_user):
        referrer, x, y = make_user(), make_user(), make_user()
        referral_service.create_referral(referrer.id, x.id, referrer.referral_code)
        referral_service.create_referral(referrer.id, y.id, referrer.referral_code)

        by_user = referral_service.list_referrals_by_user(referrer.id)
        by_wallet = referral_service.list_referrals_by_wallet(referrer.wallet_address)

        assert {r["referee"]["id"] for r in by_user} == {x.id, y.id}
        assert by_wallet["referral_code"] == referrer.referral_code
        assert len(by_wallet["referrals"]) == 2

    def test_by_unknown_wallet(self):
        with pytest.raises(NotFoundError):
            referral_service.list_referrals_by_wallet("0xnobody")


class TestUpdateReferral:

    def test_completion_distributes_once(self, make_chain, load_edge):
        users, edges = make_chain(3)
        distributor = CountingDistributor()
        service = ReferralService(distributor=distributor)

        service.update_referral(edges[1].id, commission=500, require_status=False)
        service.update_referral(edges[1].id, status=ReferralStatus.COMPLETED)
        service.update_referral(edges[1].id, status=ReferralStatus.COMPLETED)

        assert distributor.calls == [(users[2].id, 500.0)]
        completed = load_edge(edges[1].id)
        assert completed.status == ReferralStatus.COMPLETED
        # Completing edge is level 1 of its own referee's walk
        assert completed.commission_earned == pytest.approx(50.0)
        assert load_edge(edges[0].id).commission_earned == pytest.approx(5.0)
        assert load_edge(edges[0].id).status == ReferralStatus.PENDING

    def test_returned_edge_is_fresh(self, make_chain):
        _, edges = make_chain(2)
        referral_service.update_referral(edges[0].id, commission=100, require_status=False)

        referral = referral_service.update_referral(edges[0].id, status=ReferralStatus.COMPLETED)

        assert referral.status == ReferralStatus.COMPLETED
        assert referral.commission == 100.0
        assert referral.commission_earned == pytest.approx(10.0)

    def test_completion_distributes_stored_commission(self, make_chain, load_edge):
        _, edges = make_chain(3)
        referral_service.update_referral(edges[1].id, commission=100, require_status=False)

        referral = referral_service.update_referral(edges[1].id, status=ReferralStatus.COMPLETED, commission=500)

        assert referral.commission == 500.0
        assert referral.status == ReferralStatus.COMPLETED
        assert referral.commission_earned == pytest.approx(10.0)
        assert load_edge(edges[0].id).commission_earned == pytest.approx(1.0)

    def test_settled_ancestor_returns_to_pending_on_new_accrual(self, make_chain, load_edge):
        users, edges = make_chain(3)
        referral_service.update_referral(edges[0].id, commission=10, require_status=False)
        referral_service.update_referral(edges[0].id, status=ReferralStatus.COMPLETED)

        # A later distribution from below marks the settled ancestor Pending
        referral_service.distribute_by_wallet(users[2].wallet_address, 100)

        assert load_edge(edges[0].id).status == ReferralStatus.PENDING
        assert load_edge(edges[1].id).status == ReferralStatus.PENDING

    def test_non_completing_update(self, make_chain, load_edge):
        _, edges = make_chain(2)

        referral_service.update_referral(edges[0].id, status=ReferralStatus.PENDING, commission=20)

        edge = load_edge(edges[0].id)
        assert edge.status == ReferralStatus.PENDING
        assert edge.commission == 20.0
        assert edge.commission_earned == 0.0

    def test_status_required_for_full_update(self, make_chain):
        _, edges = make_chain(2)

        with pytest.raises(BadRequestError):
            referral_service.update_referral(edges[0].id, commission=10)

    def test_partial_update(self, make_chain, load_edge):
        _, edges = make_chain(2)

        referral_service.update_referral(edges[0].id, commission=42, require_status=False)

        edge = load_edge(edges[0].id)
        assert edge.commission == 42.0
        assert edge.status == ReferralStatus.INITIATED

    def test_partial_update_needs_a_field(self, make_chain):
        _, edges = make_chain(2)

        with pytest.raises(BadRequestError):
            referral_service.update_referral(edges[0].id, require_status=False)

    @pytest.mark.parametrize("commission", [-1, float("inf"), float("nan"), 1e30])
    def test_unusable_commission(self, make_chain, load_edge, commission):
        _, edges = make_chain(2)

        with pytest.raises(BadRequestError):
            referral_service.update_referral(edges[0].id, status=ReferralStatus.PENDING, commission=commission)
        assert load_edge(edges[0].id).commission == 0.0

    def test_unknown_referral(self):
        with pytest.raises(NotFoundError):
            referral_service.update_referral(999, status=ReferralStatus.PENDING)


class TestDistributeByWallet:

    def test_distributes(self, make_chain, load_edge):
        users, edges = make_chain(3)

        result = referral_service.distribute_by_wallet(users[2].wallet_address, 1000)

        assert [float(c.amount) for c in result.credits] == [100.0, 10.0]
        assert load_edge(edges[1].id).commission_earned == pytest.approx(100.0)

    def test_unknown_wallet(self):
        with pytest.raises(NotFoundError):
            referral_service.distribute_by_wallet("0xnobody", 100)

    @pytest.mark.parametrize("amount", [0, -10, float("inf"), 1e30])
    def test_invalid_amount(self, make_user, amount):
        user = make_user()

        with pytest.raises(BadRequestError):
            referral_service.distribute_by_wallet(user.wallet_address, amount)


class TestReparent:

    def test_moves_subtree(self, make_user, load_edge):
        # r1 -> a -> b -> c   and   r2 -> x
        r1, a, b, c, r2, x = (make_user() for _ in range(6))
        e_a = referral_service.create_referral(r1.id, a.id, "R1")
        e_b = referral_service.create_referral(a.id, b.id, "A")
        e_c = referral_service.create_referral(b.id, c.id, "B")
        e_x = referral_service.create_referral(r2.id, x.id, "R2")

        moved = referral_service.reparent_referral(e_b.id, e_x.id)

        assert moved.referrer_id == x.id
        assert moved.level == 2
        assert moved.ancestors == [e_x.id]
        child = load_edge(e_c.id)
        assert child.level == 3
        assert child.ancestors == [e_x.id, e_b.id]
        assert load_edge(e_a.id).level == 1

    def test_level_invariant_after_move(self, make_chain, make_user):
        users, edges = make_chain(5)
        other = make_user()
        root_edge = referral_service.create_referral(other.id, make_user().id, "X")

        referral_service.reparent_referral(edges[1].id, root_edge.id)

        for edge in _all_edges():
            assert edge.level == len(edge.ancestors) + 1

    def test_rejects_move_into_own_subtree(self, make_chain):
        _, edges = make_chain(4)

        with pytest.raises(BadRequestError):
            referral_service.reparent_referral(edges[0].id, edges[2].id)
        with pytest.raises(BadRequestError):
            referral_service.reparent_referral(edges[1].id, edges[1].id)

    def test_unknown_edges(self, make_chain):
        _, edges = make_chain(2)

        with pytest.raises(NotFoundError):
            referral_service.reparent_referral(999, edges[0].id)
        with pytest.raises(NotFoundError):
            referral_service.reparent_referral(edges[0].id, 999)


class TestDelete:

    def test_subtree_becomes_root(self, make_chain, load_edge):
        _, edges = make_chain(4)

        referral_service.delete_referral(edges[0].id)

        assert load_edge(edges[0].id) is None
        assert load_edge(edges[1].id).level == 1
        assert load_edge(edges[1].id).ancestors == []
        assert load_edge(edges[2].id).ancestors == [edges[1].id]

    def test_payouts_removed_with_edge(self, make_chain):
        users, edges = make_chain(2)
        referral_service.distribute_by_wallet(users[1].wallet_address, 100)

        referral_service.delete_referral(edges[0].id)

        with db.session() as session:
            assert session.query(CommissionPayout).count() == 0

    def test_unknown_referral(self):
        with pytest.raises(NotFoundError):
            referral_service.delete_referral(999)
