"""Multi-level commission distribution.

When an investment tied to a referee is confirmed, every referrer above them
is credited a share of the amount. The direct referrer earns the base rate
and each level further up earns ``decay`` times the level below, so with the
defaults the chain receives 10%, 1%, 0.1%, 0.01%, 0.001%. The walk stops at
the root of the tree or when the rate drops under the configured minimum.
Every edge walked is marked Pending, including levels whose share rounds to
0.00; those get no ledger row.
"""

from contextlib import nullcontext
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Callable, ContextManager, Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import BadRequestError
from app.logging_config import get_logger
from app.referral.models import CommissionPayout, Referral, ReferralStatus
from app.referral.repository import ReferralRepository
from app.settings import settings
from app.storage.db import db

logger = get_logger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class CommissionPolicy:
    """Rates applied while walking up the referral chain."""
    base_rate: Decimal = Decimal("0.10")
    decay: Decimal = Decimal("0.10")
    min_rate: Decimal = Decimal("0.00001")
    partial_credit: bool = True

    def __post_init__(self):
        if not Decimal(0) < self.decay < Decimal(1):
            raise ValueError("decay must be between 0 and 1")
        if self.base_rate <= 0 or self.min_rate <= 0:
            raise ValueError("rates must be positive")

    @classmethod
    def from_settings(cls) -> "CommissionPolicy":
        return cls(
            base_rate=Decimal(str(settings.commission_base_rate)),
            decay=Decimal(str(settings.commission_decay)),
            min_rate=Decimal(str(settings.commission_min_rate)),
            partial_credit=settings.commission_partial_credit,
        )

    def rates(self) -> Iterator[Decimal]:
        """Rate for level 1, 2, ... until the cutoff."""
        rate = self.base_rate
        while rate >= self.min_rate:
            yield rate
            rate *= self.decay


def to_amount(value: float | Decimal | str, name: str = "Amount") -> Decimal:
    """Parse a money amount, rejecting negative, non-finite and oversized values.

    Raises:
        BadRequestError: If the value is not a usable amount
    """
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise BadRequestError(f"{name} is not a number.") from e

    if not amount.is_finite():
        raise BadRequestError(f"{name} must be a finite number.")
    if amount < 0:
        raise BadRequestError(f"{name} cannot be negative.")
    if amount > settings.max_amount:
        raise BadRequestError(f"{name} cannot exceed {settings.max_amount}.")
    return amount


def commission_for(base_amount: Decimal, rate: Decimal) -> Decimal:
    """Commission for one level, rounded half-up to cents."""
    return (base_amount * rate).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class LevelCredit:
    level: int
    referral_id: int
    beneficiary_id: int
    rate: Decimal
    amount: Decimal


@dataclass
class DistributionResult:
    """Outcome of one distribution walk."""
    referee_id: int
    base_amount: Decimal
    credits: list[LevelCredit] = field(default_factory=list)
    stop_reason: str | None = None  # root, rate_cutoff, cycle

    @property
    def total(self) -> Decimal:
        return sum((credit.amount for credit in self.credits), Decimal("0.00"))

    def to_dict(self) -> dict:
        return {
            "referee_id": self.referee_id,
            "base_amount": float(self.base_amount),
            "total": float(self.total),
            "stop_reason": self.stop_reason,
            "credits": [
                {
                    "level": credit.level,
                    "referral_id": credit.referral_id,
                    "beneficiary_id": credit.beneficiary_id,
                    "rate": float(credit.rate),
                    "amount": float(credit.amount),
                }
                for credit in self.credits
            ],
        }


class CommissionDistributor:
    """Walks the chain above a referee and credits each referrer."""

    def __init__(self, policy: CommissionPolicy | None = None):
        self.policy = policy or CommissionPolicy.from_settings()

    def distribute(
        self,
        referee_id: int,
        base_amount: float | Decimal,
        session: Session | None = None,
    ) -> DistributionResult:
        """Distribute commissions for an investment made by ``referee_id``.

        Args:
            referee_id: User whose investment funds the distribution
            base_amount: Investment (or settled commission) amount
            session: Run inside this transaction instead of opening new ones

        Returns:
            Credited levels and why the walk stopped

        Raises:
            BadRequestError: If the amount is negative, non-finite or too large
            SQLAlchemyError: On storage failure. Without an outer session and
                with partial credit enabled, levels credited before the
                failure stay committed.
        """
        amount = to_amount(base_amount)

        result = DistributionResult(referee_id=referee_id, base_amount=amount)

        if session is not None:
            self._walk(result, lambda: nullcontext(session))
        elif self.policy.partial_credit:
            # One transaction per level
            self._walk(result, db.session)
        else:
            with db.session() as shared:
                self._walk(result, lambda: nullcontext(shared))

        logger.info(
            "commissions_distributed",
            referee_id=referee_id,
            base_amount=str(amount),
            levels=len(result.credits),
            total=str(result.total),
            stop_reason=result.stop_reason,
        )
        return result

    def _walk(self, result: DistributionResult, scope: Callable[[], ContextManager[Session]]) -> None:
        current = result.referee_id
        visited = {current}

        for level, rate in enumerate(self.policy.rates(), start=1):
            # Small bases round to 0.00 on upper levels; those edges are still walked
            amount = commission_for(result.base_amount, rate)

            try:
                with scope() as session:
                    edge = ReferralRepository(session).get_by_referee(current)
                    if edge is None:
                        result.stop_reason = "root"
                        return
                    self._credit(session, edge, result.referee_id, level, rate, result.base_amount, amount)
            except SQLAlchemyError:
                logger.error(
                    "commission_distribution_failed",
                    referee_id=result.referee_id,
                    level=level,
                    credited_levels=len(result.credits),
                    exc_info=True,
                )
                raise

            result.credits.append(LevelCredit(
                level=level,
                referral_id=edge.id,
                beneficiary_id=edge.referrer_id,
                rate=rate,
                amount=amount,
            ))

            if edge.referrer_id in visited:
                logger.warning(
                    "commission_chain_cycle",
                    referee_id=result.referee_id,
                    referral_id=edge.id,
                    referrer_id=edge.referrer_id,
                )
                result.stop_reason = "cycle"
                return
            visited.add(edge.referrer_id)
            current = edge.referrer_id

        result.stop_reason = "rate_cutoff"

    @staticmethod
    def _credit(
        session: Session,
        edge: Referral,
        source_user_id: int,
        level: int,
        rate: Decimal,
        base_amount: Decimal,
        amount: Decimal,
    ) -> None:
        values = {Referral.status: ReferralStatus.PENDING}
        if amount > 0:
            # Atomic increment, no read-modify-write
            values[Referral.commission_earned] = Referral.commission_earned + float(amount)
        session.query(Referral).filter(Referral.id == edge.id).update(values, synchronize_session=False)

        if amount > 0:
            session.add(CommissionPayout(
                referral_id=edge.id,
                source_user_id=source_user_id,
                beneficiary_id=edge.referrer_id,
                level=level,
                rate=float(rate),
                base_amount=float(base_amount),
                amount=float(amount),
            ))
        session.flush()

        logger.debug(
            "commission_credited",
            referral_id=edge.id,
            beneficiary_id=edge.referrer_id,
            level=level,
            rate=str(rate),
            amount=str(amount),
        )


def distribute_commissions(
    referee_id: int,
    base_amount: float | Decimal,
    session: Session | None = None,
) -> DistributionResult:
    """Distribute with the configured policy."""
    return CommissionDistributor().distribute(referee_id, base_amount, session=session)
