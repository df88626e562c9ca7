"""User directory: KYC registration and profile reads."""

import secrets

import phonenumbers
from phonenumbers import NumberParseException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import BadRequestError, ConflictError, NotFoundError
from app.logging_config import get_logger
from app.referral.repository import ReferralRepository
from app.referral.service import ReferralService, normalize_code, referral_service
from app.settings import settings
from app.storage.db import db
from app.users.models import User

logger = get_logger(__name__)

# Exclude confusing characters: 0, O, I, l, 1
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
MAX_CODE_ATTEMPTS = 10


def _generate_code(length: int) -> str:
    """Generate a readable referral code, e.g. ABC12XYZ."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_phone(phone: str, country: str | None = None) -> str:
    """Normalize a phone number to E.164.

    Args:
        phone: Raw phone number
        country: ISO 3166-1 alpha-2 code used as parsing region when it is one

    Returns:
        Phone in E.164 format

    Raises:
        BadRequestError: If the number cannot be parsed or is invalid
    """
    region = country.upper() if country and len(country) == 2 and country.isalpha() else settings.default_phone_region

    try:
        parsed = phonenumbers.parse(phone, region)
    except NumberParseException as e:
        raise BadRequestError(f"Invalid phone number: {e}") from e

    if not phonenumbers.is_valid_number(parsed):
        raise BadRequestError("Invalid phone number.")

    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


class UserService:
    """Service for user registration and profiles."""

    def __init__(self, referrals: ReferralService | None = None):
        self.logger = get_logger(__name__)
        self.referrals = referrals or referral_service

    def register_user(
        self,
        full_name: str,
        email: str,
        phone: str,
        gender: str,
        country: str,
        wallet_address: str,
        agree_to_terms: bool,
        address: str | None = None,
        username: str | None = None,
        referral_code: str | None = None,
    ) -> User:
        """Register a user after KYC, optionally under a referrer.

        The user and, when a referral code is given, the referral edge are
        created in one transaction.

        Raises:
            BadRequestError: Missing fields, terms not accepted, invalid phone
            ConflictError: Wallet address or username already registered
            NotFoundError: Unknown referral code
        """
        wallet_address = (wallet_address or "").strip()
        required = [full_name, email, phone, gender, country, wallet_address]
        if not all(value and str(value).strip() for value in required):
            raise BadRequestError("Missing required fields.")
        if not agree_to_terms:
            raise BadRequestError("Terms must be accepted.")

        normalized_phone = normalize_phone(phone, country)
        code = normalize_code(referral_code)

        with db.session() as session:
            if session.query(User).filter(User.wallet_address == wallet_address).first():
                raise ConflictError("Wallet address already registered.")

            referrer = None
            if code:
                referrer = session.query(User).filter(User.referral_code == code).first()
                if referrer is None:
                    raise NotFoundError("Referral code not found.")

            user = User(
                full_name=full_name.strip(),
                email=email.strip().lower(),
                phone=normalized_phone,
                gender=gender,
                country=country,
                address=address,
                username=username,
                wallet_address=wallet_address,
                agree_to_terms=True,
                total_commission=0.0,
            )
            session.add(user)
            try:
                session.flush()
            except IntegrityError as e:
                raise ConflictError("Wallet address or username already registered.") from e

            if referrer is not None:
                self.referrals.link(session, referrer, user, code)

            self.logger.info(
                "user_registered",
                user_id=user.id,
                referred_by=referrer.id if referrer else None,
            )
            return user

    def get_profile(self, user_id: int) -> User:
        """Fetch a user, ensuring a referral code and a fresh commission total.

        Raises:
            NotFoundError: Unknown user
        """
        with db.session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found.")
            return self._refresh(session, user)

    def get_profile_by_wallet(self, wallet_address: str) -> User:
        """Fetch a user by wallet address.

        Raises:
            BadRequestError: Empty wallet address
            NotFoundError: Unknown wallet
        """
        wallet_address = (wallet_address or "").strip()
        if not wallet_address:
            raise BadRequestError("Wallet address is required.")

        with db.session() as session:
            user = session.query(User).filter(User.wallet_address == wallet_address).first()
            if user is None:
                raise NotFoundError("User not found.")
            return self._refresh(session, user)

    def _refresh(self, session: Session, user: User) -> User:
        user.total_commission = ReferralRepository(session).total_commission_for(user.id)
        if not user.referral_code:
            user.referral_code = self._unique_code(session)
            self.logger.info("referral_code_created", user_id=user.id, code=user.referral_code)
        session.flush()
        return user

    @staticmethod
    def _unique_code(session: Session) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = _generate_code(settings.referral_code_length)
            if not session.query(User.id).filter(User.referral_code == code).first():
                return code
        raise ConflictError("Could not allocate a unique referral code.")


# Singleton instance
user_service = UserService()
