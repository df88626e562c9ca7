"""Domain errors raised by services and mapped to HTTP responses."""


class ReferralError(Exception):
    """Base error for user and referral operations."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequestError(ReferralError):
    """Missing or invalid input, self-referral, negative amounts."""

    status_code = 400


class NotFoundError(ReferralError):
    """Unknown user, referral or referral code."""

    status_code = 404


class ConflictError(ReferralError):
    """Duplicate referral for a referee or duplicate registration."""

    status_code = 409
