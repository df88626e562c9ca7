"""User API v1 endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel, EmailStr, Field

from app.users.models import User
from app.users.service import user_service

router = APIRouter(prefix="/user", tags=["user"])


# ─── Request/Response Models ─────────────────────────────────────────────────

class RegisterRequest(BaseModel):
    """KYC registration form."""
    full_name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: str = Field(..., min_length=3, max_length=32)
    gender: str = Field(..., min_length=1, max_length=20)
    country: str = Field(..., min_length=2, max_length=100)
    wallet_address: str = Field(..., min_length=1, max_length=128)
    agree_to_terms: bool
    address: str | None = Field(default=None, max_length=500)
    username: str | None = Field(default=None, max_length=100)
    referral_code: str | None = Field(default=None, max_length=20)


class UserResponse(BaseModel):
    """User profile."""
    id: int
    full_name: str
    username: str | None
    email: str
    gender: str
    phone: str
    country: str
    address: str | None
    wallet_address: str
    referral_code: str | None
    total_commission: float
    created_at: str


def _to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        full_name=user.full_name,
        username=user.username,
        email=user.email,
        gender=user.gender,
        phone=user.phone,
        country=user.country,
        address=user.address,
        wallet_address=user.wallet_address,
        referral_code=user.referral_code,
        total_commission=user.total_commission or 0.0,
        created_at=user.created_at.isoformat(),
    )


# ─── Endpoints ───────────────────────────────────────────────────────────────

@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_user(request: RegisterRequest):
    """Register a user after KYC.

    A referral code links the new user under its owner.
    """
    user = user_service.register_user(
        full_name=request.full_name,
        email=request.email,
        phone=request.phone,
        gender=request.gender,
        country=request.country,
        wallet_address=request.wallet_address,
        agree_to_terms=request.agree_to_terms,
        address=request.address,
        username=request.username,
        referral_code=request.referral_code,
    )
    return {
        "success": True,
        "message": "User registered successfully",
        "user": _to_response(user),
    }


@router.get("/wallet/{wallet_address}", response_model=UserResponse)
async def get_user_by_wallet(wallet_address: str):
    """Get a user's profile by wallet address."""
    return _to_response(user_service.get_profile_by_wallet(wallet_address))


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: int):
    """Get a user's profile.

    Allocates a referral code on first fetch.
    """
    return _to_response(user_service.get_profile(user_id))
