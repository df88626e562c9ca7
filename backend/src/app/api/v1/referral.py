"""Referral API v1 endpoints."""

from typing import Any

from fastapi import APIRouter, Request, status
from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.api.rate_limit import limiter
from app.logging_config import get_logger
from app.referral.models import ReferralStatus
from app.referral.service import referral_service
from app.settings import settings

logger = get_logger(__name__)

router = APIRouter(prefix="/referral", tags=["referral"])

MAX_AMOUNT = float(settings.max_amount)


# ==================== MODELS ====================


class CheckCodeRequest(BaseModel):
    """Request to validate a referral code."""
    referral_code: str = Field(..., min_length=1, max_length=20)
    wallet_address: str | None = None  # Rejects self-referral when given


class CreateReferralRequest(BaseModel):
    """Request to link two users by id."""
    referrer_id: int = Field(..., gt=0)
    referee_id: int = Field(..., gt=0)
    referral_code: str = Field(..., min_length=1, max_length=20)


class CreateByWalletRequest(BaseModel):
    """Request to link the owner of a wallet under a referral code."""
    referral_code: str = Field(..., min_length=1, max_length=20)
    wallet_address: str = Field(..., min_length=1, max_length=128)


class UpdateReferralRequest(BaseModel):
    """Full update: status is mandatory."""
    model_config = ConfigDict(extra="forbid")

    status: ReferralStatus
    commission: float | None = Field(default=None, ge=0, le=MAX_AMOUNT, allow_inf_nan=False)


class PatchReferralRequest(BaseModel):
    """Partial update. Only these fields can change; level and ancestors never do."""
    model_config = ConfigDict(extra="forbid")

    status: ReferralStatus | None = None
    commission: float | None = Field(default=None, ge=0, le=MAX_AMOUNT, allow_inf_nan=False)

    @model_validator(mode="after")
    def _not_empty(self):
        if self.status is None and self.commission is None:
            raise ValueError("No fields provided for update.")
        return self


class DistributeByWalletRequest(BaseModel):
    """Request to distribute commissions for an investment."""
    wallet_address: str = Field(..., min_length=1, max_length=128)
    investment_amount: float = Field(..., gt=0, le=MAX_AMOUNT, allow_inf_nan=False)


class ReparentRequest(BaseModel):
    """Request to move a referral under another referral."""
    referral_id: int = Field(..., gt=0)
    new_parent_referral_id: int = Field(..., gt=0)


# ==================== ENDPOINTS ====================


@router.post("/check")
@limiter.limit(settings.referral_check_rate_limit)
async def check_referral_code(request: Request, body: CheckCodeRequest) -> dict[str, Any]:
    """Validate a referral code.

    Used during registration to show who is referring the new user.
    """
    referrer = referral_service.check_referral_code(body.referral_code, body.wallet_address)

    return {
        "success": True,
        "message": "Referral code is valid.",
        "referrer": {**referrer.to_profile(), "referral_code": referrer.referral_code},
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_referral(body: CreateReferralRequest) -> dict[str, Any]:
    """Create a referral between two users."""
    referral = referral_service.create_referral(
        referrer_id=body.referrer_id,
        referee_id=body.referee_id,
        referral_code=body.referral_code,
    )
    return {"success": True, "referral": referral.to_dict()}


@router.post("/wallet", status_code=status.HTTP_201_CREATED)
async def create_referral_by_wallet(body: CreateByWalletRequest) -> dict[str, Any]:
    """Create a referral for the owner of a wallet address."""
    referral = referral_service.create_referral_by_wallet(
        referral_code=body.referral_code,
        wallet_address=body.wallet_address,
    )
    return {"success": True, "referral": referral.to_dict()}


@router.get("")
async def get_all_referrals() -> dict[str, Any]:
    """All referrals with total count and 7-day growth."""
    return {"success": True, **referral_service.list_referrals()}


@router.get("/user/{user_id}")
async def get_referrals_by_user(user_id: int) -> dict[str, Any]:
    """Referrals made by a user."""
    return {"success": True, "referrals": referral_service.list_referrals_by_user(user_id)}


@router.get("/wallet/{wallet_address}")
async def get_referrals_by_wallet(wallet_address: str) -> dict[str, Any]:
    """Referral code and referrals of the owner of a wallet."""
    return {"success": True, **referral_service.list_referrals_by_wallet(wallet_address)}


@router.patch("/update-by-wallet")
async def distribute_by_wallet(body: DistributeByWalletRequest) -> dict[str, Any]:
    """Distribute commissions up the chain of the wallet owner."""
    result = referral_service.distribute_by_wallet(body.wallet_address, body.investment_amount)
    return {
        "success": True,
        "message": "Commissions distributed successfully.",
        "distribution": result.to_dict(),
    }


@router.get("/tree/user/{user_id}")
async def get_referral_tree_by_user(user_id: int) -> dict[str, Any]:
    """Ancestors and descendants of a user."""
    return {"success": True, "referral_tree": referral_service.get_tree(user_id)}


@router.patch("/tree/update")
async def update_referral_tree(body: ReparentRequest) -> dict[str, Any]:
    """Move a referral and its subtree under another referral."""
    referral = referral_service.reparent_referral(body.referral_id, body.new_parent_referral_id)
    return {"success": True, "message": "Referral tree updated.", "referral": referral.to_dict()}


@router.get("/tree/{wallet_address}")
async def get_referral_tree_by_wallet(wallet_address: str) -> dict[str, Any]:
    """Ancestors and descendants of the owner of a wallet."""
    return {"success": True, "referral_tree": referral_service.get_tree_by_wallet(wallet_address)}


@router.put("/{referral_id}")
async def update_referral(referral_id: int, body: UpdateReferralRequest) -> dict[str, Any]:
    """Update status and commission.

    Completing a referral distributes its commission up the chain once.
    """
    referral = referral_service.update_referral(
        referral_id,
        status=body.status,
        commission=body.commission,
    )
    return {"success": True, "message": "Referral updated successfully.", "referral": referral.to_dict()}


@router.patch("/{referral_id}")
async def partial_update_referral(referral_id: int, body: PatchReferralRequest) -> dict[str, Any]:
    """Update status and/or commission."""
    referral = referral_service.update_referral(
        referral_id,
        status=body.status,
        commission=body.commission,
        require_status=False,
    )
    return {"success": True, "message": "Referral updated successfully.", "referral": referral.to_dict()}


@router.delete("/{referral_id}")
async def delete_referral(referral_id: int) -> dict[str, Any]:
    """Remove a referral (administrative correction)."""
    referral_service.delete_referral(referral_id)
    logger.info("referral_delete_requested", referral_id=referral_id)
    return {"success": True, "message": "Referral deleted."}
