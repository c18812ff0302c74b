"""
Users API: the caller's own entitlement record.

GET   /api/users/usage     counters as they stand now
GET   /api/users/profile   entitlement record
PATCH /api/users/profile   {seesAds}
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from askmoe.core.auth import get_admitted_user_id
from askmoe.features.entitlements.service import usage_summary
from askmoe.features.users.service import require_user, set_sees_ads

router = APIRouter(prefix="/api/users", tags=["users"])


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sees_ads: bool = Field(..., alias="seesAds")


@router.get("/usage")
def get_usage(user_id: str = Depends(get_admitted_user_id)):
    return usage_summary(user_id)


@router.get("/profile")
def get_profile(user_id: str = Depends(get_admitted_user_id)):
    return require_user(user_id).to_dict()


@router.patch("/profile")
def update_profile(body: ProfileUpdate, user_id: str = Depends(get_admitted_user_id)):
    return set_sees_ads(user_id, body.sees_ads).to_dict()
