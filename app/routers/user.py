"""
Signed-in user endpoints.
"""

from fastapi import APIRouter, Depends

from app.routers.auth import get_account_service
from app.schemas.auth import UserData, UserDataResponse
from auth.middleware import require_user_id
from auth.service import AccountService

router = APIRouter(prefix="/api/user", tags=["user"])


@router.get("/data", response_model=UserDataResponse, response_model_exclude_none=True)
async def get_user_data(
    user_id: str = Depends(require_user_id),
    accounts: AccountService = Depends(get_account_service),
):
    """Name and verification status for the navbar."""
    user = await accounts.get_user_data(user_id)
    return UserDataResponse(success=True, message="User data loaded", data=UserData.from_user(user))
