from fastapi import APIRouter, Depends

from otp_auth.dependencies import Services, get_access_token_data, get_services
from otp_auth.exceptions import NotFoundError
from otp_auth.schemas.users import ProfileResponse, ProfileUpdate, UserEnvelope
from otp_auth.services.tokens import AccessTokenData

router = APIRouter(tags=["users"])


@router.get("/profile", response_model=ProfileResponse)
def get_profile(
    token_data: AccessTokenData = Depends(get_access_token_data),
    services: Services = Depends(get_services),
) -> ProfileResponse:
    user = services.users.get_user(token_data.user_id)
    if user is None:
        raise NotFoundError("User not found.")
    return ProfileResponse(
        message="User profile retrieved successfully",
        data=UserEnvelope(user=user),
    )


@router.post("/create-profile", response_model=ProfileResponse)
def create_profile(
    payload: ProfileUpdate,
    token_data: AccessTokenData = Depends(get_access_token_data),
    services: Services = Depends(get_services),
) -> ProfileResponse:
    user = services.users.update_profile(
        token_data.user_id, payload.full_name, payload.age, payload.institution
    )
    return ProfileResponse(
        message="Profile created/updated successfully",
        data=UserEnvelope(user=user),
    )
