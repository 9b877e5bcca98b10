"""
Account authentication API endpoints.

Session tokens travel in the HTTP-only `token` cookie; nothing
token-related is ever placed in a response body.
"""

from fastapi import APIRouter, Depends, Request, Response

from app.config import AppConfig
from app.schemas.auth import (
    AccountData,
    AccountResponse,
    EmailRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyAccountRequest,
)
from auth.middleware import clear_session_cookie, require_user_id, set_session_cookie
from auth.service import AccountService

router = APIRouter(prefix="/api/auth", tags=["auth"])


def get_account_service(request: Request) -> AccountService:
    return request.app.state.accounts


def get_config(request: Request) -> AppConfig:
    return request.app.state.config


# =============================================================================
# Registration / Session
# =============================================================================


@router.post(
    "/register",
    response_model=AccountResponse,
    response_model_exclude_none=True,
    status_code=201,
)
async def register(
    body: RegisterRequest,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
    config: AppConfig = Depends(get_config),
):
    """Register a new account and sign it in."""
    result = await accounts.register(body.name, body.email, body.password)
    set_session_cookie(response, result.token, production=config.is_production)

    message = "User registered successfully"
    if not result.email_sent:
        message = "User registered successfully, but the welcome email could not be sent."

    return AccountResponse(success=True, message=message, data=AccountData.from_user(result.user))


@router.post("/login", response_model=AccountResponse, response_model_exclude_none=True)
async def login(
    body: LoginRequest,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
    config: AppConfig = Depends(get_config),
):
    """Login with email/password."""
    result = await accounts.login(body.email, body.password)
    set_session_cookie(response, result.token, production=config.is_production)
    return AccountResponse(
        success=True, message="Login successful", data=AccountData.from_user(result.user)
    )


@router.post("/logout", response_model=MessageResponse, response_model_exclude_none=True)
async def logout(response: Response, config: AppConfig = Depends(get_config)):
    """Logout (stateless: the client's cookie is dropped)."""
    clear_session_cookie(response, production=config.is_production)
    return MessageResponse(success=True, message="Logged Out")


@router.get("/is-auth", response_model=MessageResponse, response_model_exclude_none=True)
async def is_authenticated(user_id: str = Depends(require_user_id)):
    """Cheap check that the session cookie is still good."""
    return MessageResponse(success=True, message="User is authenticated")


# =============================================================================
# Email Verification
# =============================================================================


@router.post("/send-verify-otp", response_model=MessageResponse, response_model_exclude_none=True)
async def send_verify_otp(
    user_id: str = Depends(require_user_id),
    accounts: AccountService = Depends(get_account_service),
):
    """Email a verification code to the signed-in user."""
    email_sent = await accounts.send_verify_otp(user_id)
    if not email_sent:
        return MessageResponse(success=True, message="OTP saved, but email failed to send.")
    return MessageResponse(success=True, message="Verification OTP sent successfully.")


@router.post("/verify-account", response_model=MessageResponse, response_model_exclude_none=True)
async def verify_account(
    body: VerifyAccountRequest,
    user_id: str = Depends(require_user_id),
    accounts: AccountService = Depends(get_account_service),
):
    """Confirm email ownership with the verification code."""
    await accounts.verify_email(user_id, body.otp)
    return MessageResponse(success=True, message="Email verified successfully")


# =============================================================================
# Password Reset
# =============================================================================


@router.post("/send-reset-otp", response_model=MessageResponse, response_model_exclude_none=True)
async def send_reset_otp(
    body: EmailRequest,
    accounts: AccountService = Depends(get_account_service),
):
    """Email a password reset code."""
    email_sent = await accounts.send_reset_otp(body.email)
    if not email_sent:
        return MessageResponse(success=True, message="OTP saved, but email failed to send.")
    return MessageResponse(success=True, message="OTP sent to your email")


@router.post("/resend-reset-otp", response_model=MessageResponse, response_model_exclude_none=True)
async def resend_reset_otp(
    body: EmailRequest,
    accounts: AccountService = Depends(get_account_service),
):
    """Replace the password reset code with a new one and email it."""
    email_sent = await accounts.send_reset_otp(body.email, resend=True)
    if not email_sent:
        return MessageResponse(success=True, message="New OTP saved, but email failed to send.")
    return MessageResponse(success=True, message="New OTP sent successfully")


@router.post("/reset-password", response_model=MessageResponse, response_model_exclude_none=True)
async def reset_password(
    body: ResetPasswordRequest,
    accounts: AccountService = Depends(get_account_service),
):
    """Set a new password using the reset code."""
    await accounts.reset_password(body.email, body.otp, body.newPassword)
    return MessageResponse(success=True, message="Password reset successfully")
