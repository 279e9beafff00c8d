"""
Authentication Endpoints.

Provides login, logout, registration, email verification and password reset.
Every handler delegates to ``AuthGateway`` and renders its ``AuthResult``.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from ..models import (
    LoginRequest,
    RegisterRequest,
    EmailRequest,
    TokenRequest,
    PasswordResetRequest,
    AuthResponse,
    PrincipalResponse,
    ErrorResponse,
)
from ..deps import (
    get_gateway,
    get_client_ip,
    get_bearer_token,
    require_bearer_token,
    get_current_principal,
)
from ...auth.gateway import AuthGateway
from ...auth.outcomes import AuthResult, Outcome
from ...database.models import Principal

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])

STATUS_BY_OUTCOME = {
    Outcome.LOGGED_IN: status.HTTP_200_OK,
    Outcome.LOGGED_OUT: status.HTTP_200_OK,
    Outcome.AUTHENTICATED: status.HTTP_200_OK,
    Outcome.REGISTERED: status.HTTP_200_OK,
    Outcome.REQUEST_ACCEPTED: status.HTTP_200_OK,
    Outcome.VERIFIED: status.HTTP_200_OK,
    Outcome.ALREADY_VERIFIED: status.HTTP_200_OK,
    Outcome.PASSWORD_RESET: status.HTTP_200_OK,
    Outcome.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    Outcome.TOKEN_EXPIRED: status.HTTP_400_BAD_REQUEST,
    Outcome.TOKEN_INVALID: status.HTTP_400_BAD_REQUEST,
    Outcome.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    Outcome.ACCOUNT_UNVERIFIED: status.HTTP_403_FORBIDDEN,
    Outcome.ACCOUNT_LOCKED: status.HTTP_423_LOCKED,
    Outcome.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    Outcome.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    Outcome.MESSAGE_NOT_SENT: status.HTTP_502_BAD_GATEWAY,
}

FAILURE_RESPONSES = {
    400: {"model": AuthResponse, "description": "Invalid input or token"},
    429: {"model": AuthResponse, "description": "Too many attempts"},
    500: {"model": AuthResponse, "description": "Internal error"},
}


def render(result: AuthResult, status_code: Optional[int] = None) -> JSONResponse:
    """Serialize an ``AuthResult`` with the status code of its outcome."""
    headers = {}
    if result.retry_after:
        headers["Retry-After"] = str(result.retry_after)

    body = AuthResponse(
        success=result.success,
        message=result.message,
        reason=result.reason,
        token=result.token,
        expires_at=result.expires_at,
        retry_after=result.retry_after,
    )
    if result.outcome == Outcome.LOGGED_IN and result.principal is not None:
        body.principal = PrincipalResponse(**result.principal.to_public_dict())
    return JSONResponse(
        status_code=status_code or STATUS_BY_OUTCOME[result.outcome],
        content=body.model_dump(mode="json", exclude_none=True),
        headers=headers or None,
    )


# ============================================
# Login / Logout
# ============================================

@router.post(
    "/login",
    response_model=AuthResponse,
    responses={
        401: {"model": AuthResponse, "description": "Invalid credentials"},
        403: {"model": AuthResponse, "description": "Email not verified"},
        423: {"model": AuthResponse, "description": "Account locked"},
        **FAILURE_RESPONSES,
    },
)
def login(
    credentials: LoginRequest,
    request: Request,
    gateway: AuthGateway = Depends(get_gateway),
):
    """
    Authenticate and return a bearer token.

    The account is locked for 15 minutes after 5 failed attempts.
    """
    result = gateway.login(
        credentials.email,
        credentials.password,
        origin_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    return render(result)


@router.post("/logout", response_model=AuthResponse)
def logout(
    request: Request,
    token: Optional[str] = Depends(get_bearer_token),
    gateway: AuthGateway = Depends(get_gateway),
):
    """
    Logout current session.

    Always succeeds, also for unknown or already revoked tokens.
    """
    if not token:
        return render(AuthResult.of(Outcome.LOGGED_OUT))
    return render(gateway.logout(token, get_client_ip(request)))


@router.post(
    "/logout/all",
    response_model=AuthResponse,
    responses={401: {"model": ErrorResponse, "description": "Not authenticated"}},
)
def logout_all(
    request: Request,
    token: str = Depends(require_bearer_token),
    gateway: AuthGateway = Depends(get_gateway),
):
    """
    Logout from all devices.

    Invalidates all sessions of the current principal.
    """
    result = gateway.logout_all(token, get_client_ip(request))
    if result.outcome == Outcome.TOKEN_INVALID:
        return render(result, status.HTTP_401_UNAUTHORIZED)
    return render(result)


@router.get(
    "/me",
    response_model=PrincipalResponse,
    responses={401: {"model": ErrorResponse, "description": "Not authenticated"}},
)
def get_current_principal_profile(principal: Principal = Depends(get_current_principal)):
    """
    Get current principal profile.
    """
    return PrincipalResponse(**principal.to_public_dict())


# ============================================
# Registration and Verification
# ============================================

@router.post("/register", response_model=AuthResponse, responses=FAILURE_RESPONSES)
def register(
    data: RegisterRequest,
    request: Request,
    gateway: AuthGateway = Depends(get_gateway),
):
    """
    Complete registration of a provisioned branch account.

    Sets the first password and sends a verification email.
    """
    return render(gateway.complete_registration(
        data.email,
        data.password,
        get_client_ip(request),
        display_name=data.manager_name,
    ))


@router.post("/verification", response_model=AuthResponse, responses=FAILURE_RESPONSES)
def request_verification(
    data: EmailRequest,
    request: Request,
    gateway: AuthGateway = Depends(get_gateway),
):
    """
    Request a verification email.

    The response is the same whether or not the address is registered.
    """
    return render(gateway.initiate_verification(data.email, get_client_ip(request)))


@router.post("/verification/resend", response_model=AuthResponse, responses=FAILURE_RESPONSES)
def resend_verification(
    data: EmailRequest,
    request: Request,
    gateway: AuthGateway = Depends(get_gateway),
):
    """Resend the verification email."""
    return render(gateway.resend_verification(data.email, get_client_ip(request)))


@router.post("/verification/redeem", response_model=AuthResponse, responses=FAILURE_RESPONSES)
def redeem_verification(
    data: TokenRequest,
    request: Request,
    gateway: AuthGateway = Depends(get_gateway),
):
    """Confirm an email address with the token from the verification email."""
    return render(gateway.redeem_verification(data.token, get_client_ip(request)))


@router.get("/verify-email/{token}", response_model=AuthResponse, responses=FAILURE_RESPONSES)
def verify_email_link(
    token: str,
    request: Request,
    gateway: AuthGateway = Depends(get_gateway),
):
    """Confirm an email address by following the emailed link."""
    return render(gateway.redeem_verification(token, get_client_ip(request)))


# ============================================
# Password Reset
# ============================================

@router.post("/password/request-reset", response_model=AuthResponse, responses=FAILURE_RESPONSES)
def request_password_reset(
    data: EmailRequest,
    request: Request,
    gateway: AuthGateway = Depends(get_gateway),
):
    """
    Request a password reset email.

    The response is the same whether or not the address is registered.
    """
    return render(gateway.request_password_reset(data.email, get_client_ip(request)))


@router.post("/password/reset", response_model=AuthResponse, responses=FAILURE_RESPONSES)
def reset_password(
    data: PasswordResetRequest,
    request: Request,
    gateway: AuthGateway = Depends(get_gateway),
):
    """
    Set a new password with a reset token.

    Invalidates all sessions of the account.
    """
    return render(gateway.reset_password(data.token, data.new_password, get_client_ip(request)))
