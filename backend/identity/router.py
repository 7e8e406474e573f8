"""
Policy Holder Gateway - API Router

Provides REST API endpoints:
- POST /api/signup - Local signup (returns confirmation token)
- GET /api/confirm/{token} - Confirm a signup
- POST /api/login - Local login
- POST /api/auth/google - Federated login with a Google ID token
- POST /api/auth/facebook - Federated login with a Facebook access token
- POST /api/policy/read - Read the caller's policy
- POST /api/policy - Create the caller's policy
- PATCH /api/policy - Set the caller's Ethereum address

Permissions:
- signup, confirm, login: public
- policy routes: bearer access token

Policy routes never take a policy ID; the policy is resolved from the
token's holder. Reads use POST so nothing identifying lands in URLs.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from middleware.auth import AuthenticatedHolder, get_credential_issuer, get_current_holder
from services.auth import CredentialIssuer
from services.providers import FacebookTokenVerifier, GoogleTokenVerifier

from .context import GatewayContext
from .schemas import (
    ConfirmResponse,
    CreatePolicyRequest,
    Credential,
    FacebookLoginRequest,
    GoogleLoginRequest,
    LoginRequest,
    OwnedPolicyResponse,
    PolicyResponse,
    SetEthereumAddressRequest,
    SignupRequest,
    SignupResponse,
    TokenResponse
)
from .service import IdentityService
from .store import SqlIdentityStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Policy Holder Gateway"])


# ==================== DEPENDENCIES ====================

def get_gateway_context(
    db: AsyncSession = Depends(get_db),
    issuer: CredentialIssuer = Depends(get_credential_issuer)
) -> GatewayContext:
    return GatewayContext(store=SqlIdentityStore(db), issuer=issuer)


def get_google_verifier(request: Request) -> GoogleTokenVerifier:
    return request.app.state.google_verifier


def get_facebook_verifier(request: Request) -> FacebookTokenVerifier:
    return request.app.state.facebook_verifier


def _with_authorization_header(response: Response, credential: Credential) -> None:
    response.headers["Authorization"] = f"Bearer {credential.token}"


# ==================== SIGNUP / CONFIRM ====================

@router.post("/signup", response_model=SignupResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    request: SignupRequest,
    context: GatewayContext = Depends(get_gateway_context)
):
    """
    Create an unconfirmed policy holder.

    **No authentication required** (public endpoint)
    """
    holder, confirmation = await IdentityService(context).request_signup(request)
    return SignupResponse(
        policy_holder_id=holder.policy_holder_id,
        email=holder.email,
        confirmed=holder.confirmed,
        confirmation_token=confirmation.token
    )


@router.get("/confirm/{token}", response_model=ConfirmResponse)
async def confirm(
    token: str,
    context: GatewayContext = Depends(get_gateway_context)
):
    """Confirm a signup. Repeating the call is harmless."""
    policy_holder_id = await IdentityService(context).confirm(token)
    return ConfirmResponse(policy_holder_id=policy_holder_id, confirmed=True)


# ==================== LOGIN ====================

@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    response: Response,
    context: GatewayContext = Depends(get_gateway_context)
):
    """
    Authenticate with email and password.

    The token is returned in the body and in the Authorization header.
    """
    credential = await IdentityService(context).login_local(request.email, request.password)
    policy = await context.resolver().get_owned_policy(credential.subject)
    _with_authorization_header(response, credential)
    return TokenResponse.from_credential(credential, has_policy=policy is not None)


@router.post("/auth/google", response_model=TokenResponse)
async def login_google(
    request: GoogleLoginRequest,
    response: Response,
    context: GatewayContext = Depends(get_gateway_context),
    verifier: GoogleTokenVerifier = Depends(get_google_verifier)
):
    """Federated login with a Google ID token."""
    profile = await verifier.verify(request.id_token)
    result = await IdentityService(context).login_federated(profile)
    _with_authorization_header(response, result.credential)
    return TokenResponse.from_credential(result.credential, has_policy=result.has_policy)


@router.post("/auth/facebook", response_model=TokenResponse)
async def login_facebook(
    request: FacebookLoginRequest,
    response: Response,
    context: GatewayContext = Depends(get_gateway_context),
    verifier: FacebookTokenVerifier = Depends(get_facebook_verifier)
):
    """Federated login with a Facebook user access token."""
    profile = await verifier.verify(request.access_token)
    result = await IdentityService(context).login_federated(profile)
    _with_authorization_header(response, result.credential)
    return TokenResponse.from_credential(result.credential, has_policy=result.has_policy)


# ==================== POLICY (BEARER) ====================

@router.post("/policy/read", response_model=OwnedPolicyResponse)
async def read_owned_policy(
    current: AuthenticatedHolder = Depends(get_current_holder),
    context: GatewayContext = Depends(get_gateway_context)
):
    """Return the caller's policy, or has_policy=false when there is none."""
    policy = await context.resolver().get_owned_policy(current.policy_holder_id)
    if policy is None:
        return OwnedPolicyResponse(has_policy=False)
    return OwnedPolicyResponse(has_policy=True, policy=PolicyResponse.from_policy(policy))


@router.post("/policy", response_model=PolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_policy(
    request: CreatePolicyRequest,
    current: AuthenticatedHolder = Depends(get_current_holder),
    context: GatewayContext = Depends(get_gateway_context)
):
    """Create the caller's policy. 409 if they already own one."""
    policy = await context.resolver().create_policy(
        current.policy_holder_id,
        request.model_dump()
    )
    return PolicyResponse.from_policy(policy)


@router.patch("/policy", response_model=PolicyResponse)
async def set_ethereum_address(
    request: SetEthereumAddressRequest,
    current: AuthenticatedHolder = Depends(get_current_holder),
    context: GatewayContext = Depends(get_gateway_context)
):
    """Set the Ethereum address on the caller's policy. 404 if they own none."""
    policy = await context.resolver().set_ethereum_address(
        current.policy_holder_id,
        request.ethereum_address
    )
    return PolicyResponse.from_policy(policy)
