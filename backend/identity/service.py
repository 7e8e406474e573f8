"""
Identity Core - Service Layer

Signup, confirmation and login flows on top of the store, the credential
issuer and the federated identity reconciler:
- Local signup (creates an unconfirmed holder + confirmation token)
- Confirmation (idempotent)
- Local login (email + password)
- Federated login (Google / Facebook, pre-verified profile)
"""

import logging
from dataclasses import dataclass
from typing import Tuple

from services.auth import dummy_verify_password, get_password_hash, verify_password

from .context import GatewayContext
from .exceptions import (
    ConfirmationPending,
    DuplicateRecord,
    EmailAlreadyRegistered,
    InvalidCredential
)
from .schemas import Credential, PolicyHolder, ProviderProfile, SignupRequest

logger = logging.getLogger(__name__)


@dataclass
class FederatedLoginResult:
    credential: Credential
    has_policy: bool


class IdentityService:
    """
    Identity Service - login and signup flows for policy holders.

    Ensures:
    - A confirmation token is never accepted as an access credential
    - Confirmation flips the flag exactly once
    - Local and federated holders are never merged by email
    """

    def __init__(self, context: GatewayContext):
        self.context = context
        self.store = context.store
        self.issuer = context.issuer

    # ==================== SIGNUP ====================

    async def request_signup(self, request: SignupRequest) -> Tuple[PolicyHolder, Credential]:
        """
        Create an unconfirmed holder with a local credential.

        Returns:
            Tuple of (PolicyHolder, confirmation token)

        Raises:
            EmailAlreadyRegistered: a local signup already uses this email
        """
        try:
            holder = await self.store.create_local_holder(
                email=request.email,
                password_hash=get_password_hash(request.password),
                display_name=request.display_name
            )
        except DuplicateRecord:
            logger.info("Signup rejected: email already registered")
            raise EmailAlreadyRegistered()

        confirmation = self.issuer.issue_confirmation(holder.policy_holder_id)
        logger.info(f"Signup requested: holder={holder.policy_holder_id}")
        return holder, confirmation

    # ==================== CONFIRMATION ====================

    async def confirm(self, confirmation_token: str) -> str:
        """
        Confirm a signup. Confirming an already confirmed holder is a
        no-op success.

        Raises:
            InvalidCredential: bad, expired or wrong-type token, or the
                holder no longer exists
        """
        policy_holder_id = self.issuer.validate_confirmation(confirmation_token)
        holder = await self.store.mark_confirmed(policy_holder_id)
        if holder is None:
            logger.warning(f"Confirmation for unknown holder {policy_holder_id}")
            raise InvalidCredential()
        return holder.policy_holder_id

    # ==================== LOGIN ====================

    async def login_local(self, email: str, password: str) -> Credential:
        """
        Authenticate with email and password.

        Unknown email and wrong password fail the same way, each after
        one bcrypt verification.

        Raises:
            InvalidCredential: credentials do not match
            ConfirmationPending: signup not confirmed yet
        """
        login = await self.store.find_local_login(email)
        if login is None:
            dummy_verify_password()
            logger.warning("Login failed: unknown email")
            raise InvalidCredential("Invalid email or password")

        if not verify_password(password, login.password_hash):
            logger.warning(f"Login failed: invalid password for holder {login.holder.policy_holder_id}")
            raise InvalidCredential("Invalid email or password")

        if not login.holder.confirmed:
            logger.info(f"Login refused: holder {login.holder.policy_holder_id} not confirmed")
            raise ConfirmationPending()

        logger.info(f"Login successful: holder={login.holder.policy_holder_id}")
        return self.issuer.issue(login.holder.policy_holder_id)

    async def login_federated(self, profile: ProviderProfile) -> FederatedLoginResult:
        """
        Resolve a pre-verified provider profile to a holder and issue an
        access credential.

        Raises:
            InvalidProfile: provider_user_id missing (no credential issued)
        """
        policy_holder_id = await self.context.reconciler().reconcile(profile)
        credential = self.issuer.issue(policy_holder_id)
        policy = await self.context.resolver().get_owned_policy(policy_holder_id)
        return FederatedLoginResult(credential=credential, has_policy=policy is not None)
